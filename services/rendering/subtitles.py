"""
SRT subtitle generation from scene narration.

Cue times are on the concatenated timeline: each scene's narration is split
into sentences and spread across that scene's window, weighted by length.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Protocol

_SENTENCE_END = re.compile(r"(?<=[.!?。])\s+")


class NarratedScene(Protocol):
    narration_text: str
    duration_seconds: float


@dataclass(frozen=True)
class SubtitleCue:
    start: float
    end: float
    text: str


def format_srt_timestamp(seconds: float) -> str:
    """Render seconds as HH:MM:SS,mmm."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def split_sentences(text: str) -> list[str]:
    return [part.strip() for part in _SENTENCE_END.split(text or "") if part.strip()]


def build_cues(scenes: Iterable[NarratedScene]) -> list[SubtitleCue]:
    cues = []
    offset = 0.0
    for scene in scenes:
        duration = float(scene.duration_seconds)
        sentences = split_sentences(scene.narration_text)
        total_chars = sum(len(s) for s in sentences)

        start = offset
        for sentence in sentences:
            share = duration * len(sentence) / total_chars
            cues.append(SubtitleCue(start=start, end=start + share, text=sentence))
            start += share

        offset += duration
    return cues


def render_srt(cues: Iterable[SubtitleCue]) -> str:
    blocks = []
    for number, cue in enumerate(cues, start=1):
        blocks.append(
            f"{number}\n"
            f"{format_srt_timestamp(cue.start)} --> {format_srt_timestamp(cue.end)}\n"
            f"{cue.text}\n"
        )
    return "\n".join(blocks)


def build_srt(scenes: Iterable[NarratedScene]) -> str:
    """SRT document for the narration of an ordered scene list."""
    return render_srt(build_cues(scenes))
