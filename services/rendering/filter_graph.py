"""
ffmpeg filter graph construction.

Every scene contributes exactly one video and one audio sub-stream of its
declared duration, in scene order:

    video clip   -> letterbox to WxH, constant fps, padded/trimmed to duration
    still image  -> looped for the duration, letterboxed
    nothing      -> solid colour filler
    audio        -> resampled to the canonical rate/layout, padded/trimmed
    no audio     -> silence

The sub-streams are concatenated in order; subtitles (if any) are burned
onto the concatenated stream so cue times are on the final timeline.
Pure functions: no I/O, no subprocesses.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from .assets import SceneAssets

SUBTITLE_FILENAME = "subtitles.srt"


@dataclass(frozen=True)
class OutputFormat:
    width: int = 1080
    height: int = 1920
    fps: int = 30
    sample_rate: int = 44100
    channel_layout: str = "stereo"
    filler_color: str = "black"


@dataclass
class FilterGraph:
    """Inputs and filter chains for one render."""
    input_args: list[str] = field(default_factory=list)
    filters: list[str] = field(default_factory=list)
    video_label: str = "outv"
    audio_label: str = "outa"
    segment_count: int = 0
    total_duration: float = 0.0
    placeholder_scenes: list[int] = field(default_factory=list)
    # input index -> scene index, for mapping ffmpeg errors back to a scene
    input_scenes: dict[int, int] = field(default_factory=dict)

    @property
    def filter_complex(self) -> str:
        return ";".join(self.filters)


def format_seconds(value: float) -> str:
    """Compact decimal seconds for filter arguments (4 -> "4", 2.5 -> "2.5")."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text or "0"


def _letterbox(fmt: OutputFormat) -> str:
    w, h = fmt.width, fmt.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def video_chain(input_index: int, duration: float, fmt: OutputFormat, label: str) -> str:
    d = format_seconds(duration)
    return (
        f"[{input_index}:v]{_letterbox(fmt)},fps={fmt.fps},format=yuv420p,"
        f"tpad=stop_mode=clone:stop_duration={d},trim=duration={d},setpts=PTS-STARTPTS[{label}]"
    )


def image_chain(input_index: int, duration: float, fmt: OutputFormat, label: str) -> str:
    d = format_seconds(duration)
    return (
        f"[{input_index}:v]{_letterbox(fmt)},fps={fmt.fps},format=yuv420p,"
        f"trim=duration={d},setpts=PTS-STARTPTS[{label}]"
    )


def filler_chain(duration: float, fmt: OutputFormat, label: str) -> str:
    return (
        f"color=c={fmt.filler_color}:s={fmt.width}x{fmt.height}:r={fmt.fps}:d={format_seconds(duration)},"
        f"format=yuv420p,setsar=1[{label}]"
    )


def audio_chain(input_index: int, duration: float, fmt: OutputFormat, label: str) -> str:
    d = format_seconds(duration)
    return (
        f"[{input_index}:a]aformat=sample_rates={fmt.sample_rate}:channel_layouts={fmt.channel_layout},"
        f"apad=whole_dur={d},atrim=duration={d},asetpts=PTS-STARTPTS[{label}]"
    )


def silence_chain(duration: float, fmt: OutputFormat, label: str) -> str:
    return (
        f"anullsrc=r={fmt.sample_rate}:cl={fmt.channel_layout},"
        f"atrim=duration={format_seconds(duration)},asetpts=PTS-STARTPTS[{label}]"
    )


def subtitle_chain(source_label: str, subtitle_file: str, style: Optional[str], label: str) -> str:
    # Path is relative to the encoder's working directory, so no drive
    # letters or colons need escaping
    escaped = subtitle_file.replace("\\", "/").replace("'", r"\'")
    chain = f"[{source_label}]subtitles='{escaped}'"
    if style:
        chain += f":force_style='{style}'"
    return f"{chain}[{label}]"


def build_filter_graph(
    scenes: Sequence[SceneAssets],
    fmt: OutputFormat,
    subtitle_file: Optional[str] = None,
    subtitle_style: Optional[str] = None,
) -> FilterGraph:
    """
    Build inputs and filters for an ordered list of scene assets.

    Raises:
        ValueError: empty scene list or non-positive duration
    """
    if not scenes:
        raise ValueError("at least one scene is required")

    graph = FilterGraph(segment_count=len(scenes))
    input_index = 0
    concat_inputs = []

    for position, scene in enumerate(scenes):
        if scene.duration_seconds <= 0:
            raise ValueError(f"scene {position} has non-positive duration {scene.duration_seconds}")

        v_label, a_label = f"v{position}", f"a{position}"

        if scene.video_path is not None:
            graph.input_args += ["-i", str(scene.video_path)]
            graph.filters.append(video_chain(input_index, scene.duration_seconds, fmt, v_label))
            graph.input_scenes[input_index] = position
            input_index += 1
        elif scene.image_path is not None:
            graph.input_args += [
                "-loop", "1",
                "-t", format_seconds(scene.duration_seconds),
                "-i", str(scene.image_path),
            ]
            graph.filters.append(image_chain(input_index, scene.duration_seconds, fmt, v_label))
            graph.input_scenes[input_index] = position
            input_index += 1
        else:
            graph.filters.append(filler_chain(scene.duration_seconds, fmt, v_label))

        if scene.audio_path is not None:
            graph.input_args += ["-i", str(scene.audio_path)]
            graph.filters.append(audio_chain(input_index, scene.duration_seconds, fmt, a_label))
            graph.input_scenes[input_index] = position
            input_index += 1
        else:
            graph.filters.append(silence_chain(scene.duration_seconds, fmt, a_label))

        if scene.needs_video_placeholder or scene.needs_audio_placeholder:
            graph.placeholder_scenes.append(position)

        concat_inputs.append(f"[{v_label}][{a_label}]")
        graph.total_duration += scene.duration_seconds

    graph.filters.append(
        f"{''.join(concat_inputs)}concat=n={len(scenes)}:v=1:a=1[outv][outa]"
    )

    if subtitle_file:
        graph.filters.append(subtitle_chain("outv", subtitle_file, subtitle_style, "burnedv"))
        graph.video_label = "burnedv"

    return graph


def build_ffmpeg_command(
    graph: FilterGraph,
    output_path: Path,
    fmt: OutputFormat,
    binary: str = "ffmpeg",
    report_progress: bool = True,
) -> list[str]:
    """Full ffmpeg argv for a filter graph."""
    cmd = [binary, "-y", "-hide_banner", "-loglevel", "error"]
    if report_progress:
        cmd += ["-nostats", "-progress", "pipe:1"]

    cmd += graph.input_args
    cmd += [
        "-filter_complex", graph.filter_complex,
        "-map", f"[{graph.video_label}]",
        "-map", f"[{graph.audio_label}]",
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", "23",
        "-pix_fmt", "yuv420p",
        "-r", str(fmt.fps),
        "-c:a", "aac",
        "-ar", str(fmt.sample_rate),
        # Sub-streams already match; this only clamps encoder rounding
        "-shortest",
        "-movflags", "+faststart",
        str(output_path),
    ]
    return cmd
