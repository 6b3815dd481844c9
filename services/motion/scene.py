"""
Scene entity.

A scene is one unit of the timeline. Its position in the scene list is its
position in the final render; scenes are mutated in place as media is
attached and never reordered.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MediaState(str, Enum):
    """Whether a scene's generated media exists."""
    NONE = "none"
    PENDING = "pending"
    READY = "ready"


class SceneStatus(str, Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass
class Scene:
    """One scene of the video."""
    id: str
    narration_text: str = ""
    image_payload: Optional[str] = None
    prompt: str = ""
    name: str = ""
    duration_seconds: float = 5.0
    motion_type: Optional[str] = None

    video_payload: Optional[str] = None
    video_state: MediaState = MediaState.NONE
    audio_payload: Optional[str] = None
    audio_state: MediaState = MediaState.NONE

    status: SceneStatus = SceneStatus.WAITING

    def __post_init__(self):
        # Media handed in at construction counts as already generated
        if self.video_payload and self.video_state == MediaState.NONE:
            self.video_state = MediaState.READY
        if self.audio_payload and self.audio_state == MediaState.NONE:
            self.audio_state = MediaState.READY

    @property
    def has_video(self) -> bool:
        return self.video_state == MediaState.READY and bool(self.video_payload)

    @property
    def has_audio(self) -> bool:
        return self.audio_state == MediaState.READY and bool(self.audio_payload)

    def attach_video(self, locator: str):
        self.video_payload = locator
        self.video_state = MediaState.READY
        self.status = SceneStatus.COMPLETED

    def attach_audio(self, locator: str):
        self.audio_payload = locator
        self.audio_state = MediaState.READY

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "narrationText": self.narration_text,
            "imagePayload": self.image_payload,
            "prompt": self.prompt,
            "durationSeconds": self.duration_seconds,
            "motionType": self.motion_type,
            "videoPayload": self.video_payload,
            "videoState": self.video_state.value,
            "audioPayload": self.audio_payload,
            "audioState": self.audio_state.value,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Scene":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            narration_text=data.get("narrationText") or data.get("narration") or data.get("script") or "",
            image_payload=data.get("imagePayload") or data.get("imageUrl"),
            prompt=data.get("prompt", ""),
            duration_seconds=float(data.get("durationSeconds") or data.get("duration") or 5.0),
            motion_type=data.get("motionType"),
            video_payload=data.get("videoPayload") or data.get("videoUrl"),
            video_state=MediaState(data.get("videoState", MediaState.NONE.value)),
            audio_payload=data.get("audioPayload") or data.get("audioUrl"),
            audio_state=MediaState(data.get("audioState", MediaState.NONE.value)),
            status=SceneStatus(data.get("status", SceneStatus.WAITING.value)),
        )
