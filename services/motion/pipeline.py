"""
Scene Motion Pipeline

Animates scenes one at a time, in list order. Sequential on purpose: vendor
accounts are rate limited and a steady "scene i/N" narrative is what the
UI shows.

The pipeline is an async generator yielding one MotionEvent per step, so
progress reporting is derived from pipeline state instead of being threaded
through shared variables:

    pipeline = SceneMotionPipeline(poller, uploader)
    async for event in pipeline.run(scenes):
        print(event.message)
    print(pipeline.summary.error_message)

A failing scene is left completed without video (the UI animates the still
image instead) and recorded in the summary; the loop carries on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Mapping, Optional

from core.errors import GenerationCancelled, InvalidRequest

from ..generation.models import GenerationRequest
from ..generation.poller import JobPoller, JobProgress
from ..generation.prompting import DEFAULT_MOTION
from ..storage.uploader import LocalUploadStore, Uploader, normalize_source_media
from .scene import MediaState, Scene, SceneStatus

logger = logging.getLogger(__name__)


class MotionEventType(str, Enum):
    SCENE_STARTED = "scene_started"
    SCENE_PROGRESS = "scene_progress"
    SCENE_SKIPPED = "scene_skipped"
    SCENE_COMPLETED = "scene_completed"
    SCENE_FAILED = "scene_failed"
    FINISHED = "finished"


@dataclass(frozen=True)
class MotionEvent:
    """One step of the pipeline."""
    event_type: MotionEventType
    index: int
    total: int
    scene_id: Optional[str]
    progress: int
    message: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.event_type.value,
            "index": self.index,
            "total": self.total,
            "sceneId": self.scene_id,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class MotionSummary:
    """Running tally of a pipeline run."""
    total: int = 0
    generated: int = 0
    skipped: int = 0
    failed_count: int = 0
    last_error: Optional[str] = None
    failed_scene_ids: list[str] = field(default_factory=list)

    @property
    def error_message(self) -> Optional[str]:
        if not self.failed_count:
            return None
        return (
            f"{self.failed_count} scene(s) failed: {self.last_error} "
            f"(falling back to still-image animation)"
        )

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "generated": self.generated,
            "skipped": self.skipped,
            "failedCount": self.failed_count,
            "lastError": self.last_error,
            "failedSceneIds": list(self.failed_scene_ids),
            "errorMessage": self.error_message,
        }


def _overall(index: int, total: int, scene_progress: int = 0) -> int:
    return min(100, round(index / total * 100) + round(scene_progress / total))


class SceneMotionPipeline:
    """
    Sequential image-to-video over a scene list.

    Args:
        poller: Polling engine used for every scene
        uploader: Makes inline/local images fetchable by the vendor
        provider: Video provider key
        aspect_ratio: Requested aspect ratio for every clip
        duration: Provider duration category ("5" / "10")
        default_motion: Motion tag for scenes without one
        motion_rules / prompt_template: Settings collaborator overrides
        local_store: Resolves /uploads/... image references
        cancel_event: When set, the in-flight scene is reverted and the run stops
    """

    def __init__(
        self,
        poller: JobPoller,
        uploader: Uploader,
        provider: str = "kling",
        aspect_ratio: str = "16:9",
        duration: str = "5",
        default_motion: str = DEFAULT_MOTION,
        motion_rules: Optional[Mapping[str, str]] = None,
        prompt_template: Optional[str] = None,
        local_store: Optional[LocalUploadStore] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.poller = poller
        self.uploader = uploader
        self.provider = provider
        self.aspect_ratio = aspect_ratio
        self.duration = duration
        self.default_motion = default_motion
        self.motion_rules = motion_rules
        self.prompt_template = prompt_template
        self.local_store = local_store
        self.cancel_event = cancel_event
        self.summary = MotionSummary()

    def _request_for(self, scene: Scene, source_media: str, default_motion: str) -> GenerationRequest:
        return GenerationRequest(
            instruction_text=scene.prompt or scene.narration_text,
            source_media=source_media,
            motion_hint=scene.motion_type or default_motion,
            duration=self.duration,
            aspect_ratio=self.aspect_ratio,
            provider=self.provider,
            motion_rules=self.motion_rules,
            prompt_template=self.prompt_template,
        )

    def _record_failure(self, scene: Scene, error: str):
        self.summary.failed_count += 1
        self.summary.last_error = error
        self.summary.failed_scene_ids.append(scene.id)

    async def run(
        self,
        scenes: list[Scene],
        only: Optional[str] = None,
        force: bool = False,
        default_motion: Optional[str] = None,
    ) -> AsyncIterator[MotionEvent]:
        """
        Animate scenes in order, yielding progress events.

        Args:
            scenes: The scene list (mutated in place)
            only: Restrict the run to one scene id
            force: Regenerate even if the scene already has video
            default_motion: Override the pipeline's default motion tag
        """
        self.summary = MotionSummary()
        targets = [(i, s) for i, s in enumerate(scenes) if only is None or s.id == only]
        total = len(scenes)
        self.summary.total = len(targets)
        motion = default_motion or self.default_motion

        for index, scene in targets:
            async for event in self._animate_scene(index, total, scene, force, motion):
                yield event

        message = f"Motion finished: {self.summary.generated} generated, {self.summary.skipped} skipped, {self.summary.failed_count} failed"
        logger.info(message)
        yield MotionEvent(
            event_type=MotionEventType.FINISHED,
            index=total,
            total=total,
            scene_id=None,
            progress=100,
            message=message,
            error=self.summary.error_message,
        )

    async def _animate_scene(
        self,
        index: int,
        total: int,
        scene: Scene,
        force: bool,
        motion: str,
    ) -> AsyncIterator[MotionEvent]:
        label = f"scene {index + 1}/{total}"

        if scene.video_state == MediaState.READY and not force:
            self.summary.skipped += 1
            yield MotionEvent(MotionEventType.SCENE_SKIPPED, index, total, scene.id,
                              _overall(index + 1, total), f"{label}: already generated")
            return

        yield MotionEvent(MotionEventType.SCENE_STARTED, index, total, scene.id,
                          _overall(index, total), f"{label}: preparing image")

        try:
            source_media = await normalize_source_media(scene.image_payload, self.uploader, self.local_store)
        except GenerationCancelled:
            raise
        except Exception as e:
            logger.warning(f"{label} ({scene.id}): image normalization failed, skipping: {e}")
            self._record_failure(scene, str(e))
            scene.status = SceneStatus.COMPLETED
            yield MotionEvent(MotionEventType.SCENE_FAILED, index, total, scene.id,
                              _overall(index + 1, total), f"{label}: image unusable", error=str(e))
            return

        previous_state = scene.video_state
        scene.video_state = MediaState.PENDING
        scene.status = SceneStatus.PROCESSING

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.ensure_future(self.poller.run_to_completion(
            self._request_for(scene, source_media, motion),
            on_progress=queue.put_nowait,
            cancel_event=self.cancel_event,
        ))

        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    break
                update: JobProgress = getter.result()
                yield MotionEvent(MotionEventType.SCENE_PROGRESS, index, total, scene.id,
                                  _overall(index, total, update.progress), f"{label}: {update.message}")

            while not queue.empty():
                update = queue.get_nowait()
                yield MotionEvent(MotionEventType.SCENE_PROGRESS, index, total, scene.id,
                                  _overall(index, total, update.progress), f"{label}: {update.message}")

            media = task.result()
        except (GenerationCancelled, asyncio.CancelledError, GeneratorExit):
            scene.video_state = previous_state
            scene.status = SceneStatus.COMPLETED if previous_state == MediaState.READY else SceneStatus.WAITING
            logger.info(f"{label} ({scene.id}): cancelled, scene reverted")
            raise
        except Exception as e:
            logger.warning(f"{label} ({scene.id}) video generation failed: {e}")
            scene.video_state = previous_state if previous_state == MediaState.READY else MediaState.NONE
            scene.status = SceneStatus.COMPLETED
            self._record_failure(scene, str(e))
            yield MotionEvent(MotionEventType.SCENE_FAILED, index, total, scene.id,
                              _overall(index + 1, total), f"{label}: failed", error=str(e))
            return
        finally:
            if not task.done():
                task.cancel()

        scene.attach_video(media.locator)
        self.summary.generated += 1
        logger.info(f"{label} ({scene.id}) animated")
        yield MotionEvent(MotionEventType.SCENE_COMPLETED, index, total, scene.id,
                          _overall(index + 1, total), f"{label}: completed")

    async def animate_all(self, scenes: list[Scene]) -> MotionSummary:
        """Run the whole pipeline, discarding events."""
        async for _ in self.run(scenes):
            pass
        return self.summary

    async def reanimate(self, scenes: list[Scene], scene_id: str, motion: str = "auto") -> MotionSummary:
        """
        Regenerate one scene's video, even if it already has one.

        Raises:
            InvalidRequest: no scene with that id
        """
        if not any(s.id == scene_id for s in scenes):
            raise InvalidRequest(f"Unknown scene: {scene_id}")
        async for _ in self.run(scenes, only=scene_id, force=True, default_motion=motion):
            pass
        return self.summary
