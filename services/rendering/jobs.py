"""
Background render jobs.

Runs renders as asyncio tasks so HTTP callers can poll status, stream
progress events and cancel.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from core.errors import GenerationCancelled, GenerationError

from ..streaming.progress_tracker import ProgressTracker
from .composer import STAGE_WEIGHTS, RenderComposer, RenderRequest, RenderResult

logger = logging.getLogger(__name__)


@dataclass
class BackgroundRender:
    """Tracks one background render."""
    job_id: str
    tracker: ProgressTracker
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    status: str = "pending"
    result: Optional[RenderResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    scene_index: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    task: Optional[asyncio.Task] = None

    def to_dict(self) -> dict:
        summary = self.tracker.get_summary()
        data = {
            "jobId": self.job_id,
            "status": self.status,
            "progress": summary["progress_percent"],
            "stage": summary["current_stage"],
            "message": summary["message"],
            "createdAt": self.created_at.isoformat(),
        }
        if self.result:
            data["result"] = self.result.to_dict()
        if self.error:
            data["error"] = self.error
            data["errorCode"] = self.error_code
            data["sceneIndex"] = self.scene_index
        return data


class RenderJobManager:
    """
    Starts and tracks background renders.

    Usage:
        manager = RenderJobManager(RenderComposer())
        job = manager.start(request)
        queue = job.tracker.subscribe()
    """

    def __init__(self, composer: Optional[RenderComposer] = None, max_finished: int = 100):
        self.composer = composer or RenderComposer()
        self.max_finished = max_finished
        self._jobs: dict[str, BackgroundRender] = {}

    def start(self, request: RenderRequest) -> BackgroundRender:
        """Validate and launch a render; returns immediately."""
        self.composer.validate(request)

        job_id = str(uuid.uuid4())
        tracker = ProgressTracker(job_id, stage_weights=STAGE_WEIGHTS)
        job = BackgroundRender(job_id=job_id, tracker=tracker)
        self._jobs[job_id] = job

        tracker.started(f"Rendering {len(request.scenes)} scenes")
        job.task = asyncio.ensure_future(self._run(job, request))
        self._prune()
        logger.info(f"[Render] Background job {job_id} started")
        return job

    async def _run(self, job: BackgroundRender, request: RenderRequest):
        job.status = "rendering"
        try:
            job.result = await self.composer.render(
                request,
                tracker=job.tracker,
                cancel_event=job.cancel_event,
                job_id=job.job_id,
            )
            job.status = "completed"
        except GenerationCancelled:
            job.status = "cancelled"
        except asyncio.CancelledError:
            job.status = "cancelled"
            raise
        except GenerationError as e:
            job.status = "failed"
            job.error = str(e)
            job.error_code = e.error_code
            job.scene_index = getattr(e, "scene_index", None)
        except Exception as e:
            logger.exception(f"[Render] Background job {job.job_id} crashed")
            job.status = "failed"
            job.error = str(e)
            job.error_code = "RENDER_FAILED"
            if not job.tracker.finished:
                job.tracker.failed("Rendering failed", error=str(e))

    def get(self, job_id: str) -> Optional[BackgroundRender]:
        return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Signal cancellation. False if unknown or already finished."""
        job = self._jobs.get(job_id)
        if job is None or job.status in ("completed", "failed", "cancelled"):
            return False
        job.cancel_event.set()
        logger.info(f"[Render] Cancellation requested for {job_id}")
        return True

    def _prune(self):
        finished = [j for j in self._jobs.values() if j.status in ("completed", "failed", "cancelled")]
        excess = len(finished) - self.max_finished
        for job in sorted(finished, key=lambda j: j.created_at)[:max(0, excess)]:
            self._jobs.pop(job.job_id, None)

    async def shutdown(self):
        """Cancel every running render and wait for them to stop."""
        running = [j for j in self._jobs.values() if j.task and not j.task.done()]
        for job in running:
            job.cancel_event.set()
        if running:
            await asyncio.gather(*(j.task for j in running), return_exceptions=True)
