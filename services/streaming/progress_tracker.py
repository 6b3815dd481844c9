"""
Progress Tracker for generation and render jobs

Tracks progress across the stages of one job and formats events for SSE
streaming. Subscribers that join late get the event history replayed first.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of progress events."""

    # Lifecycle events
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    # Stage events
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"

    # Progress events
    PROGRESS = "progress"

    # Info events
    INFO = "info"
    WARNING = "warning"


TERMINAL_EVENTS = (EventType.COMPLETED, EventType.FAILED, EventType.CANCELLED)


@dataclass
class ProgressEvent:
    """A progress event for SSE streaming."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    job_id: str = ""
    event_type: EventType = EventType.INFO
    timestamp: datetime = field(default_factory=datetime.utcnow)

    stage: str = ""
    progress_percent: float = 0.0
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    elapsed_seconds: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENTS

    def to_dict(self) -> dict:
        event_data = {
            "id": self.event_id,
            "job_id": self.job_id,
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "stage": self.stage,
            "progress_percent": round(self.progress_percent, 1),
            "message": self.message,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
        }
        if self.data:
            event_data["data"] = self.data
        return event_data

    def to_sse(self) -> str:
        """Format as SSE message."""
        json_data = json.dumps(self.to_dict(), default=str)
        return f"id: {self.event_id}\nevent: {self.event_type.value}\ndata: {json_data}\n\n"

    def to_cli_line(self) -> str:
        """Format as single CLI line."""
        if self.event_type == EventType.PROGRESS:
            bar_width = 20
            filled = int(self.progress_percent / 100 * bar_width)
            bar = "#" * filled + "-" * (bar_width - filled)
            return f"[{bar}] {self.progress_percent:5.1f}% | {self.stage} | {self.message}"
        return f"{self.event_type.value}: {self.message}"


class ProgressTracker:
    """
    Tracks progress of one job and fans events out to callbacks and
    subscriber queues.

    Usage:
        tracker = ProgressTracker("job-123", stage_weights={"assets": 30, "encode": 70})
        tracker.on_event(lambda e: print(e.to_cli_line()))

        tracker.stage_started("assets")
        tracker.progress(50, "Downloaded 2/4 assets")
        tracker.stage_completed("assets")
    """

    def __init__(
        self,
        job_id: str,
        stage_weights: Optional[dict[str, float]] = None,
        history_size: int = 200,
    ):
        self.job_id = job_id
        self.stage_weights = stage_weights or {"main": 100}
        self.history_size = history_size

        self._start_time = datetime.utcnow()
        self._current_stage: str = ""
        self._stage_progress: float = 0.0
        self._completed_stages: set[str] = set()
        self._last_percent: float = 0.0
        self._finished = False

        self._callbacks: list[Callable[[ProgressEvent], None]] = []
        self._subscribers: list[asyncio.Queue] = []
        self._event_history: list[ProgressEvent] = []

    @property
    def finished(self) -> bool:
        return self._finished

    def on_event(self, callback: Callable[[ProgressEvent], None]):
        """Register callback for progress events."""
        self._callbacks.append(callback)

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving the history so far followed by live events."""
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._event_history:
            queue.put_nowait(event)
        if not self._finished:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _emit(self, event: ProgressEvent, percent: Optional[float] = None):
        """Emit event to all callbacks and subscribers."""
        if self._finished:
            logger.debug(f"Job {self.job_id} already finished, dropping {event.event_type.value}")
            return

        # Overall progress never moves backwards
        overall = self._calculate_overall_progress() if percent is None else percent
        self._last_percent = max(self._last_percent, overall)
        event.progress_percent = self._last_percent
        event.elapsed_seconds = (datetime.utcnow() - self._start_time).total_seconds()

        self._event_history.append(event)
        if len(self._event_history) > self.history_size:
            self._event_history = self._event_history[-self.history_size:]

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")

        for queue in self._subscribers:
            queue.put_nowait(event)

        if event.is_terminal:
            self._finished = True
            self._subscribers.clear()

    def _calculate_overall_progress(self) -> float:
        """Calculate overall progress across all stages."""
        total_weight = sum(self.stage_weights.values())

        completed_weight = sum(
            self.stage_weights.get(s, 0) for s in self._completed_stages
        )

        current_weight = 0.0
        if self._current_stage not in self._completed_stages:
            current_weight = self.stage_weights.get(self._current_stage, 0) * self._stage_progress / 100

        total_progress = ((completed_weight + current_weight) / total_weight) * 100
        # 100 is reserved for the completed event
        return min(99.0, total_progress)

    def started(self, message: str = "Job started"):
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.STARTED,
            message=message,
        ))

    def stage_started(self, stage: str, message: str = None):
        self._current_stage = stage
        self._stage_progress = 0
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.STAGE_STARTED,
            stage=stage,
            message=message or f"Starting {stage}",
        ))

    def stage_completed(self, stage: str, message: str = None, data: dict = None):
        self._stage_progress = 100
        self._completed_stages.add(stage)
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.STAGE_COMPLETED,
            stage=stage,
            message=message or f"Completed {stage}",
            data=data or {},
        ))

    def progress(self, percent: float, message: str, data: dict = None):
        """Emit progress update within the current stage."""
        self._stage_progress = max(0.0, min(100.0, percent))
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.PROGRESS,
            stage=self._current_stage,
            message=message,
            data=data or {},
        ))

    def completed(self, message: str = "Job completed", data: dict = None):
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.COMPLETED,
            stage=self._current_stage,
            message=message,
            data=data or {},
        ), percent=100.0)

    def failed(self, message: str, error: Optional[str] = None, data: dict = None):
        payload = dict(data or {})
        if error:
            payload["error"] = error
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.FAILED,
            stage=self._current_stage,
            message=message,
            data=payload,
        ))

    def cancelled(self, message: str = "Job cancelled"):
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.CANCELLED,
            stage=self._current_stage,
            message=message,
        ))

    def info(self, message: str, data: dict = None):
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.INFO,
            stage=self._current_stage,
            message=message,
            data=data or {},
        ))

    def warning(self, message: str, data: dict = None):
        self._emit(ProgressEvent(
            job_id=self.job_id,
            event_type=EventType.WARNING,
            stage=self._current_stage,
            message=message,
            data=data or {},
        ))

    def get_history(self) -> list[ProgressEvent]:
        """Get all events emitted so far."""
        return self._event_history.copy()

    def get_summary(self) -> dict[str, Any]:
        """Get summary of current progress state."""
        last = self._event_history[-1] if self._event_history else None
        return {
            "job_id": self.job_id,
            "current_stage": self._current_stage,
            "progress_percent": round(self._last_percent, 1),
            "completed_stages": sorted(self._completed_stages),
            "finished": self._finished,
            "last_event": last.event_type.value if last else None,
            "message": last.message if last else "",
            "elapsed_seconds": (datetime.utcnow() - self._start_time).total_seconds(),
            "event_count": len(self._event_history),
        }
