"""
Data model for generation jobs.

GenerationRequest is immutable once submitted. GenerationJob tracks one
provider-side job and only ever moves forward:
pending -> processing -> completed | failed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Canonical status of a generation job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True)
class GenerationRequest:
    """Request for one generation job.

    source_media is an image URL or a data URL for image-to-video; TTS
    providers ignore it and synthesize instruction_text instead.
    """
    instruction_text: str
    source_media: Optional[str] = None
    motion_hint: Optional[str] = None
    duration: str = "5"
    aspect_ratio: str = "16:9"
    provider: str = "kling"
    negative_prompt: Optional[str] = None

    # Settings collaborator overrides
    motion_rules: Optional[Mapping[str, str]] = None
    prompt_template: Optional[str] = None

    # Speech options
    voice: Optional[str] = None
    speed: Optional[float] = None
    stability: Optional[float] = None
    similarity_boost: Optional[float] = None


@dataclass(frozen=True)
class JobStatusReport:
    """One status check as seen through the provider contract."""
    job_id: str
    status: JobStatus
    progress: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class MediaResult:
    """A resolvable media locator (URL or data URL) for a completed job."""
    job_id: str
    locator: str
    kind: MediaKind = MediaKind.VIDEO
    provider: Optional[str] = None


@dataclass
class GenerationJob:
    """Client-side view of an in-flight provider job."""
    job_id: str
    provider: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    result_media: Optional[str] = None
    error_detail: Optional[str] = None
    attempts: int = 0
    submitted_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def apply(self, report: JobStatusReport) -> bool:
        """
        Apply a status report from the owning provider.

        Backward transitions and updates after a terminal state are ignored.

        Returns:
            True if the status changed
        """
        if self.status.is_terminal:
            logger.debug(f"Job {self.job_id} already {self.status.value}, ignoring {report.status.value}")
            return False

        if _STATUS_RANK[report.status] < _STATUS_RANK[self.status]:
            logger.debug(
                f"Job {self.job_id} ignoring backward transition "
                f"{self.status.value} -> {report.status.value}"
            )
            return False

        changed = report.status != self.status
        self.status = report.status

        if report.status == JobStatus.FAILED:
            self.error_detail = report.error or "Generation failed (no specific reason)"
        if report.status.is_terminal:
            self.completed_at = datetime.utcnow()

        return changed

    def attach_result(self, media: MediaResult):
        self.result_media = media.locator
        self.progress = 100
