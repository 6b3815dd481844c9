"""
Provider contract.

Every generation backend (image-to-video, text-to-speech) implements the same
three operations: submit, check_status and get_result. Call sites only ever
talk to this interface; vendor request shapes stay inside the subclasses.
"""

import logging
from abc import ABC, abstractmethod

from core.errors import InvalidRequest

from ..models import GenerationRequest, JobStatusReport, MediaKind, MediaResult

logger = logging.getLogger(__name__)


class GenerationProvider(ABC):
    """
    Base class for generation providers.

    Subclasses implement _submit, check_status and get_result. submit()
    validates the request first so that an invalid request never reaches the
    network.
    """

    key: str = ""
    name: str = ""
    media_kind: MediaKind = MediaKind.VIDEO

    # TTS providers synthesize from text only
    requires_source_media: bool = True

    # Whether data: URLs can be sent as-is instead of a fetchable URL
    accepts_inline_media: bool = False

    supported_durations: tuple[str, ...] = ()
    supported_aspect_ratios: tuple[str, ...] = ()

    def validate(self, request: GenerationRequest):
        """Raise InvalidRequest when required fields are absent."""
        if not request.instruction_text or not request.instruction_text.strip():
            raise InvalidRequest("instruction text is required", provider=self.key)

        if self.requires_source_media and not request.source_media:
            raise InvalidRequest("source media is required", provider=self.key)

        if (
            self.requires_source_media
            and not self.accepts_inline_media
            and request.source_media.startswith("data:")
        ):
            raise InvalidRequest(
                f"{self.name} needs a fetchable URL, upload inline media first",
                provider=self.key,
            )

        if self.supported_durations and request.duration not in self.supported_durations:
            raise InvalidRequest(
                f"duration '{request.duration}' not supported by {self.name} "
                f"(supported: {', '.join(self.supported_durations)})",
                provider=self.key,
            )

        if self.supported_aspect_ratios and request.aspect_ratio not in self.supported_aspect_ratios:
            raise InvalidRequest(
                f"aspect ratio '{request.aspect_ratio}' not supported by {self.name}",
                provider=self.key,
            )

    async def submit(self, request: GenerationRequest) -> str:
        """
        Submit a generation job.

        Returns:
            The provider-assigned job id

        Raises:
            InvalidRequest: required fields missing (no network call made)
            ProviderSubmitError: the vendor call failed
        """
        self.validate(request)
        return await self._submit(request)

    @abstractmethod
    async def _submit(self, request: GenerationRequest) -> str:
        """Send a validated request to the vendor."""

    @abstractmethod
    async def check_status(self, job_id: str) -> JobStatusReport:
        """Map the vendor's status onto the canonical states."""

    @abstractmethod
    async def get_result(self, job_id: str) -> MediaResult:
        """Fetch the media locator of a completed job."""

    async def close(self):
        """Release any held connections."""

    def describe(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "kind": self.media_kind.value,
            "supportedDurations": list(self.supported_durations),
            "supportedAspectRatios": list(self.supported_aspect_ratios),
        }
