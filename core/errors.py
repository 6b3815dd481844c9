"""
Error taxonomy for generation and rendering.

Generation errors carry a stable error_code and the provider key so the
HTTP layer and the scene pipeline can report them without string matching.
Render errors additionally carry the render job id and, where known, the
index of the scene that caused the failure.
"""

from typing import Any, Optional


class GenerationError(Exception):
    """Base class for every orchestration error."""

    error_code = "GENERATION_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, provider: Optional[str] = None):
        if error_code:
            self.error_code = error_code
        self.provider = provider
        super().__init__(message)


class InvalidRequest(GenerationError):
    """Caller-supplied data failed validation. Never retried."""
    error_code = "INVALID_REQUEST"


class UnsupportedProvider(GenerationError):
    """Provider key is not registered."""
    error_code = "UNSUPPORTED_PROVIDER"


class ProviderSubmitError(GenerationError):
    """The vendor rejected or never received the submission."""
    error_code = "SUBMIT_FAILED"


class ProviderStatusError(GenerationError):
    """A status check could not reach the vendor."""
    error_code = "STATUS_FAILED"


class GenerationFailed(GenerationError):
    """The vendor reported a terminal failure for the job."""
    error_code = "GENERATION_FAILED"

    def __init__(self, message: str, provider: Optional[str] = None, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message, provider=provider)


class GenerationTimeout(GenerationError):
    """Polling budget exhausted before the job reached a terminal state."""
    error_code = "TIMEOUT"

    def __init__(self, message: str, provider: Optional[str] = None, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message, provider=provider)


class GenerationCancelled(GenerationError):
    """A cancellation signal stopped the operation."""
    error_code = "CANCELLED"


class ResultUnavailable(GenerationError):
    """The vendor has no result for the job (not finished or unknown)."""
    error_code = "RESULT_UNAVAILABLE"


class MalformedResult(GenerationError):
    """The vendor reported success but the media locator is missing."""
    error_code = "MALFORMED_RESULT"

    def __init__(self, message: str, provider: Optional[str] = None, raw_response: Any = None):
        self.raw_response = raw_response
        super().__init__(message, provider=provider)


class RenderError(GenerationError):
    """Base class for render stage errors."""
    error_code = "RENDER_FAILED"

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        scene_index: Optional[int] = None,
    ):
        self.job_id = job_id
        self.scene_index = scene_index
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.job_id:
            context.append(f"job={self.job_id}")
        if self.scene_index is not None:
            context.append(f"scene={self.scene_index}")
        return f"{message} ({', '.join(context)})" if context else message


class AssetFetchError(RenderError):
    """A scene's media could not be downloaded or decoded."""
    error_code = "ASSET_FETCH_FAILED"


class RenderEncodeError(RenderError):
    """The composition/encode step failed."""
    error_code = "ENCODE_FAILED"

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        scene_index: Optional[int] = None,
        stderr_tail: str = "",
    ):
        self.stderr_tail = stderr_tail
        super().__init__(message, job_id=job_id, scene_index=scene_index)
