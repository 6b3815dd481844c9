"""
fal.ai queue providers.

All fal models share one queue REST API:
    POST {queue}/{model_id}                          -> {"request_id": ...}
    GET  {queue}/{app_id}/requests/{id}/status       -> {"status": "IN_QUEUE" | ...}
    GET  {queue}/{app_id}/requests/{id}              -> model output

app_id is the first two segments of the model id (owner/app); the status and
result endpoints reject the full model path.
"""

import json
import logging
from typing import Any, Optional

import httpx

from core.config import get_config
from core.errors import MalformedResult, ProviderStatusError, ProviderSubmitError, ResultUnavailable

from ..models import GenerationRequest, JobStatus, JobStatusReport, MediaKind, MediaResult
from ..prompting import compose_instruction
from .base import GenerationProvider

logger = logging.getLogger(__name__)


# fal queue status -> canonical status; anything else is treated as failed
FAL_STATUS_MAP = {
    "IN_QUEUE": JobStatus.PENDING,
    "IN_PROGRESS": JobStatus.PROCESSING,
    "COMPLETED": JobStatus.COMPLETED,
}

DEFAULT_NEGATIVE_PROMPT = "blur, distort, low quality, watermark"


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts, None if any hop is missing."""
    for part in path.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(part)
    return data


def describe_shape(data: Any, limit: int = 500) -> str:
    """Top-level keys plus a truncated dump, for diagnosing vendor responses."""
    keys = sorted(data.keys()) if isinstance(data, dict) else type(data).__name__
    try:
        dump = json.dumps(data, default=str)
    except (TypeError, ValueError):
        dump = repr(data)
    return f"keys={keys} body={dump[:limit]}"


class FalQueueProvider(GenerationProvider):
    """
    Base for providers hosted on fal.ai's queue API.

    Subclasses set model_id, media_paths and build_input(); everything else
    (auth, submit, status mapping, result extraction) lives here.
    """

    model_id: str = ""

    # Dotted paths tried in order when extracting the media locator
    media_paths: tuple[str, ...] = ("video.url",)

    # Progress reported while the job is running
    processing_progress: int = 50

    def __init__(
        self,
        config: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Optional config override
            transport: Optional httpx transport (tests inject MockTransport)
        """
        self.config = config or get_config()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def app_id(self) -> str:
        return "/".join(self.model_id.split("/")[:2])

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.api.request_timeout_seconds,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict:
        return {
            "Authorization": f"Key {self.config.api.fal_api_key}",
            "Content-Type": "application/json",
        }

    def build_input(self, request: GenerationRequest) -> dict:
        raise NotImplementedError

    async def _submit(self, request: GenerationRequest) -> str:
        client = await self._get_client()
        payload = self.build_input(request)
        url = f"{self.config.api.fal_queue_base}/{self.model_id}"

        logger.info(f"{self.name} submit: model={self.model_id}, prompt={request.instruction_text[:50]}...")

        try:
            response = await client.post(url, json=payload, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderSubmitError(
                f"{self.name} submit rejected: HTTP {e.response.status_code}: {e.response.text[:200]}",
                error_code=f"HTTP_{e.response.status_code}",
                provider=self.key,
            )
        except httpx.HTTPError as e:
            raise ProviderSubmitError(
                f"{self.name} submit failed: {type(e).__name__}: {e}",
                provider=self.key,
            )
        except ValueError as e:
            raise ProviderSubmitError(
                f"{self.name} submit returned invalid JSON: {e}",
                provider=self.key,
            )

        request_id = data.get("request_id") if isinstance(data, dict) else None
        if not request_id:
            logger.error(f"{self.name} submit response without request_id: {describe_shape(data)}")
            raise ProviderSubmitError(
                f"No request_id in {self.name} response",
                error_code="NO_REQUEST_ID",
                provider=self.key,
            )

        logger.info(f"{self.name} job queued: {request_id}")
        return request_id

    def _progress_for(self, status: JobStatus, data: dict) -> Optional[int]:
        if status == JobStatus.COMPLETED:
            return 100
        if status == JobStatus.PENDING:
            position = data.get("queue_position")
            if isinstance(position, int):
                return max(5, 30 - position * 5)
            return 5
        if status == JobStatus.PROCESSING:
            return self.processing_progress
        return None

    async def check_status(self, job_id: str) -> JobStatusReport:
        client = await self._get_client()
        url = f"{self.config.api.fal_queue_base}/{self.app_id}/requests/{job_id}/status"

        try:
            response = await client.get(url, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ProviderStatusError(
                f"{self.name} status check failed: {type(e).__name__}: {e}",
                provider=self.key,
            )
        except ValueError as e:
            raise ProviderStatusError(
                f"{self.name} status returned invalid JSON: {e}",
                provider=self.key,
            )

        if not isinstance(data, dict):
            data = {}
        raw_status = data.get("status", "")
        status = FAL_STATUS_MAP.get(raw_status, JobStatus.FAILED)

        error = None
        if status == JobStatus.FAILED:
            error = data.get("error") or f"Unexpected {self.name} status: {raw_status or 'missing'}"
            logger.warning(f"{self.name} job {job_id} mapped to failed: {describe_shape(data)}")

        return JobStatusReport(
            job_id=job_id,
            status=status,
            progress=self._progress_for(status, data),
            error=error,
        )

    def extract_locator(self, data: Any) -> Optional[str]:
        for path in self.media_paths:
            value = dig(data, path)
            if isinstance(value, str) and value:
                return value
        return None

    async def get_result(self, job_id: str) -> MediaResult:
        client = await self._get_client()
        url = f"{self.config.api.fal_queue_base}/{self.app_id}/requests/{job_id}"

        try:
            response = await client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderStatusError(
                f"{self.name} result fetch failed: {type(e).__name__}: {e}",
                provider=self.key,
            )

        if 400 <= response.status_code < 500:
            raise ResultUnavailable(
                f"{self.name} has no result for {job_id} (HTTP {response.status_code})",
                provider=self.key,
            )
        if response.status_code >= 500:
            raise ProviderStatusError(
                f"{self.name} result fetch failed: HTTP {response.status_code}",
                error_code=f"HTTP_{response.status_code}",
                provider=self.key,
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text

        locator = self.extract_locator(data)
        if not locator:
            logger.error(f"{self.name} result for {job_id} has no media locator: {describe_shape(data)}")
            raise MalformedResult(
                f"{self.name} reported success without a media locator",
                provider=self.key,
                raw_response=data,
            )

        logger.info(f"{self.name} job {job_id} completed: {locator[:80]}")
        return MediaResult(job_id=job_id, locator=locator, kind=self.media_kind, provider=self.key)


class FalKlingProvider(FalQueueProvider):
    """Kling v1.6 Pro image-to-video."""

    key = "kling"
    name = "Kling Pro"
    model_id = "fal-ai/kling-video/v1.6/pro/image-to-video"
    media_paths = ("video.url", "data.video.url", "output.video.url", "data.url", "url")
    processing_progress = 60
    supported_durations = ("5", "10")
    supported_aspect_ratios = ("16:9", "9:16", "1:1")

    MOTION_PHRASES = {
        "zoom_in": "Camera slowly zooms in",
        "zoom_out": "Camera gradually zooms out",
        "pan_left": "Camera pans smoothly from right to left",
        "pan_right": "Camera pans smoothly from left to right",
        "static": "Static camera with subtle ambient movement",
        "Cinematic Slow Motion": "Cinematic slow motion with smooth camera movement",
    }

    def build_input(self, request: GenerationRequest) -> dict:
        prompt = compose_instruction(
            request.instruction_text,
            request.motion_hint,
            self.MOTION_PHRASES,
            motion_rules=request.motion_rules,
            template=request.prompt_template,
        )
        return {
            "image_url": request.source_media,
            "prompt": prompt,
            "duration": request.duration,
            "aspect_ratio": request.aspect_ratio,
            "negative_prompt": request.negative_prompt or DEFAULT_NEGATIVE_PROMPT,
            "cfg_scale": 0.5,
        }


class FalKlingStandardProvider(FalKlingProvider):
    """Kling v1.6 Standard: cheaper, same request shape as Pro."""

    key = "kling-standard"
    name = "Kling Standard"
    model_id = "fal-ai/kling-video/v1.6/standard/image-to-video"


class FalGrokVideoProvider(FalQueueProvider):
    """xAI Grok Imagine image-to-video."""

    key = "grok"
    name = "Grok Imagine"
    model_id = "xai/grok-imagine-video/image-to-video"
    media_paths = ("video.url", "data.video.url")
    processing_progress = 50
    supported_durations = ("5", "10")

    MOTION_PHRASES = {
        "zoom_in": "Camera zooms in",
        "zoom_out": "Camera zooms out",
        "pan_left": "Camera pans left",
        "pan_right": "Camera pans right",
        "static": "Static camera, minimal movement",
        "Cinematic Slow Motion": "Cinematic slow motion",
    }

    def build_input(self, request: GenerationRequest) -> dict:
        prompt = compose_instruction(
            request.instruction_text,
            request.motion_hint,
            self.MOTION_PHRASES,
            motion_rules=request.motion_rules,
            template=request.prompt_template,
        )
        # Grok clips are 5 s or 9 s
        return {
            "image_url": request.source_media,
            "prompt": prompt,
            "duration": 9 if request.duration == "10" else 5,
            "resolution": "720p",
        }
