"""
Render asset materialization.

Resolves every scene's video / audio / image locator to a local file inside
the render job's directory. Downloads run concurrently across scenes.

Locators:
- http(s) URL: downloaded (retried on transport errors and 5xx)
- /uploads/...: used in place from the uploads directory
- data: URL: decoded to a file
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import aiofiles
import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from core.config import get_config
from core.errors import AssetFetchError, InvalidRequest

from ..storage.media import decode_data_url, is_data_url
from ..storage.uploader import LocalUploadStore

logger = logging.getLogger(__name__)


DEFAULT_EXTENSIONS = {"video": "mp4", "audio": "mp3", "image": "png"}
DATA_URL_TYPES = {"video": "video/mp4", "audio": "audio/mpeg", "image": "image/png"}


@dataclass
class RenderScene:
    """One scene as handed to the render stage."""
    id: str
    duration_seconds: float
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    narration_text: str = ""


@dataclass
class SceneAssets:
    """Local files for one scene; None where the asset is missing."""
    index: int
    scene_id: str
    duration_seconds: float
    video_path: Optional[Path] = None
    audio_path: Optional[Path] = None
    image_path: Optional[Path] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def needs_video_placeholder(self) -> bool:
        return self.video_path is None and self.image_path is None

    @property
    def needs_audio_placeholder(self) -> bool:
        return self.audio_path is None


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return False


def _extension_from_url(url: str, kind: str) -> str:
    suffix = Path(urlparse(url).path).suffix.lstrip(".").lower()
    if suffix and len(suffix) <= 5:
        return suffix
    return DEFAULT_EXTENSIONS[kind]


class AssetMaterializer:
    """
    Fetches scene media into a job directory.

    Args:
        job_dir: The render job's working directory
        job_id: Render job id (for error context)
        config: Optional config override
        transport: Optional httpx transport (tests inject MockTransport)
    """

    def __init__(
        self,
        job_dir: Path,
        job_id: str,
        config: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.job_dir = Path(job_dir)
        self.job_id = job_id
        self.config = config or get_config()
        self.local_store = LocalUploadStore(self.config)
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.render.download_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _download(self, url: str, dest: Path) -> Path:
        client = await self._get_client()

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.render.download_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async with aiofiles.open(dest, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)

        size_mb = dest.stat().st_size / 1024 / 1024
        logger.debug(f"Render {self.job_id}: downloaded {url[:80]} ({size_mb:.1f} MB)")
        return dest

    async def _write_data_url(self, locator: str, dest_stem: Path, kind: str) -> Path:
        decoded = decode_data_url(locator, default_type=DATA_URL_TYPES[kind])
        dest = dest_stem.with_suffix(f".{decoded.extension}")
        async with aiofiles.open(dest, "wb") as f:
            await f.write(decoded.data)
        return dest

    async def resolve(self, locator: str, index: int, kind: str) -> Path:
        """
        Resolve one locator to a local file.

        Raises:
            AssetFetchError: the asset could not be fetched or decoded
        """
        stem = self.job_dir / f"scene_{index}_{kind}"
        try:
            if self.local_store.is_local(locator):
                path = self.local_store.resolve(locator)
                if not path.is_file():
                    raise AssetFetchError(f"{kind} file not found: {locator}", self.job_id, index)
                return path

            if locator.startswith(("http://", "https://")):
                return await self._download(locator, stem.with_suffix(f".{_extension_from_url(locator, kind)}"))

            if is_data_url(locator):
                return await self._write_data_url(locator, stem, kind)

        except AssetFetchError:
            raise
        except (httpx.HTTPError, InvalidRequest, OSError) as e:
            raise AssetFetchError(
                f"Failed to fetch {kind} ({type(e).__name__}: {e})",
                self.job_id,
                index,
            )

        raise AssetFetchError(f"Unsupported {kind} locator: {locator[:60]}", self.job_id, index)

    async def materialize_scene(self, index: int, scene: RenderScene) -> SceneAssets:
        """
        Fetch one scene's assets.

        A failed asset becomes a placeholder with a warning; with
        strict_assets the AssetFetchError propagates instead.
        """
        assets = SceneAssets(index=index, scene_id=scene.id, duration_seconds=scene.duration_seconds)

        wanted = [("video", scene.video_url), ("audio", scene.audio_url)]
        # A still image only matters when there is no clip
        if not scene.video_url and scene.image_url:
            wanted.append(("image", scene.image_url))

        for kind, locator in wanted:
            if not locator:
                continue
            try:
                path = await self.resolve(locator, index, kind)
            except AssetFetchError as e:
                if self.config.render.strict_assets:
                    raise
                logger.warning(f"Render {self.job_id}: scene {index} {kind} replaced by placeholder: {e}")
                assets.warnings.append(str(e))
                continue
            setattr(assets, f"{kind}_path", path)

        # A failed clip download falls back to the still image when there is one
        if scene.video_url and assets.video_path is None and scene.image_url:
            try:
                assets.image_path = await self.resolve(scene.image_url, index, "image")
            except AssetFetchError as e:
                assets.warnings.append(str(e))

        return assets

    async def materialize(self, scenes: list[RenderScene]) -> list[SceneAssets]:
        """
        Fetch all scenes concurrently, returning assets in scene order.

        Raises:
            AssetFetchError: strict_assets is on and a fetch failed
                (the lowest failing scene index is reported)
        """
        results = await asyncio.gather(
            *(self.materialize_scene(i, scene) for i, scene in enumerate(scenes)),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)
