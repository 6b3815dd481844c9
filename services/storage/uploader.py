"""
Upload collaborators.

Turn raw bytes into a reference a vendor (or the browser) can fetch:
- FalStorageUploader: fal.ai CDN storage, used before image-to-video submits
- LocalUploadStore: files under the uploads directory, served at /uploads
"""

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

import aiofiles
import httpx

from core.config import get_config
from core.errors import InvalidRequest, ProviderSubmitError

from .media import decode_data_url, extension_for, is_data_url

logger = logging.getLogger(__name__)


class Uploader(Protocol):
    async def upload(self, data: bytes, content_type: str, file_name: Optional[str] = None) -> str:
        ...


class FalStorageUploader:
    """
    Uploads bytes to fal.ai storage.

    Two calls: initiate returns a signed upload URL plus the final public
    file URL, then the bytes are PUT to the upload URL.
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_config()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

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

    async def upload(self, data: bytes, content_type: str, file_name: Optional[str] = None) -> str:
        client = await self._get_client()
        file_name = file_name or f"upload.{extension_for(content_type)}"
        headers = {"Authorization": f"Key {self.config.api.fal_api_key}"}

        try:
            response = await client.post(
                f"{self.config.api.fal_storage_base}/storage/upload/initiate",
                json={"content_type": content_type, "file_name": file_name},
                headers=headers,
            )
            response.raise_for_status()
            target = response.json()

            put = await client.put(
                target["upload_url"],
                content=data,
                headers={"Content-Type": content_type},
            )
            put.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderSubmitError(
                f"fal storage upload failed: {type(e).__name__}: {e}",
                error_code="UPLOAD_FAILED",
                provider="fal-storage",
            )
        except (KeyError, ValueError) as e:
            raise ProviderSubmitError(
                f"fal storage returned an unexpected initiate response: {e}",
                error_code="UPLOAD_FAILED",
                provider="fal-storage",
            )

        file_url = target.get("file_url")
        if not file_url:
            raise ProviderSubmitError(
                "fal storage did not return a file URL",
                error_code="UPLOAD_FAILED",
                provider="fal-storage",
            )

        logger.info(f"Uploaded {len(data) / 1024:.1f} KB to fal storage: {file_url}")
        return file_url


class LocalUploadStore:
    """Writes uploads under uploads_dir and returns their public URL."""

    def __init__(self, config: Optional[Any] = None, folder: str = "media"):
        self.config = config or get_config()
        self.folder = folder

    @property
    def root(self) -> Path:
        return Path(self.config.storage.uploads_dir)

    def public_url(self, relative: str) -> str:
        path = f"{self.config.storage.public_prefix}/{relative}"
        base = self.config.storage.public_base_url.rstrip("/")
        return f"{base}{path}" if base else path

    def resolve(self, public_path: str) -> Path:
        """
        Map a /uploads/... reference back to a file under uploads_dir.

        Raises:
            InvalidRequest: not an uploads path, or escapes uploads_dir
        """
        prefix = self.config.storage.public_prefix.rstrip("/") + "/"
        base = self.config.storage.public_base_url.rstrip("/")
        if base and public_path.startswith(base):
            public_path = public_path[len(base):]
        if not public_path.startswith(prefix):
            raise InvalidRequest(f"Not an uploads path: {public_path}")

        root = self.root.resolve()
        candidate = (root / public_path[len(prefix):]).resolve()
        if root != candidate and root not in candidate.parents:
            raise InvalidRequest(f"Path escapes uploads directory: {public_path}")
        return candidate

    def is_local(self, locator: str) -> bool:
        prefix = self.config.storage.public_prefix.rstrip("/") + "/"
        base = self.config.storage.public_base_url.rstrip("/")
        return locator.startswith(prefix) or bool(base) and locator.startswith(base + prefix)

    async def upload(
        self,
        data: bytes,
        content_type: str,
        file_name: Optional[str] = None,
        folder: Optional[str] = None,
    ) -> str:
        folder = folder or self.folder
        name = file_name or f"{uuid.uuid4().hex}.{extension_for(content_type)}"
        target_dir = self.root / folder
        target_dir.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(target_dir / name, "wb") as f:
            await f.write(data)

        logger.info(f"Stored upload: {folder}/{name} ({len(data) / 1024:.1f} KB)")
        return self.public_url(f"{folder}/{name}")


@dataclass(frozen=True)
class UploadRule:
    """
    What a user upload endpoint accepts.

    Both the file extension and the declared content type must name one of
    the allowed formats (content types may also use mime_aliases).
    """
    media_type: str
    folder: str
    prefix: str
    formats: tuple[str, ...]
    max_bytes: int
    mime_aliases: tuple[str, ...] = ()

    def check(self, file_name: str, content_type: str, size: int) -> str:
        """
        Validate an upload.

        Returns:
            The lower-cased file extension

        Raises:
            InvalidRequest: wrong format (INVALID_REQUEST) or too large (FILE_TOO_LARGE)
        """
        extension = Path(file_name or "").suffix.lstrip(".").lower()
        main_type, _, subtype = (content_type or "").lower().partition("/")
        tokens = self.formats + self.mime_aliases
        if (
            extension not in self.formats
            or main_type != self.media_type
            or not any(token in subtype for token in tokens)
        ):
            raise InvalidRequest(f"Only {self.media_type} files are allowed ({', '.join(self.formats)})")

        if size > self.max_bytes:
            raise InvalidRequest(
                f"File too large (max {self.max_bytes // (1024 * 1024)} MB)",
                error_code="FILE_TOO_LARGE",
            )
        return extension


STYLE_IMAGE_UPLOAD = UploadRule(
    media_type="image",
    folder="styles",
    prefix="style",
    formats=("jpeg", "jpg", "png", "webp"),
    max_bytes=5 * 1024 * 1024,
)

# Browsers send mp3 as audio/mpeg and m4a as audio/mp4
AUDIO_UPLOAD = UploadRule(
    media_type="audio",
    folder="audio",
    prefix="audio",
    formats=("mp3", "wav", "ogg", "m4a"),
    max_bytes=10 * 1024 * 1024,
    mime_aliases=("mpeg", "mp4"),
)


async def normalize_source_media(
    source: str,
    uploader: Uploader,
    local_store: Optional[LocalUploadStore] = None,
) -> str:
    """
    Make a source image fetchable by a vendor.

    Remote http(s) URLs pass through. Data URLs (and bare base64) are
    decoded and uploaded. Local /uploads references are read from disk and
    uploaded, since vendors cannot reach them.

    Raises:
        InvalidRequest: empty or undecodable source
        ProviderSubmitError: the upload itself failed
    """
    if not source:
        raise InvalidRequest("source media is required")

    if source.startswith(("http://", "https://")) and not (local_store and local_store.is_local(source)):
        return source

    if local_store and local_store.is_local(source):
        path = local_store.resolve(source)
        if not path.is_file():
            raise InvalidRequest(f"Uploaded file not found: {source}")
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        suffix = path.suffix.lstrip(".").lower()
        content_type = "image/jpeg" if suffix in ("jpg", "jpeg") else f"image/{suffix or 'png'}"
        return await uploader.upload(data, content_type, path.name)

    decoded = decode_data_url(source)
    if not is_data_url(source):
        logger.debug("Source media is bare base64, assuming image/png")
    return await uploader.upload(decoded.data, decoded.content_type)
