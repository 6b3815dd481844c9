"""
Shared fixtures: scripted providers, a zero-delay poller and a config whose
upload/render directories live under tmp_path.
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config, PollingConfig
from core.errors import ProviderSubmitError, ResultUnavailable
from services.generation.models import GenerationRequest, JobStatus, JobStatusReport, MediaKind, MediaResult
from services.generation.poller import JobPoller
from services.generation.providers.base import GenerationProvider
from services.generation.registry import ProviderRegistry


class ScriptedProvider(GenerationProvider):
    """
    Provider whose status checks follow a script.

    Each script step is a JobStatus, a JobStatusReport (job_id is filled in)
    or an exception to raise. The last step repeats forever.
    """

    key = "fake"
    name = "Fake Video"
    supported_durations = ("5", "10")

    def __init__(
        self,
        config=None,
        script=None,
        locator: str = "https://cdn.test/{job_id}.mp4",
        key: Optional[str] = None,
        media_kind: MediaKind = MediaKind.VIDEO,
        fail_texts=(),
    ):
        self.config = config
        self.script = list(script or [JobStatus.COMPLETED])
        self.locator = locator
        if key:
            self.key = key
        self.media_kind = media_kind
        self.requires_source_media = media_kind == MediaKind.VIDEO
        self.fail_texts = set(fail_texts)
        self.submitted: list[GenerationRequest] = []
        self.status_calls = 0
        self.closed = False

    async def _submit(self, request: GenerationRequest) -> str:
        self.submitted.append(request)
        if request.instruction_text in self.fail_texts:
            raise ProviderSubmitError("vendor rejected the request", provider=self.key)
        return f"job-{len(self.submitted)}"

    async def check_status(self, job_id: str) -> JobStatusReport:
        self.status_calls += 1
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, JobStatusReport):
            return JobStatusReport(job_id=job_id, status=step.status, progress=step.progress, error=step.error)
        return JobStatusReport(job_id=job_id, status=step)

    async def get_result(self, job_id: str) -> MediaResult:
        if job_id == "missing":
            raise ResultUnavailable(f"no result for {job_id}", provider=self.key)
        return MediaResult(
            job_id=job_id,
            locator=self.locator.format(job_id=job_id),
            kind=self.media_kind,
            provider=self.key,
        )

    async def close(self):
        self.closed = True


class FakeUploader:
    """Records uploads and hands back CDN-looking URLs."""

    def __init__(self, on_upload=None):
        self.uploads: list[tuple[bytes, str]] = []
        self.on_upload = on_upload

    async def upload(self, data: bytes, content_type: str, file_name: Optional[str] = None) -> str:
        self.uploads.append((data, content_type))
        if self.on_upload:
            self.on_upload()
        return f"https://cdn.test/upload-{len(self.uploads)}.png"


class FakeStream:
    def __init__(self, lines=()):
        self._lines = list(lines)

    async def readline(self) -> bytes:
        return self._lines.pop(0) if self._lines else b""


class FakeProcess:
    """Stands in for an ffmpeg subprocess."""

    def __init__(self, returncode: int = 0, stdout=(), stderr=(), hang: bool = False):
        self.returncode = None
        self._final = returncode
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream(stderr)
        self.killed = False
        self._hang = hang
        self._done = None

    async def wait(self) -> int:
        if self._hang:
            if self._done is None:
                self._done = asyncio.Event()
            await self._done.wait()
        if self.returncode is None:
            self.returncode = self._final
        return self.returncode

    def kill(self):
        self.killed = True
        self._final = -9
        if self._done is not None:
            self._done.set()
        self._hang = False


def make_process_factory(process: FakeProcess, write_output: bool = True):
    """Encoder factory that writes a fake MP4 to the output path (last argv)."""
    calls = []

    async def factory(*cmd, **kwargs):
        calls.append((list(cmd), kwargs))
        if write_output:
            Path(cmd[-1]).write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return process

    factory.calls = calls
    return factory


async def no_sleep(_seconds: float):
    return None


@pytest.fixture
def config(tmp_path):
    """Config with tmp upload/render dirs and instant polling budgets."""
    cfg = Config()
    cfg.api.fal_api_key = "test-key"
    cfg.api.fal_queue_base = "https://queue.test"
    cfg.api.fal_storage_base = "https://storage.test"
    cfg.storage.uploads_dir = str(tmp_path / "uploads")
    cfg.storage.public_base_url = ""
    cfg.render.jobs_dir = str(tmp_path / "uploads" / "render_jobs")
    cfg.render.download_attempts = 1
    cfg.render.keep_failed_jobs = True
    cfg.render.strict_assets = False
    cfg.prompts.motion_rules = {}
    cfg.prompts.prompt_template = None
    fast = PollingConfig(interval_seconds=0, max_attempts=5, max_consecutive_errors=2)
    cfg.polling = {key: fast for key in ("fake", "fake-tts", "kling", "elevenlabs")}
    return cfg


@pytest.fixture
def fake_provider(config):
    return ScriptedProvider(config, script=[JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED])


@pytest.fixture
def tts_provider(config):
    return ScriptedProvider(
        config,
        key="fake-tts",
        media_kind=MediaKind.AUDIO,
        locator="https://cdn.test/{job_id}.mp3",
    )


@pytest.fixture
def registry(config, fake_provider, tts_provider):
    return ProviderRegistry(
        config=config,
        factories={
            "fake": lambda cfg: fake_provider,
            "fake-tts": lambda cfg: tts_provider,
        },
    )


@pytest.fixture
def poller(registry, config):
    return JobPoller(registry=registry, config=config, sleep=no_sleep)
