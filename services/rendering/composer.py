"""
Render Composition Engine

Turns an ordered scene list (plus optional subtitles) into one MP4:

1. Materialize assets into an isolated job directory (concurrent)
2. Build the filter graph (placeholders for missing tracks)
3. Run ffmpeg once, streaming -progress output into a ProgressTracker
4. Apply the working-directory policy

Unlike batch generation, rendering is all-or-nothing: a partial video is not
a usable artifact. Failures are raised as RenderError subclasses carrying the
job id and, where ffmpeg names one, the offending scene index.
"""

import asyncio
import logging
import re
import shutil
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import aiofiles
import httpx

from core.config import get_config
from core.errors import GenerationCancelled, InvalidRequest, RenderEncodeError, RenderError

from ..streaming.progress_tracker import ProgressTracker
from .assets import AssetMaterializer, RenderScene, SceneAssets
from .filter_graph import SUBTITLE_FILENAME, FilterGraph, OutputFormat, build_ffmpeg_command, build_filter_graph
from .subtitles import build_srt

logger = logging.getLogger(__name__)

STAGE_WEIGHTS = {"assets": 30, "encode": 65, "finalize": 5}

# "Input #2," / "stream #2:0" style references to an input index
_INPUT_REF = re.compile(r"#(\d+)[:,]")


@dataclass
class RenderRequest:
    """Request to render a video composition."""
    scenes: list[RenderScene]
    subtitles: Optional[str] = None
    auto_subtitles: bool = False
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class RenderJob:
    """One render invocation and its isolated working directory."""
    job_id: str
    job_dir: Path
    output_path: Path
    assets: list[SceneAssets] = field(default_factory=list)
    subtitle_path: Optional[Path] = None
    started_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class RenderResult:
    """Result of a successful render."""
    job_id: str
    output_path: str
    public_url: str
    duration_seconds: float
    segment_count: int
    placeholder_scenes: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    processing_time_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "success": True,
            "jobId": self.job_id,
            "videoUrl": self.public_url,
            "durationSeconds": round(self.duration_seconds, 3),
            "segmentCount": self.segment_count,
            "placeholderScenes": self.placeholder_scenes,
            "warnings": self.warnings,
            "processingTimeSeconds": round(self.processing_time_seconds, 1),
        }


def parse_progress_line(line: str) -> Optional[float]:
    """Seconds of output encoded so far, from one `-progress` key=value line."""
    key, _, value = line.strip().partition("=")
    # out_time_ms is in microseconds as well
    if key in ("out_time_us", "out_time_ms"):
        try:
            return int(value) / 1_000_000
        except ValueError:
            return None
    return None


def scene_index_from_stderr(stderr: str, graph: FilterGraph, assets: list[SceneAssets]) -> Optional[int]:
    """Best effort: find the scene an ffmpeg error message refers to."""
    for scene in assets:
        for path in (scene.video_path, scene.audio_path, scene.image_path):
            if path is not None and path.name in stderr:
                return scene.index
    for match in _INPUT_REF.finditer(stderr):
        input_index = int(match.group(1))
        if input_index in graph.input_scenes:
            return graph.input_scenes[input_index]
    return None


ProcessFactory = Callable[..., Awaitable[Any]]


class RenderComposer:
    """
    Renders scene lists with ffmpeg.

    Usage:
        composer = RenderComposer()
        result = await composer.render(RenderRequest(scenes=[...], subtitles=srt))
        print(result.public_url)
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        process_factory: ProcessFactory = asyncio.create_subprocess_exec,
    ):
        """
        Args:
            config: Optional config override
            transport: httpx transport for asset downloads (tests)
            process_factory: Starts the encoder (tests pass a fake)
        """
        self.config = config or get_config()
        self._transport = transport
        self._process_factory = process_factory

    @property
    def jobs_dir(self) -> Path:
        return Path(self.config.render.jobs_dir)

    def public_url(self, job_id: str, filename: str) -> str:
        """Public URL of a file in a job directory."""
        uploads = Path(self.config.storage.uploads_dir).resolve()
        try:
            relative = self.jobs_dir.resolve().relative_to(uploads).as_posix()
        except ValueError:
            relative = "render_jobs"
        prefix = self.config.storage.public_prefix.rstrip("/")
        return f"{prefix}/{relative}/{job_id}/{filename}"

    def output_format(self, request: RenderRequest) -> OutputFormat:
        render = self.config.render
        return OutputFormat(
            width=request.width or render.width,
            height=request.height or render.height,
            fps=render.fps,
            sample_rate=render.sample_rate,
            channel_layout=render.channel_layout,
            filler_color=render.filler_color,
        )

    def validate(self, request: RenderRequest):
        """Raise InvalidRequest for unusable render requests."""
        if not request.scenes:
            raise InvalidRequest("No scenes provided")

        for index, scene in enumerate(request.scenes):
            if scene.duration_seconds is None or scene.duration_seconds <= 0:
                raise InvalidRequest(f"Scene {index} ({scene.id}) needs a positive duration")

        for name, value in (("width", request.width), ("height", request.height)):
            if value is not None and (value <= 0 or value % 2):
                raise InvalidRequest(f"{name} must be a positive even number, got {value}")

    def create_job(self, job_id: Optional[str] = None) -> RenderJob:
        job_id = job_id or str(uuid.uuid4())
        # Absolute, since ffmpeg runs with the job directory as cwd
        job_dir = (self.jobs_dir / job_id).resolve()
        job_dir.mkdir(parents=True, exist_ok=False)
        return RenderJob(
            job_id=job_id,
            job_dir=job_dir,
            output_path=job_dir / f"final_{job_id}.mp4",
        )

    async def render(
        self,
        request: RenderRequest,
        tracker: Optional[ProgressTracker] = None,
        cancel_event: Optional[asyncio.Event] = None,
        job_id: Optional[str] = None,
    ) -> RenderResult:
        """
        Render a scene list to one video file.

        Raises:
            InvalidRequest: empty scene list / bad duration / bad dimensions
            AssetFetchError: asset failure with strict_assets enabled
            RenderEncodeError: ffmpeg failed, timed out or produced nothing
            GenerationCancelled: cancel_event was set
        """
        self.validate(request)
        job = self.create_job(job_id)
        tracker = tracker or ProgressTracker(job.job_id, stage_weights=STAGE_WEIGHTS)
        if not tracker.get_history():
            tracker.started(f"Rendering {len(request.scenes)} scenes")

        logger.info(f"[Render] Starting job {job.job_id} with {len(request.scenes)} scenes")

        try:
            result = await self._run(job, request, tracker, cancel_event)
        except (GenerationCancelled, asyncio.CancelledError):
            logger.info(f"[Render] Job {job.job_id} cancelled")
            tracker.cancelled()
            self._remove_job_dir(job)
            raise
        except RenderError as e:
            if e.job_id is None:
                e.job_id = job.job_id
            logger.error(f"[Render] Job {job.job_id} failed: {e}")
            if getattr(e, "stderr_tail", ""):
                logger.error(f"[Render] ffmpeg stderr:\n{e.stderr_tail}")
            tracker.failed("Rendering failed", error=str(e), data={"scene_index": e.scene_index})
            self._cleanup_failed(job)
            raise
        except Exception as e:
            logger.error(f"[Render] Job {job.job_id} failed unexpectedly: {type(e).__name__}: {e}")
            tracker.failed("Rendering failed", error=str(e))
            self._cleanup_failed(job)
            raise RenderError(f"Rendering failed: {e}", job_id=job.job_id) from e

        tracker.completed("Render complete", data=result.to_dict())
        logger.info(
            f"[Render] Job {job.job_id} finished: {result.duration_seconds:.1f}s, "
            f"{len(result.placeholder_scenes)} placeholder scene(s)"
        )
        return result

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event], job: RenderJob):
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled(f"Render {job.job_id} cancelled")

    async def _run(
        self,
        job: RenderJob,
        request: RenderRequest,
        tracker: ProgressTracker,
        cancel_event: Optional[asyncio.Event],
    ) -> RenderResult:
        fmt = self.output_format(request)

        # 1. Assets
        tracker.stage_started("assets", "Downloading scene media")
        materializer = AssetMaterializer(job.job_dir, job.job_id, self.config, transport=self._transport)
        try:
            job.assets = await materializer.materialize(request.scenes)
        finally:
            await materializer.close()

        warnings = [w for scene in job.assets for w in scene.warnings]
        for warning in warnings:
            tracker.warning(warning)
        tracker.stage_completed("assets", data={"warnings": len(warnings)})
        self._check_cancelled(cancel_event, job)

        # 2. Subtitles + graph
        srt = request.subtitles
        if not srt and request.auto_subtitles:
            srt = build_srt(request.scenes)
        if srt:
            job.subtitle_path = job.job_dir / SUBTITLE_FILENAME
            async with aiofiles.open(job.subtitle_path, "w", encoding="utf-8") as f:
                await f.write(srt)

        graph = build_filter_graph(
            job.assets,
            fmt,
            subtitle_file=SUBTITLE_FILENAME if job.subtitle_path else None,
            subtitle_style=self.config.render.subtitle_style,
        )
        cmd = build_ffmpeg_command(
            graph,
            job.output_path,
            fmt,
            binary=self.config.render.ffmpeg_binary,
        )

        # 3. Encode
        tracker.stage_started("encode", f"Encoding {graph.segment_count} segments")
        await self._encode(cmd, job, graph, tracker, cancel_event)

        if not job.output_path.is_file() or job.output_path.stat().st_size == 0:
            raise RenderEncodeError("ffmpeg produced no output", job_id=job.job_id)
        tracker.stage_completed("encode")

        # 4. Finalize
        tracker.stage_started("finalize", "Cleaning up")
        if self.config.render.purge_intermediates_on_success:
            self._purge_intermediates(job)

        return RenderResult(
            job_id=job.job_id,
            output_path=str(job.output_path),
            public_url=self.public_url(job.job_id, job.output_path.name),
            duration_seconds=graph.total_duration,
            segment_count=graph.segment_count,
            placeholder_scenes=list(graph.placeholder_scenes),
            warnings=warnings,
            processing_time_seconds=(datetime.utcnow() - job.started_at).total_seconds(),
        )

    async def _encode(
        self,
        cmd: list[str],
        job: RenderJob,
        graph: FilterGraph,
        tracker: ProgressTracker,
        cancel_event: Optional[asyncio.Event],
    ):
        """Run ffmpeg, forwarding progress; kill it on cancel or timeout."""
        logger.debug(f"[Render] {job.job_id} command: {' '.join(cmd)}")

        try:
            process = await self._process_factory(
                *cmd,
                cwd=str(job.job_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RenderEncodeError(f"Could not start ffmpeg: {e}", job_id=job.job_id)

        stderr_tail: deque = deque(maxlen=40)

        async def read_progress():
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                seconds = parse_progress_line(line.decode(errors="replace"))
                if seconds is not None and graph.total_duration > 0:
                    percent = min(100.0, seconds / graph.total_duration * 100)
                    tracker.progress(percent, f"Encoded {seconds:.1f}s of {graph.total_duration:.1f}s")

        async def read_stderr():
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                stderr_tail.append(line.decode(errors="replace").rstrip())

        readers = [asyncio.ensure_future(read_progress()), asyncio.ensure_future(read_stderr())]
        waiter = asyncio.ensure_future(process.wait())
        watched = {waiter}
        canceller = None
        if cancel_event is not None:
            canceller = asyncio.ensure_future(cancel_event.wait())
            watched.add(canceller)

        try:
            done, _ = await asyncio.wait(
                watched,
                timeout=self.config.render.encode_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if waiter not in done:
                await self._kill(process)
                if canceller is not None and canceller in done:
                    raise GenerationCancelled(f"Render {job.job_id} cancelled")
                raise RenderEncodeError(
                    f"ffmpeg timed out after {self.config.render.encode_timeout_seconds:.0f}s",
                    job_id=job.job_id,
                    stderr_tail="\n".join(stderr_tail),
                )
            await asyncio.gather(*readers)
        except asyncio.CancelledError:
            await self._kill(process)
            raise
        finally:
            for task in [*readers, waiter] + ([canceller] if canceller else []):
                if not task.done():
                    task.cancel()

        if process.returncode != 0:
            tail = "\n".join(stderr_tail)
            raise RenderEncodeError(
                f"ffmpeg exited with code {process.returncode}",
                job_id=job.job_id,
                scene_index=scene_index_from_stderr(tail, graph, job.assets),
                stderr_tail=tail,
            )

    @staticmethod
    async def _kill(process):
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    def _purge_intermediates(self, job: RenderJob):
        """Delete everything in the job directory except the output."""
        for path in job.job_dir.iterdir():
            if path == job.output_path:
                continue
            if path.is_dir():
                shutil.rmtree(path, ignore_errors=True)
            else:
                path.unlink(missing_ok=True)

    def _remove_job_dir(self, job: RenderJob):
        shutil.rmtree(job.job_dir, ignore_errors=True)

    def _cleanup_failed(self, job: RenderJob):
        if self.config.render.keep_failed_jobs:
            logger.info(f"[Render] Keeping {job.job_dir} for inspection")
        else:
            self._remove_job_dir(job)
