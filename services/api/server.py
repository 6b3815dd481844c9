"""
Vidai HTTP + SSE Server

FastAPI server that provides:
- POST /api/video/generate - Submit an image-to-video job
- GET /api/video/status/{request_id} - Job status (canonical states)
- GET /api/video/result/{request_id} - Video URL of a completed job
- GET /api/video/providers - Registered providers
- POST /api/tts/generate - Text-to-speech, waits for the audio
- POST /api/tts/batch - Text-to-speech for many scenes
- POST /api/tts/submit, GET /api/tts/status/{request_id}, GET /api/tts/result/{request_id}
- GET /api/tts/voices - Voice catalogue
- POST /api/upload/style, POST /api/upload/audio - User uploads, served under /uploads
- POST /api/motion/animate - Scene motion pipeline as an SSE stream
- POST /api/render - Synchronous render
- POST /api/render/jobs (+ GET, GET events, DELETE) - Background renders
- GET /health - Health check

Usage:
    python -m uvicorn services.api.server:app --host 0.0.0.0 --port 3001

    # Or via main.py
    python main.py server
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from core.config import get_config
from core.errors import (
    GenerationError,
    GenerationTimeout,
    InvalidRequest,
    MalformedResult,
    ProviderStatusError,
    ProviderSubmitError,
    RenderError,
    ResultUnavailable,
    UnsupportedProvider,
)
from services.generation import (
    MOTION_TYPES,
    GenerationRequest,
    JobPoller,
    ProviderRegistry,
    SpeechItem,
    batch_text_to_speech,
    generate_speech,
    get_registry,
)
from services.generation.providers import ELEVENLABS_VOICES
from services.motion import Scene, SceneMotionPipeline
from services.rendering import RenderComposer, RenderJobManager, RenderRequest, RenderScene
from services.storage import (
    AUDIO_UPLOAD,
    STYLE_IMAGE_UPLOAD,
    FalStorageUploader,
    LocalUploadStore,
    UploadRule,
    normalize_source_media,
)

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 30.0


@dataclass
class Services:
    """Collaborators shared by all routes."""
    config: Any
    registry: ProviderRegistry
    poller: JobPoller
    uploader: Any
    local_store: LocalUploadStore
    composer: RenderComposer
    render_jobs: RenderJobManager


def build_services(config: Optional[Any] = None) -> Services:
    config = config or get_config()
    registry = get_registry()
    composer = RenderComposer(config)
    return Services(
        config=config,
        registry=registry,
        poller=JobPoller(registry=registry, config=config),
        uploader=FalStorageUploader(config),
        local_store=LocalUploadStore(config),
        composer=composer,
        render_jobs=RenderJobManager(composer),
    )


# Request/Response Models
class GenerateVideoBody(BaseModel):
    """Request to generate a video clip from an image."""
    imageData: Optional[str] = None
    imageUrl: Optional[str] = None
    prompt: Optional[str] = None
    motionType: Optional[str] = None
    duration: str = "5"
    aspectRatio: str = "16:9"
    provider: Optional[str] = None
    negativePrompt: Optional[str] = None


class TTSBody(BaseModel):
    text: Optional[str] = None
    voice: Optional[str] = None
    stability: Optional[float] = Field(default=None, ge=0, le=1)
    similarityBoost: Optional[float] = Field(default=None, ge=0, le=1)
    speed: Optional[float] = Field(default=None, gt=0)


class BatchScene(BaseModel):
    id: str
    text: str


class BatchTTSBody(BaseModel):
    scenes: Optional[list[BatchScene]] = None
    voice: Optional[str] = None
    speed: Optional[float] = Field(default=None, gt=0)


class RenderSceneBody(BaseModel):
    id: str
    durationSec: float
    videoUrl: Optional[str] = None
    audioUrl: Optional[str] = None
    imageUrl: Optional[str] = None
    narrationText: str = ""


class RenderBody(BaseModel):
    scenes: list[RenderSceneBody] = []
    srtContent: Optional[str] = None
    autoSubtitles: bool = False
    width: Optional[int] = None
    height: Optional[int] = None

    def to_request(self) -> RenderRequest:
        return RenderRequest(
            scenes=[
                RenderScene(
                    id=s.id,
                    duration_seconds=s.durationSec,
                    video_url=s.videoUrl,
                    audio_url=s.audioUrl,
                    image_url=s.imageUrl,
                    narration_text=s.narrationText,
                )
                for s in self.scenes
            ],
            subtitles=self.srtContent,
            auto_subtitles=self.autoSubtitles,
            width=self.width,
            height=self.height,
        )


class MotionBody(BaseModel):
    scenes: list[dict]
    provider: Optional[str] = None
    aspectRatio: str = "16:9"
    duration: str = "5"
    sceneId: Optional[str] = None
    motionRules: Optional[dict[str, str]] = None
    promptTemplate: Optional[str] = None


def _status_for(error: GenerationError) -> int:
    if isinstance(error, InvalidRequest) and error.error_code == "FILE_TOO_LARGE":
        return 413
    if isinstance(error, (InvalidRequest, UnsupportedProvider)):
        return 400
    if isinstance(error, ResultUnavailable):
        return 404
    if isinstance(error, GenerationTimeout):
        return 504
    if isinstance(error, ProviderSubmitError) and error.error_code == "HTTP_429":
        return 429
    if isinstance(error, (ProviderSubmitError, ProviderStatusError, MalformedResult)):
        return 502
    return 500


def error_body(error: GenerationError) -> dict:
    body = {"success": False, "error": error.error_code, "message": str(error)}
    if error.provider:
        body["provider"] = error.provider
    if isinstance(error, RenderError):
        body["job_id"] = error.job_id
        body["scene_index"] = error.scene_index
    return body


def _format_sse(data: dict, event: Optional[str] = None) -> str:
    """Format data as SSE event."""
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(data, default=str)}\n\n"


def _sse_response(stream) -> StreamingResponse:
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    services = _services(request)
    issues = services.config.validate()
    return {
        "status": "healthy" if not issues else "degraded",
        "providers": services.registry.supported(),
        "issues": issues,
        "timestamp": datetime.utcnow().isoformat(),
    }


# ============================================================================
# VIDEO
# ============================================================================


@router.post("/api/video/generate")
async def submit_video_generation(body: GenerateVideoBody, request: Request):
    """Submit an image-to-video job; poll /api/video/status for progress."""
    services = _services(request)
    provider_key = body.provider or services.config.default_video_provider
    provider = services.registry.get(provider_key)

    source = body.imageData or body.imageUrl
    if not source:
        raise InvalidRequest("imageData is required", provider=provider_key)
    if not body.prompt:
        raise InvalidRequest("prompt is required", provider=provider_key)

    image_url = await normalize_source_media(source, services.uploader, services.local_store)

    prompts = services.config.prompts
    request_id = await provider.submit(GenerationRequest(
        instruction_text=body.prompt,
        source_media=image_url,
        motion_hint=body.motionType,
        duration=body.duration,
        aspect_ratio=body.aspectRatio,
        provider=provider_key,
        negative_prompt=body.negativePrompt,
        motion_rules=prompts.motion_rules or None,
        prompt_template=prompts.prompt_template,
    ))

    logger.info(f"Video generation submitted: {request_id} ({provider_key})")
    return {"success": True, "requestId": request_id, "provider": provider_key}


@router.get("/api/video/status/{request_id}")
async def get_video_status(request_id: str, request: Request, provider: Optional[str] = Query(default=None)):
    services = _services(request)
    video_provider = services.registry.get(provider or services.config.default_video_provider)
    report = await video_provider.check_status(request_id)
    return {
        "requestId": report.job_id,
        "status": report.status.value,
        "progress": report.progress,
        "error": report.error,
    }


@router.get("/api/video/result/{request_id}")
async def get_video_result(request_id: str, request: Request, provider: Optional[str] = Query(default=None)):
    services = _services(request)
    video_provider = services.registry.get(provider or services.config.default_video_provider)
    media = await video_provider.get_result(request_id)
    return {"requestId": media.job_id, "status": "completed", "videoUrl": media.locator}


@router.get("/api/video/providers")
async def get_supported_providers(request: Request):
    services = _services(request)
    return {
        "providers": services.registry.supported(),
        "default": services.config.default_video_provider,
        "motionTypes": list(MOTION_TYPES),
    }


# ============================================================================
# TTS
# ============================================================================


@router.post("/api/tts/generate")
async def generate_tts(body: TTSBody, request: Request):
    services = _services(request)
    if not body.text:
        raise InvalidRequest("text is required")

    logger.info(f"TTS generation requested: voice={body.voice}, text length={len(body.text)}")
    media = await generate_speech(
        body.text,
        voice=body.voice,
        speed=body.speed,
        stability=body.stability,
        similarity_boost=body.similarityBoost,
        provider=services.config.default_tts_provider,
        poller=services.poller,
    )
    return {"success": True, "audioUrl": media.locator, "requestId": media.job_id}


@router.post("/api/tts/submit")
async def submit_tts(body: TTSBody, request: Request):
    """Submit a TTS job without waiting; poll /api/tts/status for progress."""
    services = _services(request)
    if not body.text:
        raise InvalidRequest("text is required")

    provider_key = services.config.default_tts_provider
    request_id = await services.registry.get(provider_key).submit(GenerationRequest(
        instruction_text=body.text,
        provider=provider_key,
        voice=body.voice,
        speed=body.speed,
        stability=body.stability,
        similarity_boost=body.similarityBoost,
    ))

    logger.info(f"TTS submitted: {request_id} ({provider_key})")
    return {"success": True, "requestId": request_id}


@router.get("/api/tts/status/{request_id}")
async def get_tts_status(request_id: str, request: Request):
    services = _services(request)
    report = await services.registry.get(services.config.default_tts_provider).check_status(request_id)
    return {
        "requestId": report.job_id,
        "status": report.status.value,
        "progress": report.progress,
        "error": report.error,
    }


@router.get("/api/tts/result/{request_id}")
async def get_tts_result(request_id: str, request: Request):
    services = _services(request)
    media = await services.registry.get(services.config.default_tts_provider).get_result(request_id)
    return {"requestId": media.job_id, "status": "completed", "audioUrl": media.locator}


@router.post("/api/tts/batch")
async def generate_batch_tts(body: BatchTTSBody, request: Request):
    services = _services(request)
    if body.scenes is None:
        raise InvalidRequest("scenes array is required")

    result = await batch_text_to_speech(
        [SpeechItem(id=s.id, text=s.text) for s in body.scenes],
        voice=body.voice,
        speed=body.speed,
        provider=services.config.default_tts_provider,
        poller=services.poller,
    )
    return result.to_dict(id_key="sceneId", result_key="audioUrl")


@router.get("/api/tts/voices")
async def get_supported_voices():
    return {"voices": ELEVENLABS_VOICES}


# ============================================================================
# UPLOAD
# ============================================================================


async def _store_upload(services: Services, upload: Optional[UploadFile], rule: UploadRule) -> dict:
    if upload is None:
        raise InvalidRequest("No file uploaded")

    # One byte past the limit is enough to reject
    data = await upload.read(rule.max_bytes + 1)
    extension = rule.check(upload.filename, upload.content_type, len(data))

    filename = f"{rule.prefix}-{uuid.uuid4().hex}.{extension}"
    url = await services.local_store.upload(data, upload.content_type, filename, folder=rule.folder)
    return {"success": True, "imageUrl": url, "filename": filename}


@router.post("/api/upload/style")
async def upload_style_image(request: Request, image: Optional[UploadFile] = File(default=None)):
    """Store a style reference image (jpeg/png/webp, 5 MB max)."""
    return await _store_upload(_services(request), image, STYLE_IMAGE_UPLOAD)


@router.post("/api/upload/audio")
async def upload_audio(request: Request, audio: Optional[UploadFile] = File(default=None)):
    """Store a user-supplied audio track (mp3/wav/ogg/m4a, 10 MB max)."""
    return await _store_upload(_services(request), audio, AUDIO_UPLOAD)


# ============================================================================
# MOTION
# ============================================================================


@router.post("/api/motion/animate")
async def animate_scenes(body: MotionBody, request: Request):
    """
    Run the scene motion pipeline, streaming one SSE event per step.

    The final "finished" event carries the updated scenes and the summary.
    """
    services = _services(request)
    scenes = [Scene.from_dict(s) for s in body.scenes]
    provider_key = body.provider or services.config.default_video_provider
    services.registry.get(provider_key)

    if body.sceneId and not any(s.id == body.sceneId for s in scenes):
        raise InvalidRequest(f"Unknown scene: {body.sceneId}")

    prompts = services.config.prompts
    cancel_event = asyncio.Event()
    pipeline = SceneMotionPipeline(
        services.poller,
        services.uploader,
        provider=provider_key,
        aspect_ratio=body.aspectRatio,
        duration=body.duration,
        motion_rules=body.motionRules or prompts.motion_rules or None,
        prompt_template=body.promptTemplate or prompts.prompt_template,
        local_store=services.local_store,
        cancel_event=cancel_event,
    )

    async def event_stream():
        try:
            events = pipeline.run(
                scenes,
                only=body.sceneId,
                force=bool(body.sceneId),
                default_motion="auto" if body.sceneId else None,
            )
            async for event in events:
                payload = event.to_dict()
                if event.event_type.value == "finished":
                    payload["summary"] = pipeline.summary.to_dict()
                    payload["scenes"] = [s.to_dict() for s in scenes]
                yield _format_sse(payload, event=event.event_type.value)
        finally:
            # Client went away: stop polling the vendor
            cancel_event.set()

    return _sse_response(event_stream())


# ============================================================================
# RENDER
# ============================================================================


@router.post("/api/render")
async def render_video(body: RenderBody, request: Request):
    services = _services(request)
    result = await services.composer.render(body.to_request())
    return result.to_dict()


@router.post("/api/render/jobs", status_code=202)
async def start_render_job(body: RenderBody, request: Request):
    services = _services(request)
    job = services.render_jobs.start(body.to_request())
    return {
        "jobId": job.job_id,
        "status": job.status,
        "statusUrl": f"/api/render/jobs/{job.job_id}",
        "eventsUrl": f"/api/render/jobs/{job.job_id}/events",
    }


@router.get("/api/render/jobs/{job_id}")
async def get_render_job(job_id: str, request: Request):
    job = _services(request).render_jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Render job not found")
    return job.to_dict()


@router.get("/api/render/jobs/{job_id}/events")
async def render_job_events(job_id: str, request: Request):
    """
    SSE stream of render progress.

    Late subscribers get the history replayed first. A heartbeat comment is
    sent every 30 s while nothing happens.
    """
    job = _services(request).render_jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Render job not found")

    async def event_stream():
        queue = job.tracker.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
                    if job.tracker.finished and queue.empty():
                        break
                    continue

                yield event.to_sse()
                if event.is_terminal:
                    break
        finally:
            job.tracker.unsubscribe(queue)

    return _sse_response(event_stream())


@router.delete("/api/render/jobs/{job_id}")
async def cancel_render_job(job_id: str, request: Request):
    manager = _services(request).render_jobs
    job = manager.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Render job not found")
    if not manager.cancel(job_id):
        raise HTTPException(status_code=409, detail=f"Render job already {job.status}")
    return {"jobId": job_id, "status": "cancelling"}


async def _generation_error_handler(request: Request, error: GenerationError):
    status = _status_for(error)
    if status >= 500:
        logger.error(f"[ERROR] {request.method} {request.url.path}: {error}")
    else:
        logger.warning(f"[ERROR] {request.method} {request.url.path}: {error}")
    return JSONResponse(status_code=status, content=error_body(error))


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the application; tests pass their own Services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        logger.info("Starting Vidai server...")
        Path(app.state.services.config.storage.uploads_dir).mkdir(parents=True, exist_ok=True)
        for issue in app.state.services.config.validate():
            logger.warning(f"Config issue: {issue}")

        yield

        logger.info("Shutting down Vidai server...")
        await app.state.services.render_jobs.shutdown()
        await app.state.services.registry.close_all()
        if hasattr(app.state.services.uploader, "close"):
            await app.state.services.uploader.close()

    app = FastAPI(
        title="Vidai API",
        description="AI video generation orchestration and rendering",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(GenerationError, _generation_error_handler)
    app.include_router(router)

    storage = (services.config if services else get_config()).storage
    app.mount(
        storage.public_prefix,
        StaticFiles(directory=storage.uploads_dir, check_dir=False),
        name="uploads",
    )
    return app


app = create_app()
