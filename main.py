#!/usr/bin/env python3
"""
Vidai - Main Entry Point

AI video generation orchestration: image-to-video and TTS through vendor
queues, scene motion and ffmpeg rendering.

Usage:
    # Start the HTTP + SSE server
    python main.py server

    # Animate every scene of a project file
    python main.py animate project.json

    # Narrate scenes
    python main.py tts-batch project.json --voice Rachel

    # Render a manifest to MP4
    python main.py render manifest.json
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("vidai")


def _load_json(path: str):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _scene_list(data) -> list[dict]:
    return data["scenes"] if isinstance(data, dict) else data


def _write_scenes(path: str, data, scenes) -> None:
    """Write updated scenes back into the project file, keeping its shape."""
    updated = [s.to_dict() for s in scenes]
    if isinstance(data, dict):
        data["scenes"] = updated
    else:
        data = updated
    Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")


def start_server(host: str = "0.0.0.0", port: int = 3001, reload: bool = False):
    """Run the FastAPI server under uvicorn."""
    import uvicorn

    logger.info(f"Vidai server running at http://{host}:{port}")
    uvicorn.run("services.api.server:app", host=host, port=port, reload=reload)


async def animate_project(path: str, provider: str, aspect_ratio: str, scene_id: str = None) -> bool:
    """
    Animate the scenes of a project file and write the result back.

    Returns:
        True when no scene failed
    """
    from core.config import get_config
    from services.generation import JobPoller, get_registry
    from services.motion import Scene, SceneMotionPipeline
    from services.storage import FalStorageUploader, LocalUploadStore

    config = get_config()
    data = _load_json(path)
    scenes = [Scene.from_dict(s) for s in _scene_list(data)]

    registry = get_registry()
    uploader = FalStorageUploader(config)
    cancel_event = asyncio.Event()

    loop = asyncio.get_event_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, cancel_event.set)

    pipeline = SceneMotionPipeline(
        JobPoller(registry=registry, config=config),
        uploader,
        provider=provider,
        aspect_ratio=aspect_ratio,
        motion_rules=config.prompts.motion_rules or None,
        prompt_template=config.prompts.prompt_template,
        local_store=LocalUploadStore(config),
        cancel_event=cancel_event,
    )

    try:
        if scene_id:
            summary = await pipeline.reanimate(scenes, scene_id)
        else:
            async for event in pipeline.run(scenes):
                print(f"[{event.progress:3d}%] {event.message}")
            summary = pipeline.summary
    finally:
        await uploader.close()
        await registry.close_all()

    _write_scenes(path, data, scenes)

    if summary.error_message:
        logger.warning(summary.error_message)
    return summary.failed_count == 0


async def narrate_project(
    path: str,
    voice: str = None,
    speed: float = None,
    provider: str = None,
    poller=None,
) -> bool:
    """
    Batch TTS over a project's scenes, writing audio locators back to the file.

    Scenes that already have audio, or have no narration, are left alone.
    Prints the per-scene outcome as JSON.
    """
    from core.config import get_config
    from services.generation import JobPoller, SpeechItem, batch_text_to_speech
    from services.motion import MediaState, Scene

    data = _load_json(path)
    scenes = [Scene.from_dict(s) for s in _scene_list(data)]

    pending = []
    for scene in scenes:
        if scene.audio_state == MediaState.READY:
            logger.info(f"Scene {scene.id}: audio already generated, skipping")
        elif not scene.narration_text.strip():
            logger.info(f"Scene {scene.id}: no narration, skipping")
        else:
            pending.append(scene)

    owns_poller = poller is None
    poller = poller or JobPoller()
    provider = provider or get_config().default_tts_provider
    items = [SpeechItem(id=s.id, text=s.narration_text) for s in pending]
    try:
        result = await batch_text_to_speech(items, voice=voice, speed=speed, provider=provider, poller=poller)
    finally:
        if owns_poller:
            await poller.registry.close_all()

    by_id = {s.id: s for s in pending}
    for item in result.items:
        if item.success:
            by_id[item.item_id].attach_audio(item.result)
    for failure in result.failures():
        logger.warning(f"Scene {failure.item_id}: narration failed: {failure.error}")

    _write_scenes(path, data, scenes)

    print(json.dumps(result.to_dict(id_key="sceneId", result_key="audioUrl"), indent=2))
    return result.success


async def render_manifest(path: str, output: str = None) -> bool:
    """Render a manifest ({scenes, srtContent, width, height}) with live CLI progress."""
    from services.api.server import RenderBody
    from services.rendering import RenderComposer
    from services.streaming import ProgressTracker
    from services.rendering.composer import STAGE_WEIGHTS

    body = RenderBody(**_load_json(path))
    composer = RenderComposer()
    request = body.to_request()
    composer.validate(request)

    tracker = ProgressTracker("cli-render", stage_weights=STAGE_WEIGHTS)

    # Console output callback
    def print_progress(event):
        print(event.to_cli_line())

    tracker.on_event(print_progress)

    cancel_event = asyncio.Event()
    loop = asyncio.get_event_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, cancel_event.set)

    result = await composer.render(request, tracker=tracker, cancel_event=cancel_event)

    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(result.output_path).replace(output)
        logger.info(f"Video written to {output}")
    else:
        logger.info(f"Video ready: {result.public_url}")
    for warning in result.warnings:
        logger.warning(warning)
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Vidai - AI Video Generation Orchestration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the API server
    python main.py server --port 3001

    # Animate scenes with Grok instead of Kling
    python main.py animate project.json --provider grok

    # Retry one scene
    python main.py animate project.json --scene scene-3

    # Render to a file
    python main.py render manifest.json -o out/final.mp4
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the HTTP + SSE server")
    server_parser.add_argument("--host", default="0.0.0.0", help="Host to bind")
    server_parser.add_argument("--port", type=int, default=3001, help="Port to bind")
    server_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # Animate command
    animate_parser = subparsers.add_parser("animate", help="Generate scene video clips")
    animate_parser.add_argument("project", help="Project JSON (scene list or {scenes: [...]})")
    animate_parser.add_argument("--provider", "-p", default="kling", help="Video provider key")
    animate_parser.add_argument("--aspect-ratio", default="16:9", help="Clip aspect ratio")
    animate_parser.add_argument("--scene", help="Regenerate a single scene by id")

    # TTS command
    tts_parser = subparsers.add_parser("tts-batch", help="Narrate every scene")
    tts_parser.add_argument("project", help="Project JSON")
    tts_parser.add_argument("--voice", help="Voice name")
    tts_parser.add_argument("--speed", type=float, help="Speech speed multiplier")

    # Render command
    render_parser = subparsers.add_parser("render", help="Render a manifest to MP4")
    render_parser.add_argument("manifest", help="Render manifest JSON")
    render_parser.add_argument("--output", "-o", help="Copy the result to this path")

    # Providers command
    subparsers.add_parser("providers", help="List registered providers")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from core.errors import GenerationError

    try:
        if args.command == "server":
            start_server(host=args.host, port=args.port, reload=args.reload)

        elif args.command == "animate":
            ok = asyncio.run(animate_project(args.project, args.provider, args.aspect_ratio, args.scene))
            sys.exit(0 if ok else 1)

        elif args.command == "tts-batch":
            ok = asyncio.run(narrate_project(args.project, voice=args.voice, speed=args.speed))
            sys.exit(0 if ok else 1)

        elif args.command == "render":
            ok = asyncio.run(render_manifest(args.manifest, args.output))
            sys.exit(0 if ok else 1)

        elif args.command == "providers":
            from services.generation import get_registry

            for entry in get_registry().describe():
                print(f"{entry['key']:16} {entry['kind']:6} {entry['name']}")

    except GenerationError as e:
        logger.error(f"{e.error_code}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
