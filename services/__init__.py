"""
Vidai Services

Core services for the video generation pipeline:
- generation: Provider contract, registry, polling engine and batch TTS
- motion: Scene image-to-video pipeline
- rendering: ffmpeg composition of scene media into one video
- storage: Data URL decoding, vendor uploads and local /uploads paths
- streaming: Job progress tracking and SSE formatting
- api: FastAPI HTTP + SSE surface
"""
