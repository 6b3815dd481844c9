"""
HTTP API for video generation, TTS, scene motion and rendering.
"""

from .server import Services, app, build_services, create_app

__all__ = ["app", "create_app", "build_services", "Services"]
