"""
Scene Motion Service

Turns each scene's still image into a short video clip through the polling
engine, one scene at a time.

Usage:
    pipeline = SceneMotionPipeline(JobPoller(), FalStorageUploader(), provider="kling")
    summary = await pipeline.animate_all(scenes)

    # Manual retry of one scene
    await pipeline.reanimate(scenes, scene_id="scene-3")
"""

from .pipeline import MotionEvent, MotionEventType, MotionSummary, SceneMotionPipeline
from .scene import MediaState, Scene, SceneStatus

__all__ = [
    "Scene",
    "SceneStatus",
    "MediaState",
    "SceneMotionPipeline",
    "MotionEvent",
    "MotionEventType",
    "MotionSummary",
]
