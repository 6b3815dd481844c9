"""
Progress Streaming

Job-scoped progress tracking with SSE formatting. The HTTP layer streams
tracker events to clients at /api/render/jobs/{job_id}/events.
"""

from .progress_tracker import EventType, ProgressEvent, ProgressTracker

__all__ = [
    "ProgressTracker",
    "ProgressEvent",
    "EventType",
]
