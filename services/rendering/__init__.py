"""
Rendering Services

Video composition and rendering with ffmpeg: concurrent asset download,
filter graph construction with placeholder substitution, subtitle burn-in
and background render jobs with progress streaming.
"""

from .assets import AssetMaterializer, RenderScene, SceneAssets
from .composer import RenderComposer, RenderJob, RenderRequest, RenderResult
from .filter_graph import FilterGraph, OutputFormat, build_ffmpeg_command, build_filter_graph
from .jobs import BackgroundRender, RenderJobManager
from .subtitles import build_srt, format_srt_timestamp

__all__ = [
    "RenderComposer",
    "RenderJob",
    "RenderRequest",
    "RenderResult",
    "RenderScene",
    "SceneAssets",
    "AssetMaterializer",
    "FilterGraph",
    "OutputFormat",
    "build_filter_graph",
    "build_ffmpeg_command",
    "RenderJobManager",
    "BackgroundRender",
    "build_srt",
    "format_srt_timestamp",
]
