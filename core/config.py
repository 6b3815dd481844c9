"""
Configuration management for Vidai.

Centralizes all configuration including:
- Vendor API keys and endpoints
- Per-provider polling budgets
- Prompt settings from the admin panel
- Upload storage and render output locations
"""

import os
import shutil
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class APIConfig:
    """API configuration for the generation vendors."""

    # fal.ai queue + storage
    fal_api_key: str = field(default_factory=lambda: os.getenv("FAL_KEY", ""))
    fal_queue_base: str = field(
        default_factory=lambda: os.getenv("FAL_QUEUE_BASE", "https://queue.fal.run")
    )
    fal_storage_base: str = field(
        default_factory=lambda: os.getenv("FAL_STORAGE_BASE", "https://rest.alpha.fal.ai")
    )

    request_timeout_seconds: float = 30.0


@dataclass
class PollingConfig:
    """Polling budget for one provider (time budget = interval x attempts)."""
    interval_seconds: float = 3.0
    max_attempts: int = 120
    max_consecutive_errors: int = 5

    @property
    def budget_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts


def _polling_from_env(key: str, default: PollingConfig) -> PollingConfig:
    """Apply POLL_INTERVAL_<KEY> / POLL_MAX_ATTEMPTS_<KEY> overrides."""
    suffix = key.upper().replace("-", "_")
    interval = os.getenv(f"POLL_INTERVAL_{suffix}")
    attempts = os.getenv(f"POLL_MAX_ATTEMPTS_{suffix}")
    return PollingConfig(
        interval_seconds=float(interval) if interval else default.interval_seconds,
        max_attempts=int(attempts) if attempts else default.max_attempts,
        max_consecutive_errors=default.max_consecutive_errors,
    )


def _default_polling() -> dict[str, PollingConfig]:
    # Image-to-video jobs take minutes, TTS jobs take seconds
    video = PollingConfig(interval_seconds=3.0, max_attempts=120)
    tts = PollingConfig(interval_seconds=1.0, max_attempts=60)
    return {
        "kling": _polling_from_env("kling", video),
        "kling-standard": _polling_from_env("kling-standard", video),
        "grok": _polling_from_env("grok", video),
        "elevenlabs": _polling_from_env("elevenlabs", tts),
    }


@dataclass
class PromptConfig:
    """Admin-configured prompt settings (motion rules + template)."""

    # motion tag -> instruction phrase, overrides the provider's own table
    motion_rules: dict[str, str] = field(default_factory=dict)

    # e.g. "{motion}. {prompt}, cinematic lighting"
    prompt_template: Optional[str] = field(
        default_factory=lambda: os.getenv("VIDEO_PROMPT_TEMPLATE") or None
    )


@dataclass
class StorageConfig:
    """Local upload storage served under a public prefix."""
    uploads_dir: str = field(default_factory=lambda: os.getenv("UPLOADS_DIR", "./public/uploads"))
    public_prefix: str = "/uploads"
    public_base_url: str = field(default_factory=lambda: os.getenv("PUBLIC_BASE_URL", ""))


@dataclass
class RenderConfig:
    """Configuration for the ffmpeg render stage."""

    jobs_dir: str = field(
        default_factory=lambda: os.getenv("RENDER_JOBS_DIR", "./public/uploads/render_jobs")
    )
    ffmpeg_binary: str = field(default_factory=lambda: os.getenv("FFMPEG_BINARY", "ffmpeg"))

    # Output format
    width: int = 1080
    height: int = 1920
    fps: int = 30
    sample_rate: int = 44100
    channel_layout: str = "stereo"
    filler_color: str = "black"
    subtitle_style: str = (
        "FontName=Arial,FontSize=24,PrimaryColour=&H00FFFFFF,OutlineColour=&H00000000,"
        "BorderStyle=1,Outline=2,Shadow=0,MarginV=60,Alignment=2"
    )

    # Asset downloads
    download_timeout_seconds: float = 60.0
    download_attempts: int = 3

    # Working directory policy
    purge_intermediates_on_success: bool = True
    keep_failed_jobs: bool = field(
        default_factory=lambda: os.getenv("RENDER_KEEP_FAILED_JOBS", "true").lower() == "true"
    )

    # When true a scene asset that cannot be fetched aborts the render
    strict_assets: bool = False

    encode_timeout_seconds: float = 1800.0


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    polling: dict[str, PollingConfig] = field(default_factory=_default_polling)
    prompts: PromptConfig = field(default_factory=PromptConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    render: RenderConfig = field(default_factory=RenderConfig)

    default_video_provider: str = "kling"
    default_tts_provider: str = "elevenlabs"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def polling_for(self, provider: str) -> PollingConfig:
        """Polling budget for a provider key, falling back to the video default."""
        if provider in self.polling:
            return self.polling[provider]
        return _polling_from_env(provider, PollingConfig())

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.fal_api_key:
            issues.append("FAL_KEY not configured (needed for video and TTS generation)")

        if shutil.which(self.render.ffmpeg_binary) is None:
            issues.append(f"ffmpeg binary '{self.render.ffmpeg_binary}' not found on PATH")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
