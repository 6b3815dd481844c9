"""
Vidai Core Components

Provides foundational infrastructure for the generation orchestration layer:
- Environment-driven configuration
- Error taxonomy shared by generation, batching and rendering
"""

from .config import Config, PollingConfig, get_config
from .errors import (
    GenerationError,
    InvalidRequest,
    UnsupportedProvider,
    ProviderSubmitError,
    ProviderStatusError,
    GenerationFailed,
    GenerationTimeout,
    GenerationCancelled,
    ResultUnavailable,
    MalformedResult,
    RenderError,
    AssetFetchError,
    RenderEncodeError,
)

__all__ = [
    "Config",
    "PollingConfig",
    "get_config",
    "GenerationError",
    "InvalidRequest",
    "UnsupportedProvider",
    "ProviderSubmitError",
    "ProviderStatusError",
    "GenerationFailed",
    "GenerationTimeout",
    "GenerationCancelled",
    "ResultUnavailable",
    "MalformedResult",
    "RenderError",
    "AssetFetchError",
    "RenderEncodeError",
]
