"""
Generation providers.

One class per vendor model, all behind GenerationProvider. Adding a provider
means adding a class here and a factory entry in DEFAULT_FACTORIES.
"""

from .base import GenerationProvider
from .elevenlabs import DEFAULT_VOICE, ELEVENLABS_VOICES, ElevenLabsTTSProvider
from .fal import (
    FAL_STATUS_MAP,
    FalGrokVideoProvider,
    FalKlingProvider,
    FalKlingStandardProvider,
    FalQueueProvider,
)

DEFAULT_FACTORIES = {
    FalKlingProvider.key: FalKlingProvider,
    FalKlingStandardProvider.key: FalKlingStandardProvider,
    FalGrokVideoProvider.key: FalGrokVideoProvider,
    ElevenLabsTTSProvider.key: ElevenLabsTTSProvider,
}

__all__ = [
    "GenerationProvider",
    "FalQueueProvider",
    "FalKlingProvider",
    "FalKlingStandardProvider",
    "FalGrokVideoProvider",
    "ElevenLabsTTSProvider",
    "ELEVENLABS_VOICES",
    "DEFAULT_VOICE",
    "FAL_STATUS_MAP",
    "DEFAULT_FACTORIES",
]
