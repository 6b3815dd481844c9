"""
ElevenLabs Turbo v2.5 text-to-speech via the fal.ai queue.
"""

import logging
from typing import Optional

from core.errors import InvalidRequest

from ..models import GenerationRequest, MediaKind
from .fal import FalQueueProvider

logger = logging.getLogger(__name__)


DEFAULT_VOICE = "Rachel"

ELEVENLABS_VOICES = [
    {"id": "Rachel", "name": "Rachel", "description": "Calm, professional female voice", "gender": "female"},
    {"id": "Aria", "name": "Aria", "description": "Bright, friendly female voice", "gender": "female"},
    {"id": "Sarah", "name": "Sarah", "description": "Soft, warm female voice", "gender": "female"},
    {"id": "Laura", "name": "Laura", "description": "Natural, relaxed female voice", "gender": "female"},
    {"id": "Domi", "name": "Domi", "description": "Young, energetic female voice", "gender": "female"},
    {"id": "Adam", "name": "Adam", "description": "Deep, professional male voice", "gender": "male"},
    {"id": "Antoni", "name": "Antoni", "description": "Warm, friendly male voice", "gender": "male"},
    {"id": "Josh", "name": "Josh", "description": "Young, dynamic male voice", "gender": "male"},
    {"id": "Arnold", "name": "Arnold", "description": "Deep, weighty male voice", "gender": "male"},
    {"id": "Sam", "name": "Sam", "description": "Calm, steady male voice", "gender": "male"},
]

VOICE_IDS = frozenset(v["id"] for v in ELEVENLABS_VOICES)


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else value


class ElevenLabsTTSProvider(FalQueueProvider):
    """Text-to-speech; instruction_text is the text to speak."""

    key = "elevenlabs"
    name = "ElevenLabs Turbo v2.5"
    model_id = "fal-ai/elevenlabs/tts/turbo-v2.5"
    media_kind = MediaKind.AUDIO
    media_paths = ("audio.url", "data.audio.url")
    processing_progress = 50
    requires_source_media = False

    def validate(self, request: GenerationRequest):
        super().validate(request)
        if request.voice and request.voice not in VOICE_IDS:
            raise InvalidRequest(f"Unknown voice '{request.voice}'", provider=self.key)

    def build_input(self, request: GenerationRequest) -> dict:
        return {
            "text": request.instruction_text,
            "voice": request.voice or DEFAULT_VOICE,
            "stability": _or_default(request.stability, 0.5),
            "similarity_boost": _or_default(request.similarity_boost, 0.75),
            "speed": _or_default(request.speed, 1.0),
            "apply_text_normalization": "auto",
        }
