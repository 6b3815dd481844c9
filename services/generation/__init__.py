"""
Generation Orchestration

Multi-provider job submission and polling for image-to-video and
text-to-speech:
- Provider contract with fal.ai-hosted Kling, Grok and ElevenLabs models
- Registry of lazily created provider singletons
- Polling engine with per-provider budgets and cancellation
- Batch orchestrator with per-item failure isolation
"""

from .batch import BatchItemResult, BatchResult, SpeechItem, batch_text_to_speech, generate_speech, run_batch
from .models import GenerationJob, GenerationRequest, JobStatus, JobStatusReport, MediaKind, MediaResult
from .poller import JobPoller, JobProgress
from .prompting import DEFAULT_MOTION, MOTION_TYPES, compose_instruction
from .providers import GenerationProvider
from .registry import ProviderRegistry, get_registry

__all__ = [
    "GenerationRequest",
    "GenerationJob",
    "JobStatus",
    "JobStatusReport",
    "MediaKind",
    "MediaResult",
    "GenerationProvider",
    "ProviderRegistry",
    "get_registry",
    "JobPoller",
    "JobProgress",
    "BatchItemResult",
    "BatchResult",
    "SpeechItem",
    "run_batch",
    "generate_speech",
    "batch_text_to_speech",
    "compose_instruction",
    "DEFAULT_MOTION",
    "MOTION_TYPES",
]
