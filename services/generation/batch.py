"""
Batch Orchestrator

Fans out independent generation requests concurrently and records every
item's outcome on its own. A failing item never cancels or taints its
siblings; partial success is the normal outcome for bulk generation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from .models import GenerationRequest, MediaResult
from .poller import JobPoller, ProgressCallback

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one batch item."""
    item_id: str
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass(frozen=True)
class BatchResult:
    """Aggregate outcome; items keep input order for display only."""
    items: tuple[BatchItemResult, ...] = field(default_factory=tuple)

    @property
    def total_count(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def success(self) -> bool:
        # An empty batch succeeds trivially
        return self.success_count == self.total_count

    def failures(self) -> list[BatchItemResult]:
        return [item for item in self.items if not item.success]

    def to_dict(self, id_key: str = "itemId", result_key: str = "result") -> dict:
        results = []
        for item in self.items:
            entry = {id_key: item.item_id, "success": item.success}
            if item.success:
                entry[result_key] = item.result
            else:
                entry["error"] = item.error
            results.append(entry)
        return {
            "success": self.success,
            "totalCount": self.total_count,
            "successCount": self.success_count,
            "results": results,
        }


def _locator(value: Any) -> Optional[str]:
    if isinstance(value, MediaResult):
        return value.locator
    return value


async def run_batch(
    items: Iterable[T],
    per_item: Callable[[T], Awaitable[Any]],
    item_id: Callable[[T], str] = str,
) -> BatchResult:
    """
    Run per_item for every item concurrently.

    Args:
        items: Batch items
        per_item: Coroutine function producing a media locator (or MediaResult)
        item_id: Extracts the id reported for an item

    Returns:
        BatchResult with one entry per item, in input order
    """
    items = list(items)

    async def run_one(item: T) -> BatchItemResult:
        key = item_id(item)
        try:
            value = await per_item(item)
        except Exception as e:
            # Exception only: task cancellation must still propagate
            logger.warning(f"Batch item {key} failed: {type(e).__name__}: {e}")
            return BatchItemResult(
                item_id=key,
                success=False,
                error=str(e) or type(e).__name__,
                error_code=getattr(e, "error_code", None),
            )

        locator = _locator(value)
        if not locator:
            return BatchItemResult(item_id=key, success=False, error="No media returned")
        return BatchItemResult(item_id=key, success=True, result=locator)

    outcomes = await asyncio.gather(*(run_one(item) for item in items))
    result = BatchResult(items=tuple(outcomes))

    logger.info(f"Batch finished: {result.success_count}/{result.total_count} succeeded")
    return result


async def generate_speech(
    text: str,
    voice: Optional[str] = None,
    speed: Optional[float] = None,
    stability: Optional[float] = None,
    similarity_boost: Optional[float] = None,
    provider: str = "elevenlabs",
    poller: Optional[JobPoller] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> MediaResult:
    """Synthesize one text and wait for the audio locator."""
    poller = poller or JobPoller()
    request = GenerationRequest(
        instruction_text=text,
        provider=provider,
        voice=voice,
        speed=speed,
        stability=stability,
        similarity_boost=similarity_boost,
    )
    return await poller.run_to_completion(request, on_progress=on_progress)


@dataclass(frozen=True)
class SpeechItem:
    """One scene's narration for batch TTS."""
    id: str
    text: str


async def batch_text_to_speech(
    scenes: Iterable[SpeechItem],
    voice: Optional[str] = None,
    speed: Optional[float] = None,
    provider: str = "elevenlabs",
    poller: Optional[JobPoller] = None,
) -> BatchResult:
    """
    Synthesize narration for many scenes at once.

    Every scene is launched together; a vendor error on one scene shows up
    as that scene's error entry.
    """
    poller = poller or JobPoller()
    scenes = list(scenes)
    logger.info(f"Batch TTS requested: {len(scenes)} scenes, voice={voice}")

    async def synthesize(scene: SpeechItem) -> MediaResult:
        return await generate_speech(
            scene.text,
            voice=voice,
            speed=speed,
            provider=provider,
            poller=poller,
        )

    return await run_batch(scenes, synthesize, item_id=lambda scene: scene.id)
