"""
Job Submission & Polling Engine

Submits a request to a provider and polls it until it reaches a terminal
state or the polling budget (interval x max attempts) runs out. Vendor APIs
only expose a pull-based queue, so this is the single place where waiting
happens.

Progress reported to callers is advisory: it never decreases and stays
below 100 until the result has actually been fetched.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.config import PollingConfig, get_config
from core.errors import GenerationCancelled, GenerationFailed, GenerationTimeout, ProviderStatusError

from .models import GenerationJob, GenerationRequest, JobStatus, MediaResult
from .registry import ProviderRegistry, get_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobProgress:
    """One progress update for an in-flight job."""
    job_id: str
    provider: str
    status: JobStatus
    progress: int
    attempt: int
    message: str


ProgressCallback = Callable[[JobProgress], None]


def fallback_progress(attempt: int) -> int:
    """Attempt-derived estimate for providers without a native number."""
    return min(10 + attempt * 2, 90)


class JobPoller:
    """
    Runs generation requests to completion.

    Usage:
        poller = JobPoller()
        media = await poller.run_to_completion(
            GenerationRequest(instruction_text="...", source_media=url, provider="kling"),
            on_progress=lambda p: print(p.progress, p.message),
        )
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        config: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            registry: Provider registry (global one by default)
            config: Optional config override
            sleep: Awaitable used between checks (tests pass a no-op)
        """
        self.config = config or get_config()
        self.registry = registry or get_registry()
        self._sleep = sleep

    def _emit_progress(self, on_progress: Optional[ProgressCallback], event: JobProgress):
        """Emit progress update via callback."""
        if on_progress:
            try:
                on_progress(event)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    async def _pause(self, seconds: float, cancel_event: Optional[asyncio.Event]):
        """Wait between checks, returning early if cancellation is signalled."""
        if cancel_event is None:
            await self._sleep(seconds)
            return

        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], job: Optional[GenerationJob], provider: str):
        if cancel_event is not None and cancel_event.is_set():
            job_ref = f" {job.job_id}" if job else ""
            logger.info(f"{provider} job{job_ref} cancelled")
            raise GenerationCancelled(f"Generation cancelled{job_ref}", provider=provider)

    async def run_to_completion(
        self,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        policy: Optional[PollingConfig] = None,
    ) -> MediaResult:
        """
        Submit a request and poll until it completes.

        Args:
            request: The generation request
            on_progress: Called with a JobProgress after every status check
            cancel_event: When set, polling stops with GenerationCancelled
            policy: Polling budget override (per-provider config by default)

        Returns:
            MediaResult of the completed job

        Raises:
            UnsupportedProvider: unknown provider key (before any network call)
            InvalidRequest / ProviderSubmitError: from submit
            GenerationFailed: provider reported a terminal failure
            GenerationTimeout: budget exhausted without a terminal state
            GenerationCancelled: cancel_event was set
            ProviderStatusError: too many consecutive status check failures
            ResultUnavailable / MalformedResult: from get_result
        """
        provider = self.registry.get(request.provider)
        policy = policy or self.config.polling_for(request.provider)

        self._check_cancelled(cancel_event, None, provider.key)
        job_id = await provider.submit(request)
        job = GenerationJob(job_id=job_id, provider=provider.key)

        self._emit_progress(on_progress, JobProgress(
            job_id=job_id,
            provider=provider.key,
            status=job.status,
            progress=5,
            attempt=0,
            message=f"Job queued: {job_id}",
        ))
        job.progress = 5

        consecutive_errors = 0

        for attempt in range(1, policy.max_attempts + 1):
            await self._pause(policy.interval_seconds, cancel_event)
            self._check_cancelled(cancel_event, job, provider.key)
            job.attempts = attempt

            try:
                report = await provider.check_status(job_id)
                consecutive_errors = 0
            except ProviderStatusError as e:
                consecutive_errors += 1
                logger.warning(
                    f"{provider.key} poll error for {job_id} "
                    f"(attempt {consecutive_errors}/{policy.max_consecutive_errors}): {e}"
                )
                if consecutive_errors >= policy.max_consecutive_errors:
                    raise
                continue

            logger.debug(f"{provider.key} job {job_id} attempt {attempt}: {report.status.value}")
            job.apply(report)

            if job.status == JobStatus.COMPLETED:
                media = await provider.get_result(job_id)
                job.attach_result(media)
                logger.info(f"{provider.key} job {job_id} completed after {attempt} checks")
                self._emit_progress(on_progress, JobProgress(
                    job_id=job_id,
                    provider=provider.key,
                    status=job.status,
                    progress=100,
                    attempt=attempt,
                    message="Completed",
                ))
                return media

            if job.status == JobStatus.FAILED:
                logger.error(f"{provider.key} job {job_id} failed: {job.error_detail}")
                raise GenerationFailed(job.error_detail, provider=provider.key, job_id=job_id)

            estimate = report.progress if report.progress is not None else fallback_progress(attempt)
            job.progress = min(max(job.progress, estimate), 99)

            self._emit_progress(on_progress, JobProgress(
                job_id=job_id,
                provider=provider.key,
                status=job.status,
                progress=job.progress,
                attempt=attempt,
                message=f"Processing: {job.status.value}",
            ))

        logger.error(f"{provider.key} job {job_id} timed out after {policy.max_attempts} checks")
        raise GenerationTimeout(
            f"Job did not complete within {policy.budget_seconds:.0f} seconds",
            provider=provider.key,
            job_id=job_id,
        )
