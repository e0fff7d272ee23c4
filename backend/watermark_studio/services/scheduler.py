"""Windowed batch runner: one provider call per image, bounded concurrency."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

from watermark_studio.core.errors import ProviderError
from watermark_studio.schemas.contracts import ImageTask, ProcessingResult
from watermark_studio.services.image_providers import WatermarkProvider
from watermark_studio.services.progress_store import ProgressStore
from watermark_studio.services.retry import RetryPolicy, run_with_policy

logger = logging.getLogger(__name__)


def windows(tasks: Sequence[ImageTask], size: int) -> List[Sequence[ImageTask]]:
    return [tasks[i : i + size] for i in range(0, len(tasks), size)]


class BatchScheduler:
    def __init__(
        self,
        provider: WatermarkProvider,
        store: ProgressStore,
        concurrency_limit: int = 2,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.provider = provider
        self.store = store
        self.concurrency_limit = concurrency_limit
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def run(self, session_id: str, tasks: Sequence[ImageTask]) -> List[ProcessingResult]:
        self.store.create(session_id, len(tasks))
        logger.info(
            "Session %s: processing %d images, %d at a time, retry delays %s",
            session_id,
            len(tasks),
            self.concurrency_limit,
            self.retry_policy.delays(),
        )
        results: List[ProcessingResult] = []
        try:
            for window in windows(tasks, self.concurrency_limit):
                results.extend(
                    await asyncio.gather(*(self._process(session_id, task) for task in window))
                )
        except Exception:
            logger.exception("Session %s: batch aborted", session_id)
            self.store.mark_error(session_id)
            raise
        logger.info("Session %s: done, %d succeeded", session_id, sum(r.status == "success" for r in results))
        return results

    async def _process(self, session_id: str, task: ImageTask) -> ProcessingResult:
        self.store.mark_current(session_id, task.filename)
        result = await self.process_task(task)
        self.store.record_result(session_id, result)
        return result

    async def process_task(self, task: ImageTask) -> ProcessingResult:
        async def attempt():
            outcome = await self.provider.remove_watermark(task.source_url, task.filename)
            if not outcome.success or not outcome.processed_image_url:
                raise ProviderError(outcome.error or "Processing failed", retryable=outcome.retryable)
            return outcome

        try:
            outcome = await run_with_policy(attempt, self.retry_policy, sleep=self._sleep)
        except Exception as exc:
            logger.warning("Giving up on %s: %s", task.filename, exc)
            return ProcessingResult.failed(task, str(exc) or "Unknown error")
        return ProcessingResult(
            original_url=task.source_url,
            processed_url=outcome.processed_image_url,
            filename=task.filename,
            status="success",
            message=outcome.message,
            job_id=outcome.job_id,
        )
