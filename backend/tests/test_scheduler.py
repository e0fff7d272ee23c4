import asyncio
import math

import pytest

from watermark_studio.core.errors import InputError, ProviderError, SourceImageError
from watermark_studio.schemas.contracts import ImageOrigin, ImageTask, RemovalResult
from watermark_studio.services.image_providers import WatermarkProvider
from watermark_studio.services.progress_store import ProgressStore
from watermark_studio.services.retry import RetryPolicy
from watermark_studio.services.scheduler import BatchScheduler, windows


async def no_sleep(_: float) -> None:
    return None


def make_tasks(n: int) -> list[ImageTask]:
    return [
        ImageTask(source_url=f"https://img.example.com/{i}.jpg", filename=f"img_{i}.jpg", origin=ImageOrigin.GALLERY)
        for i in range(n)
    ]


class FakeProvider(WatermarkProvider):
    label = "Fake"

    def __init__(self, store: ProgressStore | None = None, session_id: str = "s", fail_times: int = 0):
        super().__init__("key", None)
        self.store = store
        self.session_id = session_id
        self.fail_times = fail_times
        self.calls: dict[str, int] = {}
        self.active = 0
        self.max_active = 0
        self.completed_at_start: dict[str, int] = {}

    def _headers(self) -> dict[str, str]:
        return {}

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        self.calls[filename] = self.calls.get(filename, 0) + 1
        if self.store is not None and filename not in self.completed_at_start:
            self.completed_at_start[filename] = self.store.get(self.session_id).completed
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        if self.calls[filename] <= self.fail_times:
            raise ProviderError("temporarily unavailable")
        return RemovalResult(success=True, processed_image_url=image_url.replace(".jpg", "_clean.jpg"), job_id=filename)


class CheckingStore(ProgressStore):
    def record_result(self, session_id, result):
        snapshot = super().record_result(session_id, result)
        assert len(snapshot.results) == snapshot.completed
        return snapshot


@pytest.mark.parametrize("n, limit", [(1, 2), (5, 2), (6, 3), (7, 1), (4, 10)])
def test_every_task_runs_once_in_ordered_windows(n, limit):
    store = CheckingStore()
    provider = FakeProvider(store, "s")
    scheduler = BatchScheduler(provider, store, concurrency_limit=limit, retry_policy=RetryPolicy(delay=0), sleep=no_sleep)

    results = asyncio.run(scheduler.run("s", make_tasks(n)))

    assert len(windows(make_tasks(n), limit)) == math.ceil(n / limit)
    assert len(results) == n
    assert sorted(r.filename for r in results) == sorted(t.filename for t in make_tasks(n))
    assert all(count == 1 for count in provider.calls.values())
    assert provider.max_active <= limit
    for i in range(n):
        assert provider.completed_at_start[f"img_{i}.jpg"] >= (i // limit) * limit


def test_snapshot_completes_with_results():
    store = CheckingStore()
    scheduler = BatchScheduler(FakeProvider(), store, retry_policy=RetryPolicy(delay=0), sleep=no_sleep)

    asyncio.run(scheduler.run("batch-1", make_tasks(3)))

    snapshot = store.get("batch-1")
    assert snapshot.status == "completed"
    assert snapshot.completed == snapshot.total == 3
    assert snapshot.current == ""
    assert len(snapshot.results) == 3


def test_always_failing_task_yields_error_result_and_batch_continues():
    class HalfBroken(FakeProvider):
        async def _remove(self, image_url, filename):
            self.calls[filename] = self.calls.get(filename, 0) + 1
            if filename == "img_0.jpg":
                raise ProviderError("Fal API error: 500 - Internal Server Error")
            return RemovalResult(success=True, processed_image_url=image_url + "?clean")

    provider = HalfBroken()
    store = ProgressStore()
    scheduler = BatchScheduler(provider, store, retry_policy=RetryPolicy(max_retries=3, delay=0), sleep=no_sleep)

    results = asyncio.run(scheduler.run("s", make_tasks(3)))

    failed = [r for r in results if r.status == "error"]
    assert len(failed) == 1
    assert failed[0].processed_url == failed[0].original_url
    assert failed[0].message == "Fal API error: 500 - Internal Server Error"
    assert provider.calls["img_0.jpg"] == 4
    assert store.get("s").status == "completed"


def test_non_retryable_failure_is_not_retried():
    class Rejecting(FakeProvider):
        async def _remove(self, image_url, filename):
            self.calls[filename] = self.calls.get(filename, 0) + 1
            raise SourceImageError("Image URL must be publicly accessible")

    provider = Rejecting()
    scheduler = BatchScheduler(provider, ProgressStore(), retry_policy=RetryPolicy(delay=0), sleep=no_sleep)

    results = asyncio.run(scheduler.run("s", make_tasks(1)))

    assert results[0].status == "error"
    assert provider.calls == {"img_0.jpg": 1}


def test_late_success_matches_first_attempt_success():
    first = BatchScheduler(FakeProvider(), ProgressStore(), retry_policy=RetryPolicy(delay=0), sleep=no_sleep)
    late_provider = FakeProvider(fail_times=2)
    late = BatchScheduler(late_provider, ProgressStore(), retry_policy=RetryPolicy(delay=0), sleep=no_sleep)

    task = make_tasks(1)[0]
    assert asyncio.run(first.process_task(task)) == asyncio.run(late.process_task(task))
    assert late_provider.calls[task.filename] == 3


def test_unexpected_provider_exception_does_not_abort_batch():
    class Crashing(FakeProvider):
        async def remove_watermark(self, image_url, filename):
            raise RuntimeError("socket closed")

    scheduler = BatchScheduler(Crashing(), ProgressStore(), retry_policy=RetryPolicy(max_retries=1, delay=0), sleep=no_sleep)

    results = asyncio.run(scheduler.run("s", make_tasks(2)))

    assert [r.status for r in results] == ["error", "error"]
    assert results[0].message == "socket closed"


def test_success_without_url_counts_as_failure():
    class Empty(FakeProvider):
        async def _remove(self, image_url, filename):
            return RemovalResult(success=True, processed_image_url=None)

    scheduler = BatchScheduler(Empty(), ProgressStore(), retry_policy=RetryPolicy(max_retries=0), sleep=no_sleep)

    result = asyncio.run(scheduler.process_task(make_tasks(1)[0]))

    assert result.status == "error"
    assert result.message == "Processing failed"


def test_empty_batch_is_immediately_complete():
    store = ProgressStore()
    scheduler = BatchScheduler(FakeProvider(), store, sleep=no_sleep)

    assert asyncio.run(scheduler.run("empty", [])) == []
    assert store.get("empty").status == "completed"


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        BatchScheduler(FakeProvider(), ProgressStore(), concurrency_limit=0)


def test_concurrent_run_with_same_session_is_rejected():
    store = CheckingStore()
    scheduler = BatchScheduler(FakeProvider(), store, retry_policy=RetryPolicy(delay=0), sleep=no_sleep)

    async def both():
        return await asyncio.gather(
            scheduler.run("dup", make_tasks(4)), scheduler.run("dup", make_tasks(2)), return_exceptions=True
        )

    first, second = asyncio.run(both())

    assert len(first) == 4
    assert isinstance(second, InputError)
    snapshot = store.get("dup")
    assert snapshot.total == snapshot.completed == len(snapshot.results) == 4
