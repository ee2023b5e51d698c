"""Unit tests for BatchDispatcher."""

import asyncio

import pytest

from nlpromql.domain.errors import BatchDispatchError, ExternalServiceError
from nlpromql.services.batch_dispatcher import BatchDispatcher, DispatchPolicy, chunked


@pytest.mark.unit
class TestChunked:
    def test_last_batch_is_shorter(self):
        batches = chunked([f"m{i:02d}" for i in range(23)], 10)

        assert [len(batch) for batch in batches] == [10, 10, 3]
        assert batches[2] == ["m20", "m21", "m22"]

    def test_empty_input(self):
        assert chunked([], 10) == []

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            chunked(["a"], 0)


@pytest.mark.unit
class TestBatchDispatcher:
    @pytest.mark.asyncio
    async def test_results_keep_unit_order(self):
        async def worker(unit):
            await asyncio.sleep(0.01 * (3 - unit))
            return unit * 10

        outcome = await BatchDispatcher().dispatch([1, 2, 3], worker, label="test", policy=DispatchPolicy.FAIL_ON_ERROR)

        assert outcome.values() == [10, 20, 30]
        assert [result.index for result in outcome.results] == [0, 1, 2]
        assert outcome.first_error is None

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self):
        finished = []

        async def worker(unit):
            if unit == 1:
                raise ExternalServiceError("llm", "bad batch")
            await asyncio.sleep(0.02)
            finished.append(unit)
            return unit

        with pytest.raises(BatchDispatchError) as exc_info:
            await BatchDispatcher().dispatch([0, 1, 2], worker, label="test", policy=DispatchPolicy.FAIL_ON_ERROR)

        assert sorted(finished) == [0, 2]
        outcome = exc_info.value.outcome
        assert outcome.total == 3
        assert [result.unit for result in outcome.successes] == [0, 2]
        assert isinstance(exc_info.value.first_error, ExternalServiceError)

    @pytest.mark.asyncio
    async def test_first_error_is_lowest_batch(self):
        async def worker(unit):
            await asyncio.sleep(0.01 * (3 - unit))
            raise ExternalServiceError("llm", f"batch {unit}")

        outcome = await BatchDispatcher().dispatch([0, 1, 2], worker, label="test", policy=DispatchPolicy.KEEP_PARTIAL)

        assert outcome.first_error.message == "batch 0"
        assert len(outcome.failures) == 3

    @pytest.mark.asyncio
    async def test_keep_partial_returns_outcome(self):
        async def worker(unit):
            if unit == "bad":
                raise ExternalServiceError("llm", "nope")
            return unit.upper()

        outcome = await BatchDispatcher().dispatch(
            ["a", "bad", "c"], worker, label="test", policy=DispatchPolicy.KEEP_PARTIAL
        )

        assert outcome.values() == ["A", "C"]
        assert len(outcome.failures) == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_external_service_error(self):
        async def worker(unit):
            await asyncio.sleep(1)
            return unit

        outcome = await BatchDispatcher().dispatch(
            ["slow"], worker, label="metric synonyms", policy=DispatchPolicy.KEEP_PARTIAL, timeout=0.01
        )

        error = outcome.first_error
        assert isinstance(error, ExternalServiceError)
        assert error.service == "metric synonyms"
        assert error.batch == "1/1"
        assert "timed out" in str(error)

    @pytest.mark.asyncio
    async def test_service_error_is_tagged_with_batch(self):
        async def worker(unit):
            if unit == "b":
                raise ExternalServiceError("openai", "rate limited")
            return unit

        outcome = await BatchDispatcher().dispatch(
            ["a", "b", "c"], worker, label="metric synonyms", policy=DispatchPolicy.KEEP_PARTIAL
        )

        error = outcome.first_error
        assert isinstance(error, ExternalServiceError)
        assert error.service == "openai"
        assert error.message == "rate limited"
        assert error.batch == "2/3"
        assert error.__cause__.batch is None

    @pytest.mark.asyncio
    async def test_service_error_keeps_existing_batch(self):
        original = ExternalServiceError("prometheus", "down", batch="query 4")

        async def worker(unit):
            raise original

        outcome = await BatchDispatcher().dispatch(["a"], worker, label="catalogs", policy=DispatchPolicy.KEEP_PARTIAL)

        assert outcome.first_error is original

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self):
        async def worker(unit):
            raise KeyError("missing")

        outcome = await BatchDispatcher().dispatch([1], worker, label="test", policy=DispatchPolicy.KEEP_PARTIAL)

        assert isinstance(outcome.first_error, ExternalServiceError)
        assert isinstance(outcome.first_error.__cause__, KeyError)

    @pytest.mark.asyncio
    async def test_empty_units(self):
        async def worker(unit):
            return unit

        outcome = await BatchDispatcher().dispatch([], worker, label="test", policy=DispatchPolicy.FAIL_ON_ERROR)

        assert outcome.total == 0
        assert outcome.values() == []

    @pytest.mark.asyncio
    async def test_max_concurrency_bounds_in_flight_batches(self):
        in_flight = 0
        peak = 0

        async def worker(unit):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return unit

        outcome = await BatchDispatcher(max_concurrency=2).dispatch(
            list(range(6)), worker, label="test", policy=DispatchPolicy.FAIL_ON_ERROR
        )

        assert peak == 2
        assert outcome.values() == list(range(6))

    @pytest.mark.asyncio
    async def test_cancellation_cancels_in_flight_workers(self):
        cancelled = []
        started = asyncio.Event()

        async def worker(unit):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(unit)
                raise
            return unit

        task = asyncio.create_task(
            BatchDispatcher().dispatch([1, 2], worker, label="test", policy=DispatchPolicy.FAIL_ON_ERROR)
        )
        await started.wait()
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert sorted(cancelled) == [1, 2]
