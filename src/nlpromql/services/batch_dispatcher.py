"""Concurrent fan-out of independent batches with a single consolidation step."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Generic, TypeVar

from nlpromql.domain.errors import BatchDispatchError, ExternalServiceError, NlPromqlError


logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class DispatchPolicy(str, Enum):
    """What ``dispatch`` does when some batches fail.

    Either way every batch runs to completion first.
    """

    FAIL_ON_ERROR = "fail_on_error"
    KEEP_PARTIAL = "keep_partial"


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into contiguous batches of ``size`` (last may be shorter)."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


@dataclass(frozen=True, slots=True)
class BatchResult(Generic[U, R]):
    index: int
    unit: U
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class DispatchOutcome(Generic[U, R]):
    label: str
    results: tuple[BatchResult[U, R], ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successes(self) -> list[BatchResult[U, R]]:
        return [result for result in self.results if result.ok]

    @property
    def failures(self) -> list[BatchResult[U, R]]:
        return [result for result in self.results if not result.ok]

    @property
    def first_error(self) -> BaseException | None:
        """Error of the lowest-numbered failed batch."""
        for result in self.results:
            if result.error is not None:
                return result.error
        return None

    def values(self) -> list[R]:
        return [result.value for result in self.results if result.ok]  # type: ignore[misc]


class BatchDispatcher:
    """Run one worker per unit concurrently and collect every result.

    The dispatcher never short-circuits: a failing batch does not cancel its
    siblings. Cancelling the awaiting task cancels all in-flight workers.
    There is no retry.
    """

    def __init__(self, *, max_concurrency: int | None = None) -> None:
        self.max_concurrency = max_concurrency

    async def dispatch(
        self,
        units: Sequence[U],
        worker: Callable[[U], Awaitable[R]],
        *,
        label: str,
        policy: DispatchPolicy,
        timeout: float | None = None,
    ) -> DispatchOutcome[U, R]:
        """Run ``worker`` over ``units`` and consolidate the results.

        Raises:
            BatchDispatchError: With ``FAIL_ON_ERROR``, after all batches
                finished, when at least one failed.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        total = len(units)
        tasks = [
            asyncio.create_task(self._run_unit(index, total, unit, worker, label, timeout, semaphore))
            for index, unit in enumerate(units)
        ]
        results: list[BatchResult[U, R]] = list(await asyncio.gather(*tasks)) if tasks else []
        outcome: DispatchOutcome[U, R] = DispatchOutcome(label=label, results=tuple(results))

        failures = outcome.failures
        if failures:
            logger.warning("%s: %d of %d batches failed", label, len(failures), total)
            if policy is DispatchPolicy.FAIL_ON_ERROR:
                first_error = outcome.first_error
                assert first_error is not None
                raise BatchDispatchError(label, first_error, outcome) from first_error
        else:
            logger.debug("%s: %d batches completed", label, total)
        return outcome

    async def _run_unit(
        self,
        index: int,
        total: int,
        unit: U,
        worker: Callable[[U], Awaitable[R]],
        label: str,
        timeout: float | None,
        semaphore: asyncio.Semaphore | None,
    ) -> BatchResult[U, R]:
        batch = f"{index + 1}/{total}"
        try:
            if semaphore is None:
                value = await asyncio.wait_for(worker(unit), timeout)
            else:
                async with semaphore:
                    value = await asyncio.wait_for(worker(unit), timeout)
        except TimeoutError:
            error: BaseException = ExternalServiceError(label, f"timed out after {timeout}s", batch=batch)
        except ExternalServiceError as exc:
            error = exc
            if exc.batch is None:
                error = ExternalServiceError(exc.service, exc.message, batch=batch)
                error.__cause__ = exc
        except NlPromqlError as exc:
            error = exc
        except Exception as exc:
            error = ExternalServiceError(label, _describe(exc), batch=batch)
            error.__cause__ = exc
        else:
            return BatchResult(index=index, unit=unit, value=value)

        logger.warning("%s batch %s failed: %s", label, batch, error)
        return BatchResult(index=index, unit=unit, error=error)


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__
