"""Incremental construction of the synonym indexes and label catalogs.

A build diffs the live catalog of the monitoring store against the current
snapshot, asks the synonym provider about new names only, refreshes the
label catalogs for metrics not seen before, persists, and finally publishes
the new snapshot.

Failure policy: batches within a stage always run to completion. Successful
batches are merged into the build's working copy, but if any batch failed the
stage raises ``IndexBuildError`` and the build stops. Nothing is persisted or
published by a failed build; the working copy is attached to the error as
``partial`` for inspection only. Because diff and merge are idempotent, the
next build simply retries whatever is still missing.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
import logging
import time
from typing import TypeVar

from nlpromql.config import IndexBuilderConfig
from nlpromql.domain.build_status import BuildStage, BuildStatus, BuildStatusTracker
from nlpromql.domain.errors import (
    BatchDispatchError,
    BuildAlreadyRunningError,
    ExternalServiceError,
    IndexBuildError,
)
from nlpromql.domain.model import METRIC_NAME_LABEL, KnowledgeHolder, KnowledgeSnapshot, SynonymIndex
from nlpromql.observability.context import bind_context, trace_context
from nlpromql.observability.metrics import BUILD_DURATION, INDEX_KNOWN_NAMES, SYNONYM_BATCHES
from nlpromql.observability.tracing import create_span
from nlpromql.services.batch_dispatcher import BatchDispatcher, DispatchOutcome, DispatchPolicy, chunked
from nlpromql.services.protocols import MonitoringStore, SynonymProvider
from nlpromql.utils.knowledge_store import KnowledgeStore


logger = logging.getLogger(__name__)

T = TypeVar("T")

SynonymOutcome = DispatchOutcome[list[str], dict[str, list[str]]]


def metric_selector(metric_names: Sequence[str]) -> str:
    """Series selector matching exactly the given metric names."""
    return '{%s=~"%s"}' % (METRIC_NAME_LABEL, "|".join(metric_names))


class IndexBuilder:
    """Build and refresh the knowledge snapshot; one build at a time."""

    def __init__(
        self,
        *,
        store: MonitoringStore,
        synonyms: SynonymProvider,
        knowledge: KnowledgeHolder,
        persistence: KnowledgeStore,
        config: IndexBuilderConfig | None = None,
        dispatcher: BatchDispatcher | None = None,
    ) -> None:
        self.store = store
        self.synonyms = synonyms
        self.knowledge = knowledge
        self.persistence = persistence
        self.config = config or IndexBuilderConfig()
        self.dispatcher = dispatcher or BatchDispatcher(max_concurrency=self.config.max_concurrent_batches)
        self._build_lock = asyncio.Lock()
        self._tracker = BuildStatusTracker()

    @property
    def status(self) -> BuildStatus:
        """Latest build status; safe to read while a build is running."""
        return self._tracker.current

    @property
    def is_building(self) -> bool:
        return self._build_lock.locked()

    async def load(self) -> KnowledgeSnapshot:
        """Publish the persisted knowledge as the current snapshot."""
        snapshot = await self.persistence.load()
        self.knowledge.publish(snapshot)
        _record_index_sizes(snapshot)
        return snapshot

    async def build(
        self,
        *,
        live_metric_names: Sequence[str] | None = None,
        descriptions: Mapping[str, str] | None = None,
        live_label_names: Sequence[str] | None = None,
    ) -> BuildStatus:
        """Run one full build.

        Names and descriptions are fetched from the monitoring store unless
        given explicitly.

        Raises:
            BuildAlreadyRunningError: Another build is in flight.
            IndexBuildError: A stage failed; the published snapshot and the
                persisted documents are unchanged.
        """
        if self._build_lock.locked():
            raise BuildAlreadyRunningError("An index build is already running")

        async with self._build_lock:
            status = self._tracker.start()
            token = bind_context(build_id=str(status.build_id))
            started = time.perf_counter()
            logger.info("Index build %s started", status.build_id)
            try:
                with create_span("index.build", attributes={"build.id": str(status.build_id)}):
                    working = self.knowledge.current.working_copy()
                    await self._run_stages(working, live_metric_names, descriptions, live_label_names)
                    self.knowledge.publish(working)
            except IndexBuildError as exc:
                self._tracker.fail(exc)
                BUILD_DURATION.labels(outcome="failed").observe(time.perf_counter() - started)
                logger.error("Index build %s failed: %s", status.build_id, exc)
                raise
            except Exception as exc:
                self._tracker.fail(exc)
                BUILD_DURATION.labels(outcome="failed").observe(time.perf_counter() - started)
                logger.error("Index build %s failed unexpectedly", status.build_id, exc_info=True)
                raise
            except asyncio.CancelledError:
                self._tracker.fail("Build cancelled")
                logger.warning("Index build %s cancelled", status.build_id)
                raise
            finally:
                trace_context.reset(token)

            _record_index_sizes(working)
            BUILD_DURATION.labels(outcome="completed").observe(time.perf_counter() - started)
            status = self._tracker.complete()
            logger.info("Index build %s completed: %s", status.build_id, status.stats.to_dict())
            return status

    async def _run_stages(
        self,
        working: KnowledgeSnapshot,
        live_metric_names: Sequence[str] | None,
        descriptions: Mapping[str, str] | None,
        live_label_names: Sequence[str] | None,
    ) -> None:
        async with self._stage(BuildStage.FETCHING_NAMES, working):
            if live_metric_names is None:
                live_metric_names = await self._call_store("list metric names", self.store.list_metric_names)
            metric_names = sorted(set(live_metric_names))
            new_metrics = working.metric_index.diff(metric_names)
            self._tracker.update_stats(new_metrics=len(new_metrics))
            logger.info("%d live metrics, %d not indexed yet", len(metric_names), len(new_metrics))

        async with self._stage(BuildStage.FETCHING_DESCRIPTIONS, working):
            if descriptions is None:
                descriptions = (
                    await self._call_store("fetch metric metadata", self.store.metric_descriptions)
                    if new_metrics
                    else {}
                )

        async with self._stage(BuildStage.UPDATING_METRIC_INDEX, working):
            help_text = descriptions

            async def describe(batch: list[str]) -> dict[str, list[str]]:
                return await self.synonyms.generate_metric_synonyms({name: help_text.get(name, "") for name in batch})

            await self._update_index(
                working.metric_index,
                chunked(new_metrics, self.config.metric_synonym_batch_size),
                describe,
                kind="metric",
            )

        async with self._stage(BuildStage.FETCHING_LABELS, working):
            if live_label_names is None:
                live_label_names = await self._call_store("list label names", self.store.list_label_names)
            new_labels = working.label_index.diff(name for name in live_label_names if name != METRIC_NAME_LABEL)
            self._tracker.update_stats(new_labels=len(new_labels))
            logger.info("%d labels not indexed yet", len(new_labels))

        async with self._stage(BuildStage.UPDATING_LABEL_INDEX, working):
            await self._update_index(
                working.label_index,
                chunked(new_labels, self.config.label_synonym_batch_size),
                self.synonyms.generate_label_synonyms,
                kind="label",
            )

        async with self._stage(BuildStage.UPDATING_CATALOGS, working):
            await self._update_catalogs(working, working.metric_labels.missing_metrics(metric_names))

        async with self._stage(BuildStage.PERSISTING, working):
            await self.persistence.save(working)

    async def _update_index(
        self,
        index: SynonymIndex,
        batches: list[list[str]],
        worker: Callable[[list[str]], Awaitable[dict[str, list[str]]]],
        *,
        kind: str,
    ) -> None:
        if not batches:
            return
        logger.info("Requesting %s synonyms in %d batches", kind, len(batches))
        try:
            outcome = await self.dispatcher.dispatch(
                batches,
                worker,
                label=f"{kind} synonyms",
                policy=DispatchPolicy.FAIL_ON_ERROR,
                timeout=self.config.synonym_call_timeout,
            )
        except BatchDispatchError as exc:
            self._merge_synonyms(index, exc.outcome, kind=kind)
            raise
        self._merge_synonyms(index, outcome, kind=kind)

    def _merge_synonyms(self, index: SynonymIndex, outcome: SynonymOutcome, *, kind: str) -> None:
        for result in outcome.successes:
            response = result.value or {}
            lowered = {name.lower(): synonyms for name, synonyms in response.items()}
            for name in result.unit:
                index.merge(name, response.get(name) or lowered.get(name.lower(), []))
        failed = len(outcome.failures)
        SYNONYM_BATCHES.labels(kind=kind, status="ok").inc(len(outcome.successes))
        if failed:
            SYNONYM_BATCHES.labels(kind=kind, status="failed").inc(failed)
            self._tracker.update_stats(failed_batches=self.status.stats.failed_batches + failed)

    async def _update_catalogs(self, working: KnowledgeSnapshot, missing: list[str]) -> None:
        if not missing:
            return
        batches = chunked(missing, self.config.catalog_query_batch_size)
        logger.info("Refreshing label catalogs for %d metrics in %d queries", len(missing), len(batches))

        async def combinations(batch: list[str]) -> list[dict[str, str]]:
            return await self.store.query_label_combinations(metric_selector(batch))

        def merge(outcome: DispatchOutcome[list[str], list[dict[str, str]]]) -> None:
            for series_list in outcome.values():
                for series in series_list:
                    if working.metric_labels.add_series(series):
                        working.label_values.add_series(series)
            self._tracker.update_stats(catalog_metrics=len(working.metric_labels.metrics))

        try:
            outcome = await self.dispatcher.dispatch(
                batches,
                combinations,
                label="label combinations",
                policy=DispatchPolicy.FAIL_ON_ERROR,
                timeout=self.config.store_call_timeout,
            )
        except BatchDispatchError as exc:
            merge(exc.outcome)
            self._tracker.update_stats(
                failed_batches=self.status.stats.failed_batches + len(exc.outcome.failures)
            )
            raise
        merge(outcome)

    async def _call_store(self, action: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), self.config.store_call_timeout)
        except TimeoutError as exc:
            raise ExternalServiceError(
                "monitoring store", f"{action} timed out after {self.config.store_call_timeout}s"
            ) from exc

    @asynccontextmanager
    async def _stage(self, stage: BuildStage, working: KnowledgeSnapshot) -> AsyncIterator[None]:
        self._tracker.enter_stage(stage)
        try:
            with create_span(f"index.build.{stage.value}"):
                yield
        except BatchDispatchError as exc:
            raise IndexBuildError(stage, exc.first_error, partial=working) from exc
        except IndexBuildError:
            raise
        except Exception as exc:
            raise IndexBuildError(stage, exc, partial=working) from exc


def _record_index_sizes(snapshot: KnowledgeSnapshot) -> None:
    INDEX_KNOWN_NAMES.labels(index="metric").set(len(snapshot.metric_index.known))
    INDEX_KNOWN_NAMES.labels(index="label").set(len(snapshot.label_index.known))
