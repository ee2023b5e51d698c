"""Unit tests for IndexRefreshScheduler."""

import asyncio

import pytest

from nlpromql.domain.model import KnowledgeHolder
from nlpromql.services.index_builder import IndexBuilder
from nlpromql.services.refresh_scheduler import IndexRefreshScheduler
from nlpromql.utils.knowledge_store import KnowledgeStore


@pytest.fixture
def builder(tmp_path, node_series, fake_store_cls, fake_synonyms_cls):
    return IndexBuilder(
        store=fake_store_cls(node_series),
        synonyms=fake_synonyms_cls({"node_cpu_seconds_total": ["cpu"]}),
        knowledge=KnowledgeHolder(),
        persistence=KnowledgeStore(tmp_path),
    )


@pytest.mark.unit
class TestIndexRefreshScheduler:
    @pytest.mark.asyncio
    async def test_trigger_requires_initialize(self, builder):
        scheduler = IndexRefreshScheduler(builder, build_on_startup=False)

        result = await scheduler.trigger_build()

        assert result == {"success": False, "message": "Scheduler not initialized"}

    @pytest.mark.asyncio
    async def test_foreground_trigger_records_success(self, builder):
        scheduler = IndexRefreshScheduler(builder, build_on_startup=False, run_triggers_in_background=False)
        await scheduler.initialize()

        result = await scheduler.trigger_build()

        assert result["success"] is True
        assert result["build"]["state"] == "completed"
        assert scheduler.stats["total_builds"] == 1
        assert scheduler.stats["last_build_at"] is not None
        assert builder.knowledge.current.metric_index.lookup("cpu") == {"node_cpu_seconds_total"}

    @pytest.mark.asyncio
    async def test_failed_build_is_recorded_with_stage(self, tmp_path, node_series, fake_store_cls, fake_synonyms_cls):
        builder = IndexBuilder(
            store=fake_store_cls(node_series),
            synonyms=fake_synonyms_cls(fail_on={"http_requests_total"}),
            knowledge=KnowledgeHolder(),
            persistence=KnowledgeStore(tmp_path),
        )
        scheduler = IndexRefreshScheduler(builder, build_on_startup=False, run_triggers_in_background=False)
        await scheduler.initialize()

        result = await scheduler.trigger_build()

        assert result["success"] is False
        assert result["stage"] == "updating_metric_index"
        assert scheduler.stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_background_trigger_rejects_overlap(self, tmp_path, node_series, fake_store_cls, fake_synonyms_cls):
        builder = IndexBuilder(
            store=fake_store_cls(node_series),
            synonyms=fake_synonyms_cls(delay=0.05),
            knowledge=KnowledgeHolder(),
            persistence=KnowledgeStore(tmp_path),
        )
        scheduler = IndexRefreshScheduler(builder, build_on_startup=False)
        await scheduler.initialize()

        first = await scheduler.trigger_build()
        second = await scheduler.trigger_build()

        assert first["success"] is True
        assert second == {"success": False, "message": "Build already running"}

        await scheduler._active_trigger_task
        assert scheduler.stats["total_builds"] == 1

    @pytest.mark.asyncio
    async def test_initialize_builds_on_startup(self, builder):
        scheduler = IndexRefreshScheduler(builder, build_on_startup=True, run_triggers_in_background=False)

        await scheduler.initialize()

        assert scheduler.is_initialized
        assert builder.status.state.value == "completed"

    @pytest.mark.asyncio
    async def test_cron_loop_starts_and_stops(self, builder):
        scheduler = IndexRefreshScheduler(builder, refresh_schedule="0 * * * *", build_on_startup=False)

        await scheduler.initialize()
        await asyncio.sleep(0)

        assert scheduler.running
        snapshot = await scheduler.get_status_snapshot()
        assert snapshot["scheduler_running"] is True
        assert snapshot["stats"]["refresh_schedule"] == "0 * * * *"

        await scheduler.stop()

        assert not scheduler.running
        assert not scheduler.is_initialized

    def test_invalid_schedule_raises(self, builder):
        with pytest.raises(ValueError):
            IndexRefreshScheduler(builder, refresh_schedule="not a cron")

    @pytest.mark.asyncio
    async def test_status_snapshot_includes_knowledge_summary(self, builder):
        scheduler = IndexRefreshScheduler(builder, build_on_startup=True, run_triggers_in_background=False)
        await scheduler.initialize()

        snapshot = await scheduler.get_status_snapshot()

        assert snapshot["scheduler_initialized"] is True
        assert snapshot["build"]["state"] == "completed"
        assert snapshot["knowledge"]["known_metrics"] == 3
        assert snapshot["knowledge"]["catalog_metrics"] == 3
