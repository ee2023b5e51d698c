"""Cron-driven index rebuilds with manual triggers and a status snapshot."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
from typing import Any

from cron_converter import Cron

from nlpromql.domain.errors import BuildAlreadyRunningError, IndexBuildError
from nlpromql.services.index_builder import IndexBuilder


logger = logging.getLogger(__name__)


class IndexRefreshScheduler:
    """Own the lifecycle of periodic index builds.

    ``initialize`` publishes the persisted knowledge, optionally kicks off a
    first build, and starts the cron loop when a schedule is configured.
    """

    def __init__(
        self,
        builder: IndexBuilder,
        *,
        refresh_schedule: str | None = None,
        build_on_startup: bool = True,
        run_triggers_in_background: bool = True,
    ) -> None:
        self.builder = builder
        self.refresh_schedule = refresh_schedule or None
        self.build_on_startup = build_on_startup
        self._run_triggers_in_background = run_triggers_in_background
        self._cron = self._build_cron(self.refresh_schedule)

        self._initialized = False
        self._running = False
        self._active_trigger_task: asyncio.Task | None = None
        self._scheduler_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

        self._total_builds = 0
        self._errors = 0
        self._last_build_at: datetime | None = None
        self._next_build_at: datetime | None = None
        self._last_result: dict[str, Any] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def running(self) -> bool:
        if self._scheduler_task:
            return self._running and not self._scheduler_task.done()
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "refresh_schedule": self.refresh_schedule,
            "total_builds": self._total_builds,
            "last_build_at": self._datetime_to_iso(self._last_build_at),
            "next_build_at": self._datetime_to_iso(self._next_build_at),
            "errors": self._errors,
            "last_result": self._last_result,
        }

    async def initialize(self) -> bool:
        if self.is_initialized:
            return True

        await self.builder.load()
        self._initialized = True

        if self.build_on_startup:
            await self.trigger_build()
        if self._cron:
            self._start_scheduler_loop()
        return True

    async def stop(self) -> None:
        self._stop_event.set()
        if self._scheduler_task is not None:
            self._scheduler_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._scheduler_task
            self._scheduler_task = None

        if self._active_trigger_task is not None:
            self._active_trigger_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._active_trigger_task
            self._active_trigger_task = None

        self._running = False
        self._initialized = False

    async def trigger_build(self) -> dict:
        if not self.is_initialized:
            return {"success": False, "message": "Scheduler not initialized"}

        if self._run_triggers_in_background:
            if self.builder.is_building or (self._active_trigger_task and not self._active_trigger_task.done()):
                return {"success": False, "message": "Build already running"}

            task = asyncio.create_task(self._execute_and_record())
            self._active_trigger_task = task
            task.add_done_callback(self._on_background_build_complete)
            return {"success": True, "message": "Build trigger accepted (running asynchronously)"}

        return await self._execute_and_record()

    async def get_status_snapshot(self) -> dict:
        return {
            "scheduler_running": self.running,
            "scheduler_initialized": self.is_initialized,
            "build": self.builder.status.to_dict(),
            "knowledge": self.builder.knowledge.current.summary(),
            "stats": self.stats,
        }

    def _build_cron(self, schedule: str | None) -> Cron | None:
        if not schedule:
            return None
        try:
            return Cron(schedule)
        except Exception as exc:
            logger.error("Invalid cron schedule '%s': %s", schedule, exc)
            raise ValueError(f"Invalid cron schedule: {exc}") from exc

    def _start_scheduler_loop(self) -> None:
        if not self._cron:
            return
        if self._scheduler_task and not self._scheduler_task.done():
            return

        self._stop_event.clear()
        self._running = True
        self._scheduler_task = asyncio.create_task(self._run_scheduler_loop())

    async def _run_scheduler_loop(self) -> None:
        assert self._cron is not None

        consecutive_failures = 0
        base_retry_delay = 60
        max_retry_delay = 3600

        try:
            while not self._stop_event.is_set():
                now = datetime.now(timezone.utc)
                next_run = self._cron.schedule(start_date=now).next()
                self._next_build_at = next_run

                wait_seconds = max(0.0, min((next_run - now).total_seconds(), 60.0))
                if wait_seconds > 0:
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=wait_seconds)
                        break
                    except TimeoutError:
                        pass
                if datetime.now(timezone.utc) < next_run:
                    continue

                result = await self._execute_and_record()
                if result.get("success"):
                    consecutive_failures = 0
                else:
                    consecutive_failures += 1
                    delay = min(base_retry_delay * (2 ** (consecutive_failures - 1)), max_retry_delay)
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                        break
                    except TimeoutError:
                        continue
        except Exception:
            logger.error("Refresh loop stopped unexpectedly", exc_info=True)
        finally:
            self._running = False

    async def _execute_and_record(self) -> dict:
        try:
            status = await self.builder.build()
            result: dict[str, Any] = {"success": True, "message": "Index build completed", "build": status.to_dict()}
        except BuildAlreadyRunningError as exc:
            result = {"success": False, "message": str(exc)}
        except IndexBuildError as exc:
            result = {"success": False, "message": str(exc), "stage": exc.stage.value}
        except Exception as exc:
            logger.error("Scheduled index build failed: %s", exc, exc_info=True)
            result = {"success": False, "message": f"Index build error: {exc}"}

        self._record_result(result)
        return result

    def _record_result(self, result: dict) -> None:
        if result.get("success"):
            self._total_builds += 1
            self._last_build_at = datetime.now(timezone.utc)
            self._last_result = result
            if self._cron:
                self._next_build_at = self._cron.schedule(start_date=self._last_build_at).next()
        else:
            self._errors += 1
            self._last_result = result

    def _on_background_build_complete(self, task: asyncio.Task) -> None:
        if self._active_trigger_task is task:
            self._active_trigger_task = None
        with suppress(asyncio.CancelledError):
            task.result()

    def _datetime_to_iso(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
