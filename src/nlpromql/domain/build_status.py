"""Observable state of index builds.

``BuildStatus`` values are immutable; ``BuildStatusTracker`` replaces the
current value under a lock on every transition, so any number of readers can
poll ``tracker.current`` while a build is in flight without blocking it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import threading
from typing import Any
from uuid import UUID, uuid4

from nlpromql.domain.errors import InvalidBuildTransitionError


logger = logging.getLogger(__name__)


class BuildState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {BuildState.COMPLETED, BuildState.FAILED}


class BuildStage(str, Enum):
    """Stages of a build, in execution order."""

    FETCHING_NAMES = "fetching_names"
    FETCHING_DESCRIPTIONS = "fetching_descriptions"
    UPDATING_METRIC_INDEX = "updating_metric_index"
    FETCHING_LABELS = "fetching_labels"
    UPDATING_LABEL_INDEX = "updating_label_index"
    UPDATING_CATALOGS = "updating_catalogs"
    PERSISTING = "persisting"

    @property
    def position(self) -> int:
        return list(BuildStage).index(self)


@dataclass(slots=True, frozen=True)
class BuildStats:
    new_metrics: int = 0
    new_labels: int = 0
    catalog_metrics: int = 0
    failed_batches: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "new_metrics": self.new_metrics,
            "new_labels": self.new_labels,
            "catalog_metrics": self.catalog_metrics,
            "failed_batches": self.failed_batches,
        }


@dataclass(slots=True, frozen=True)
class BuildStatus:
    state: BuildState = BuildState.IDLE
    stage: BuildStage | None = None
    build_id: UUID | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None
    stats: BuildStats = field(default_factory=BuildStats)

    @property
    def is_running(self) -> bool:
        return self.state == BuildState.RUNNING

    @property
    def duration(self) -> timedelta | None:
        if self.started_at is None:
            return None
        end_time = self.finished_at or datetime.now(timezone.utc)
        return end_time - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "stage": self.stage.value if self.stage else None,
            "build_id": str(self.build_id) if self.build_id else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "stats": self.stats.to_dict(),
        }


class BuildStatusTracker:
    """Serialize writes to the build status; reads are lock-free."""

    def __init__(self) -> None:
        self._status = BuildStatus()
        self._lock = threading.Lock()

    @property
    def current(self) -> BuildStatus:
        return self._status

    def start(self) -> BuildStatus:
        with self._lock:
            if self._status.is_running:
                raise InvalidBuildTransitionError("A build is already running")
            self._status = BuildStatus(
                state=BuildState.RUNNING,
                build_id=uuid4(),
                started_at=datetime.now(timezone.utc),
            )
            return self._status

    def enter_stage(self, stage: BuildStage) -> BuildStatus:
        with self._lock:
            self._require_running(f"enter {stage.value}")
            current = self._status.stage
            if current is not None and stage.position < current.position:
                raise InvalidBuildTransitionError(f"Cannot move back from {current.value} to {stage.value}")
            self._status = replace(self._status, stage=stage)
        logger.info("Index build stage: %s", stage.value)
        return self._status

    def update_stats(self, **changes: int) -> BuildStatus:
        with self._lock:
            self._require_running("update stats")
            self._status = replace(self._status, stats=replace(self._status.stats, **changes))
            return self._status

    def complete(self) -> BuildStatus:
        with self._lock:
            self._require_running("complete")
            self._status = replace(
                self._status,
                state=BuildState.COMPLETED,
                finished_at=datetime.now(timezone.utc),
            )
            return self._status

    def fail(self, error: BaseException | str) -> BuildStatus:
        with self._lock:
            self._require_running("fail")
            self._status = replace(
                self._status,
                state=BuildState.FAILED,
                finished_at=datetime.now(timezone.utc),
                error=str(error),
            )
            return self._status

    def _require_running(self, action: str) -> None:
        if self._status.state != BuildState.RUNNING:
            raise InvalidBuildTransitionError(f"Cannot {action} from state {self._status.state.value}")
