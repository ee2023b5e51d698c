"""Collaborator interfaces consumed by the index builder and query pipeline."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable


if TYPE_CHECKING:
    from nlpromql.domain.relevance import HistoryContext, RelevanceContext


@runtime_checkable
class SynonymProvider(Protocol):
    """Generates vocabulary for canonical metric and label names."""

    async def generate_metric_synonyms(  # pragma: no cover - Protocol only
        self, batch: Mapping[str, str]
    ) -> dict[str, list[str]]:
        """Map each metric name (keyed to its description) to its synonyms."""

    async def generate_label_synonyms(  # pragma: no cover - Protocol only
        self, batch: Sequence[str]
    ) -> dict[str, list[str]]:
        """Map each label name to its synonyms."""


@runtime_checkable
class MonitoringStore(Protocol):
    """Read-only view of the time-series store's catalog."""

    async def list_metric_names(self) -> list[str]:  # pragma: no cover - Protocol only
        """Return every metric name currently known to the store."""

    async def list_label_names(self) -> list[str]:  # pragma: no cover - Protocol only
        """Return every label name currently known to the store."""

    async def metric_descriptions(self) -> dict[str, str]:  # pragma: no cover - Protocol only
        """Return help text keyed by metric name."""

    async def query_label_combinations(  # pragma: no cover - Protocol only
        self, selector: str
    ) -> list[dict[str, str]]:
        """Return the label set (including ``__name__``) of every series matching ``selector``."""


@runtime_checkable
class QueryUnderstanding(Protocol):
    async def extract_candidates(self, user_query: str) -> dict[str, Any]:  # pragma: no cover - Protocol only
        """Return ``possible_metric_names``, ``possible_label_names`` and ``possible_label_values``."""


@runtime_checkable
class QueryGenerator(Protocol):
    async def generate(  # pragma: no cover - Protocol only
        self,
        user_query: str,
        relevance: RelevanceContext,
        history: HistoryContext,
    ) -> list[dict[str, Any]]:
        """Return candidate PromQL queries, best first."""
