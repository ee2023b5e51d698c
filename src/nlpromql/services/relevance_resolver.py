"""Turn candidate tokens into a scored relevance context.

Scoring:

- first mention of a metric or label: ``first_mention_score`` (1.0)
- every further mention of the same label (or metric): ``+repeat_mention_weight`` (0.5)
- a value token found among a label's catalog values: ``+value_match_weight`` (0.2)
- a value token that corroborates a label nobody mentioned creates a context
  scored ``value_match_weight`` holding just that value

Tokens that resolve to nothing are dropped silently.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging
import time
from typing import Any

from nlpromql.config import ResolverConfig
from nlpromql.domain.model import KnowledgeHolder, KnowledgeSnapshot, ValueSet
from nlpromql.domain.relevance import CandidateTokens, HistoryContext, LabelContext, RelevanceContext
from nlpromql.observability.metrics import RESOLVE_LATENCY
from nlpromql.observability.tracing import create_span


logger = logging.getLogger(__name__)


class RelevanceResolver:
    """Resolve candidate tokens against the current knowledge snapshot.

    Each call captures one snapshot up front, so a build publishing a new
    snapshot mid-call cannot change the result.
    """

    def __init__(self, knowledge: KnowledgeHolder, config: ResolverConfig | None = None) -> None:
        self.knowledge = knowledge
        self.config = config or ResolverConfig()

    def resolve(
        self,
        candidates: CandidateTokens | Mapping[str, Any] | None,
        snapshot: KnowledgeSnapshot | None = None,
    ) -> tuple[RelevanceContext, HistoryContext]:
        """Build the relevance and history context for one user query.

        Raises:
            SerializationError: The history table holds a malformed entry.
        """
        if not isinstance(candidates, CandidateTokens):
            candidates = CandidateTokens.from_payload(candidates)
        snapshot = snapshot or self.knowledge.current

        started = time.perf_counter()
        outcome = "error"
        try:
            with create_span(
                "relevance.resolve",
                attributes={
                    "candidates.metrics": len(candidates.metric_tokens),
                    "candidates.labels": len(candidates.label_tokens),
                    "candidates.values": len(candidates.value_tokens),
                },
            ):
                relevance = RelevanceContext()
                for metric in self._resolve_metrics(snapshot, candidates.metric_tokens, relevance):
                    labels = relevance.relevant_metrics[metric]
                    self._resolve_metric_labels(snapshot, metric, candidates.label_tokens, labels)
                    self._resolve_metric_values(snapshot, metric, candidates.value_tokens, labels)
                self._resolve_labels(snapshot, candidates.label_tokens, relevance.relevant_labels)
                self._resolve_values(snapshot, candidates.value_tokens, relevance.relevant_labels)
                history = self._recall_history(snapshot, candidates)
            outcome = "ok"
        finally:
            RESOLVE_LATENCY.labels(outcome=outcome).observe(time.perf_counter() - started)

        logger.debug(
            "Resolved %d metrics, %d labels, %d history entries",
            len(relevance.relevant_metrics),
            len(relevance.relevant_labels),
            len(history.assignments),
        )
        return relevance, history

    def _resolve_metrics(
        self, snapshot: KnowledgeSnapshot, tokens: Iterable[str], relevance: RelevanceContext
    ) -> list[str]:
        """Record metric mentions; return newly resolved metrics in first-mention order."""
        resolved: list[str] = []
        for token in tokens:
            for metric in snapshot.metric_index.lookup(token):
                if metric in relevance.relevant_metrics:
                    relevance.metric_scores[metric] = round(
                        relevance.metric_scores[metric] + self.config.repeat_mention_weight, 6
                    )
                    continue
                relevance.relevant_metrics[metric] = {}
                relevance.metric_scores[metric] = self.config.first_mention_score
                resolved.append(metric)
        return resolved

    def _resolve_metric_labels(
        self,
        snapshot: KnowledgeSnapshot,
        metric: str,
        tokens: Iterable[str],
        contexts: dict[str, LabelContext],
    ) -> None:
        for token in tokens:
            for label in snapshot.label_index.lookup(token):
                if not snapshot.metric_labels.has_label(metric, label):
                    continue
                self._mention(contexts, label, snapshot.metric_labels.values_for(metric, label))

    def _resolve_metric_values(
        self,
        snapshot: KnowledgeSnapshot,
        metric: str,
        tokens: Iterable[str],
        contexts: dict[str, LabelContext],
    ) -> None:
        for token in tokens:
            for label in snapshot.metric_labels.labels_for(metric):
                for value in snapshot.metric_labels.values_for(metric, label).find_casefold(token):
                    self._corroborate(contexts, label, value)

    def _resolve_labels(
        self, snapshot: KnowledgeSnapshot, tokens: Iterable[str], contexts: dict[str, LabelContext]
    ) -> None:
        for token in tokens:
            for label in snapshot.label_index.lookup(token):
                self._mention(contexts, label, snapshot.label_values.values_for(label))

    def _resolve_values(
        self, snapshot: KnowledgeSnapshot, tokens: Iterable[str], contexts: dict[str, LabelContext]
    ) -> None:
        for token in tokens:
            for label in snapshot.label_values.label_names():
                for value in snapshot.label_values.values_for(label).find_casefold(token):
                    self._corroborate(contexts, label, value)

    def _recall_history(self, snapshot: KnowledgeSnapshot, candidates: CandidateTokens) -> HistoryContext:
        history = HistoryContext()
        if not len(snapshot.history):
            return history
        for metric_token in candidates.metric_tokens:
            for label_token in candidates.label_tokens:
                assignment = snapshot.history.lookup(metric_token, label_token)
                if assignment:
                    history.merge(assignment)
        return history

    def _mention(self, contexts: dict[str, LabelContext], label: str, values: ValueSet) -> None:
        context = contexts.get(label)
        if context is None:
            contexts[label] = LabelContext.from_catalog(
                values, score=self.config.first_mention_score, limit=self.config.sample_value_limit
            )
        else:
            context.bump(self.config.repeat_mention_weight)

    def _corroborate(self, contexts: dict[str, LabelContext], label: str, value: str) -> None:
        context = contexts.get(label)
        if context is None:
            contexts[label] = LabelContext.from_value(value, score=self.config.value_match_weight)
            return
        context.add_matched_value(value, limit=self.config.sample_value_limit)
        context.bump(self.config.value_match_weight)
