"""Use case: answer a natural-language monitoring question with PromQL."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any
from uuid import uuid4

from nlpromql.domain.relevance import CandidateTokens, HistoryContext, RelevanceContext
from nlpromql.observability.context import bind_context, trace_context
from nlpromql.observability.tracing import create_span
from nlpromql.services.protocols import QueryGenerator, QueryUnderstanding
from nlpromql.services.relevance_resolver import RelevanceResolver


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QueryAnswer:
    user_query: str
    candidates: CandidateTokens
    relevance: RelevanceContext
    history: HistoryContext
    queries: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_query": self.user_query,
            "candidates": {
                "possible_metric_names": list(self.candidates.metric_tokens),
                "possible_label_names": list(self.candidates.label_tokens),
                "possible_label_values": list(self.candidates.value_tokens),
            },
            **self.relevance.to_dict(),
            "relevant_history": self.history.to_dict(),
            "queries": self.queries,
        }


async def answer_query(
    user_query: str,
    *,
    understanding: QueryUnderstanding,
    resolver: RelevanceResolver,
    generator: QueryGenerator,
) -> QueryAnswer:
    """Extract candidates, resolve them against the current snapshot, generate PromQL.

    Collaborator failures propagate as ``ExternalServiceError`` or
    ``SerializationError``.
    """
    query_id = uuid4().hex[:12]
    token = bind_context(query_id=query_id)
    try:
        with create_span("query.answer", attributes={"query.id": query_id}):
            payload = await understanding.extract_candidates(user_query)
            candidates = CandidateTokens.from_payload(payload)
            relevance, history = resolver.resolve(candidates)
            if relevance.is_empty and history.is_empty:
                logger.info("No known metrics or labels matched the query")
            queries = await generator.generate(user_query, relevance, history)
    finally:
        trace_context.reset(token)

    logger.info(
        "Answered query %s with %d PromQL candidates (%d metrics, %d labels)",
        query_id,
        len(queries),
        len(relevance.relevant_metrics),
        len(relevance.relevant_labels),
    )
    return QueryAnswer(
        user_query=user_query,
        candidates=candidates,
        relevance=relevance,
        history=history,
        queries=queries,
    )
