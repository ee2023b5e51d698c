"""OpenAI-backed synonym provider, query understanding and PromQL generation.

Each call forces a single function call whose parameters schema comes from a
pydantic model, and validates the returned arguments against that model.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Any, TypeVar

import httpx
from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError

from nlpromql.adapters import prompts
from nlpromql.domain.errors import ExternalServiceError, SerializationError
from nlpromql.domain.relevance import HistoryContext, RelevanceContext
from nlpromql.services.batch_dispatcher import BatchDispatcher, DispatchPolicy, chunked


logger = logging.getLogger(__name__)

SERVICE = "openai"

ModelT = TypeVar("ModelT", bound=BaseModel)


class SynonymsOutput(BaseModel):
    synonyms: dict[str, list[str]] = Field(
        default_factory=dict, description="Original name -> list of single-word synonyms"
    )


class QueryCandidatesOutput(BaseModel):
    possible_metric_names: list[str] = Field(default_factory=list)
    possible_label_names: list[str] = Field(default_factory=list)
    possible_label_values: list[str] = Field(default_factory=list)


class GeneratedQuery(BaseModel):
    promql: str
    score: float = 0.0
    metric_label_pairs: dict[str, dict[str, Any]] = Field(default_factory=dict)


class GeneratedQueriesOutput(BaseModel):
    queries: list[GeneratedQuery] = Field(default_factory=list)


def create_client(
    api_key: str,
    *,
    base_url: str | None = None,
    timeout: float = 60.0,
) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, base_url=base_url, http_client=httpx.AsyncClient(timeout=timeout))


class OpenAIToolCaller:
    """Shared plumbing: one forced function call, validated into ``output_model``."""

    def __init__(self, client: AsyncOpenAI, *, model: str, temperature: float = 0.2) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    async def call_tool(
        self,
        *,
        tool_name: str,
        description: str,
        output_model: type[ModelT],
        user_prompt: str,
        system_prompt: str | None = None,
    ) -> ModelT:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": tool_name,
                            "description": description,
                            "parameters": output_model.model_json_schema(),
                        },
                    }
                ],
                tool_choice={"type": "function", "function": {"name": tool_name}},
                temperature=self.temperature,
            )
        except APIError as exc:
            raise ExternalServiceError(SERVICE, f"{tool_name} failed: {exc}") from exc

        if not response.choices:
            raise SerializationError(f"{tool_name}: response has no choices")
        message = response.choices[0].message
        if message.tool_calls:
            arguments = message.tool_calls[0].function.arguments
        else:
            arguments = message.content or ""
        try:
            return output_model.model_validate_json(arguments)
        except ValidationError as exc:
            raise SerializationError(f"{tool_name}: unexpected arguments: {exc}") from exc


class OpenAISynonymProvider(OpenAIToolCaller):
    async def generate_metric_synonyms(self, batch: Mapping[str, str]) -> dict[str, list[str]]:
        output = await self.call_tool(
            tool_name="record_metric_synonyms",
            description="Record synonyms for each Prometheus metric name.",
            output_model=SynonymsOutput,
            user_prompt=prompts.metric_synonym_prompt(dict(batch)),
        )
        return output.synonyms

    async def generate_label_synonyms(self, batch: Sequence[str]) -> dict[str, list[str]]:
        output = await self.call_tool(
            tool_name="record_label_synonyms",
            description="Record synonyms for each Prometheus label name.",
            output_model=SynonymsOutput,
            user_prompt=prompts.label_synonym_prompt(list(batch)),
        )
        return output.synonyms


class OpenAIQueryUnderstanding(OpenAIToolCaller):
    async def extract_candidates(self, user_query: str) -> dict[str, Any]:
        output = await self.call_tool(
            tool_name="record_query_candidates",
            description="Record possible metric names, label names and label values for a question.",
            output_model=QueryCandidatesOutput,
            user_prompt=prompts.query_understanding_prompt(user_query),
        )
        return output.model_dump()


class OpenAIQueryGenerator(OpenAIToolCaller):
    """Generate PromQL from a relevance context.

    Relevant metrics and relevant labels are sent in separate batches of
    ``batch_size`` entries, all concurrently. Failed batches are logged and
    skipped; the rest are merged and ordered by score, best first.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        temperature: float = 0.1,
        batch_size: int = 5,
        timeout: float | None = None,
        dispatcher: BatchDispatcher | None = None,
    ) -> None:
        super().__init__(client, model=model, temperature=temperature)
        self.batch_size = batch_size
        self.timeout = timeout
        self.dispatcher = dispatcher or BatchDispatcher()

    async def generate(
        self,
        user_query: str,
        relevance: RelevanceContext,
        history: HistoryContext,
    ) -> list[dict[str, Any]]:
        payload = relevance.to_dict()
        metrics: dict[str, Any] = payload["relevant_metrics"]
        labels: dict[str, Any] = payload["relevant_labels"]
        relevant_history = history.to_dict()

        units: list[tuple[dict[str, Any], dict[str, Any]]] = [
            ({name: metrics[name] for name in batch}, {})
            for batch in chunked(sorted(metrics), self.batch_size)
        ]
        units += [({}, {name: labels[name] for name in batch}) for batch in chunked(sorted(labels), self.batch_size)]
        if not units:
            logger.info("No relevant metrics or labels; skipping PromQL generation")
            return []

        async def generate_batch(unit: tuple[dict[str, Any], dict[str, Any]]) -> list[GeneratedQuery]:
            batch_metrics, batch_labels = unit
            output = await self.call_tool(
                tool_name="record_promql_queries",
                description="Record candidate PromQL queries with scores and the label pairs they use.",
                output_model=GeneratedQueriesOutput,
                system_prompt=prompts.PROMQL_SYSTEM_PROMPT,
                user_prompt=prompts.promql_user_prompt(user_query, batch_metrics, batch_labels, relevant_history),
            )
            return output.queries

        outcome = await self.dispatcher.dispatch(
            units,
            generate_batch,
            label="promql generation",
            policy=DispatchPolicy.KEEP_PARTIAL,
            timeout=self.timeout,
        )
        if outcome.total and not outcome.successes:
            assert outcome.first_error is not None
            raise outcome.first_error

        queries = [query for batch in outcome.values() for query in batch]
        queries.sort(key=lambda query: query.score, reverse=True)
        return [query.model_dump() for query in queries]
