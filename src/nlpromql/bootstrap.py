"""Wire settings, adapters and services into a runnable runtime."""

from __future__ import annotations

from dataclasses import dataclass
import logging

import httpx
from openai import AsyncOpenAI

from nlpromql.adapters.openai_llm import (
    OpenAIQueryGenerator,
    OpenAIQueryUnderstanding,
    OpenAISynonymProvider,
    create_client,
)
from nlpromql.adapters.prometheus_store import PrometheusStore
from nlpromql.config import Settings
from nlpromql.domain.model import KnowledgeHolder
from nlpromql.observability.logging import configure_logging
from nlpromql.observability.metrics import get_metrics, get_metrics_content_type, init_metrics
from nlpromql.observability.tracing import init_tracing
from nlpromql.service_layer.services import QueryAnswer, answer_query
from nlpromql.services.batch_dispatcher import BatchDispatcher
from nlpromql.services.index_builder import IndexBuilder
from nlpromql.services.refresh_scheduler import IndexRefreshScheduler
from nlpromql.services.relevance_resolver import RelevanceResolver
from nlpromql.utils.knowledge_store import KnowledgeStore


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: Settings
    knowledge: KnowledgeHolder
    store: PrometheusStore
    builder: IndexBuilder
    scheduler: IndexRefreshScheduler
    resolver: RelevanceResolver
    understanding: OpenAIQueryUnderstanding
    generator: OpenAIQueryGenerator
    openai_client: AsyncOpenAI

    async def start(self) -> None:
        await self.scheduler.initialize()

    async def answer(self, user_query: str) -> QueryAnswer:
        return await answer_query(
            user_query,
            understanding=self.understanding,
            resolver=self.resolver,
            generator=self.generator,
        )

    def metrics_exposition(self) -> tuple[bytes, str]:
        """Prometheus text exposition and its content type, for the host application to serve."""
        return get_metrics(), get_metrics_content_type()

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.store.close()
        await self.openai_client.close()


def build_runtime(
    settings: Settings | None = None,
    *,
    openai_client: AsyncOpenAI | None = None,
    prometheus_transport: httpx.AsyncBaseTransport | None = None,
    configure_observability: bool = True,
) -> Runtime:
    settings = settings or Settings()
    if configure_observability:
        configure_logging(settings.log_level, settings.log_json)
        init_tracing(settings.otel_service_name)
        init_metrics(settings.otel_service_name)

    client = openai_client or create_client(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.synonym_call_timeout,
    )
    store = PrometheusStore(
        settings.prometheus_url,
        auth=settings.prometheus_auth,
        timeout=settings.store_call_timeout,
        transport=prometheus_transport,
    )
    knowledge = KnowledgeHolder()
    builder_config = settings.index_builder_config()
    builder = IndexBuilder(
        store=store,
        synonyms=OpenAISynonymProvider(
            client, model=settings.synonym_model, temperature=settings.synonym_temperature
        ),
        knowledge=knowledge,
        persistence=KnowledgeStore(settings.data_dir),
        config=builder_config,
    )
    scheduler = IndexRefreshScheduler(
        builder,
        refresh_schedule=settings.refresh_schedule,
        build_on_startup=settings.build_on_startup,
    )
    generator = OpenAIQueryGenerator(
        client,
        model=settings.generation_model,
        temperature=settings.generation_temperature,
        batch_size=settings.generation_batch_size,
        timeout=settings.synonym_call_timeout,
        dispatcher=BatchDispatcher(max_concurrency=builder_config.max_concurrent_batches),
    )
    logger.info("Runtime configured for %s (data dir %s)", settings.prometheus_url, settings.data_dir)
    return Runtime(
        settings=settings,
        knowledge=knowledge,
        store=store,
        builder=builder,
        scheduler=scheduler,
        resolver=RelevanceResolver(knowledge, settings.resolver_config()),
        understanding=OpenAIQueryUnderstanding(client, model=settings.understanding_model),
        generator=generator,
        openai_client=client,
    )
