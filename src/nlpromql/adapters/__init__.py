"""Adapters layer - collaborator implementations for Prometheus and OpenAI."""

from nlpromql.adapters.openai_llm import OpenAIQueryGenerator, OpenAIQueryUnderstanding, OpenAISynonymProvider
from nlpromql.adapters.prometheus_store import PrometheusStore


__all__ = [
    "OpenAIQueryGenerator",
    "OpenAIQueryUnderstanding",
    "OpenAISynonymProvider",
    "PrometheusStore",
]
