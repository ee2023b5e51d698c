"""Service layer - use cases composed from domain objects and services."""

from nlpromql.service_layer.services import QueryAnswer, answer_query


__all__ = ["QueryAnswer", "answer_query"]
