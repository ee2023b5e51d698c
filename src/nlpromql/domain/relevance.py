"""Value objects produced and consumed by relevance resolution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from nlpromql.domain.errors import CandidateValidationError
from nlpromql.domain.model import ValueSet, normalize_token


logger = logging.getLogger(__name__)

METRIC_TOKENS_FIELD = "possible_metric_names"
LABEL_TOKENS_FIELD = "possible_label_names"
VALUE_TOKENS_FIELD = "possible_label_values"

_TOKEN_LIST = TypeAdapter(list[str])


def parse_token_list(payload: Mapping[str, Any], field_name: str) -> list[str]:
    """Read one candidate field as a list of strings.

    A missing or null field is an empty list.

    Raises:
        CandidateValidationError: The field is present but not a list of strings.
    """
    value = payload.get(field_name)
    if value is None:
        return []
    try:
        return _TOKEN_LIST.validate_python(value)
    except ValidationError as exc:
        raise CandidateValidationError(field_name, value) from exc


@dataclass(frozen=True, slots=True)
class CandidateTokens:
    """Tokens extracted from a user query by the query-understanding step."""

    metric_tokens: tuple[str, ...] = ()
    label_tokens: tuple[str, ...] = ()
    value_tokens: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> CandidateTokens:
        """Build candidates leniently: a malformed field becomes empty."""
        if not isinstance(payload, Mapping):
            if payload is not None:
                logger.warning("Ignoring candidate payload of type %s", type(payload).__name__)
            return cls()

        fields: dict[str, list[str]] = {}
        for name in (METRIC_TOKENS_FIELD, LABEL_TOKENS_FIELD, VALUE_TOKENS_FIELD):
            try:
                fields[name] = parse_token_list(payload, name)
            except CandidateValidationError as exc:
                logger.warning("Dropping candidate field: %s", exc)
                fields[name] = []

        return cls(
            metric_tokens=_normalized(fields[METRIC_TOKENS_FIELD]),
            label_tokens=_normalized(fields[LABEL_TOKENS_FIELD]),
            value_tokens=tuple(value.strip() for value in fields[VALUE_TOKENS_FIELD] if value.strip()),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.metric_tokens or self.label_tokens or self.value_tokens)


def _normalized(tokens: list[str]) -> tuple[str, ...]:
    return tuple(token for token in (normalize_token(t) for t in tokens) if token)


@dataclass(slots=True)
class LabelContext:
    """A label judged relevant, with its score and a few sample values.

    ``matched_values`` remembers values corroborated by value tokens so that
    capping ``sample_values`` never evicts them.
    """

    match_score: float
    sample_values: list[str] = field(default_factory=list)
    matched_values: set[str] = field(default_factory=set, repr=False, compare=False)

    @classmethod
    def from_catalog(cls, values: ValueSet, *, score: float, limit: int) -> LabelContext:
        return cls(match_score=score, sample_values=values.to_sorted_list()[:limit])

    @classmethod
    def from_value(cls, value: str, *, score: float) -> LabelContext:
        return cls(match_score=score, sample_values=[value], matched_values={value})

    def bump(self, amount: float) -> None:
        self.match_score = round(self.match_score + amount, 6)

    def add_matched_value(self, value: str, *, limit: int) -> bool:
        """Make sure ``value`` is among the samples; return True if it was added."""
        self.matched_values.add(value)
        if value in self.sample_values:
            return False
        if len(self.sample_values) < limit:
            self.sample_values.append(value)
            return True
        for position in range(len(self.sample_values) - 1, -1, -1):
            if self.sample_values[position] not in self.matched_values:
                del self.sample_values[position]
                self.sample_values.append(value)
                return True
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"match_score": self.match_score, "sample_values": list(self.sample_values)}


@dataclass(slots=True)
class RelevanceContext:
    relevant_metrics: dict[str, dict[str, LabelContext]] = field(default_factory=dict)
    relevant_labels: dict[str, LabelContext] = field(default_factory=dict)
    metric_scores: dict[str, float] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.relevant_metrics or self.relevant_labels)

    def to_dict(self) -> dict[str, Any]:
        return {
            "relevant_metrics": {
                metric: {label: ctx.to_dict() for label, ctx in sorted(labels.items())}
                for metric, labels in sorted(self.relevant_metrics.items())
            },
            "relevant_labels": {label: ctx.to_dict() for label, ctx in sorted(self.relevant_labels.items())},
            "metric_scores": dict(sorted(self.metric_scores.items())),
        }


@dataclass(slots=True)
class HistoryContext:
    """metric -> label -> value assignments recalled from past queries."""

    assignments: dict[str, dict[str, str]] = field(default_factory=dict)

    def merge(self, assignment: Mapping[str, Mapping[str, str]]) -> None:
        for metric, labels in assignment.items():
            self.assignments.setdefault(metric, {}).update(labels)

    @property
    def is_empty(self) -> bool:
        return not self.assignments

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {metric: dict(sorted(labels.items())) for metric, labels in sorted(self.assignments.items())}
