"""Knowledge model: synonym indexes, label catalogs and query history.

The resolver only ever reads a ``KnowledgeSnapshot``. Builds take a
``working_copy()``, mutate it and publish the result through
``KnowledgeHolder`` in a single reference swap, so readers never observe a
half-merged index.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
import threading
from typing import Any

from pydantic import TypeAdapter, ValidationError

from nlpromql.domain.errors import SerializationError


METRIC_NAME_LABEL = "__name__"

_STRING_LIST = TypeAdapter(list[str])
_STRING_MAP = TypeAdapter(dict[str, str])
_STRING_LIST_MAP = TypeAdapter(dict[str, list[str]])
_NESTED_CATALOG = TypeAdapter(dict[str, dict[str, list[str]]])
_HISTORY_KEY = TypeAdapter(tuple[str, str])
_HISTORY_ASSIGNMENT = TypeAdapter(dict[str, dict[str, str]])


def normalize_token(token: str) -> str:
    """Lowercase and trim a vocabulary token."""
    return token.strip().lower()


class ValueSet:
    """Set of strings with deterministic (sorted) iteration."""

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: set[str] = set(items)

    def contains(self, item: str) -> bool:
        return item in self._items

    def add(self, item: str) -> bool:
        """Add ``item``; return True when it was not present before."""
        if item in self._items:
            return False
        self._items.add(item)
        return True

    def update(self, items: Iterable[str]) -> int:
        before = len(self._items)
        self._items.update(items)
        return len(self._items) - before

    def to_sorted_list(self) -> list[str]:
        return sorted(self._items)

    def find_casefold(self, token: str) -> list[str]:
        """Return members equal to ``token`` ignoring case, in sorted order."""
        if token in self._items:
            return [token]
        needle = token.casefold()
        return sorted(item for item in self._items if item.casefold() == needle)

    def copy(self) -> ValueSet:
        return ValueSet(self._items)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_sorted_list())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ValueSet):
            return self._items == other._items
        if isinstance(other, (set, frozenset)):
            return self._items == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"ValueSet({self.to_sorted_list()!r})"


@dataclass(slots=True)
class SynonymIndex:
    """Map vocabulary tokens to the canonical names they refer to.

    ``known`` records every canonical name that has been processed, whether
    or not the synonym provider returned anything for it. The index only
    grows: there is no removal operation.
    """

    entries: dict[str, ValueSet] = field(default_factory=dict)
    known: ValueSet = field(default_factory=ValueSet)

    def lookup(self, token: str) -> ValueSet:
        names = self.entries.get(normalize_token(token))
        return names.copy() if names is not None else ValueSet()

    def diff(self, candidate_names: Iterable[str]) -> list[str]:
        """Return names not yet indexed, de-duplicated and sorted."""
        return sorted({name for name in candidate_names if name and not self.known.contains(name)})

    def merge(self, name: str, synonyms: Iterable[str] = ()) -> None:
        self.known.add(name)
        self._add_entry(name, name)
        for synonym in synonyms:
            self._add_entry(synonym, name)

    def copy(self) -> SynonymIndex:
        return SynonymIndex(
            entries={token: names.copy() for token, names in self.entries.items()},
            known=self.known.copy(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "known": self.known.to_sorted_list(),
            "entries": {token: self.entries[token].to_sorted_list() for token in sorted(self.entries)},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SynonymIndex:
        try:
            known = _STRING_LIST.validate_python(data.get("known", []))
            raw_entries = _STRING_LIST_MAP.validate_python(data.get("entries", {}))
        except (ValidationError, AttributeError) as exc:
            raise SerializationError(f"Malformed synonym index: {exc}") from exc
        index = cls(known=ValueSet(known))
        for token, names in raw_entries.items():
            index.known.update(names)
            key = normalize_token(token)
            if key:
                index.entries.setdefault(key, ValueSet()).update(names)
        return index

    def _add_entry(self, token: str, name: str) -> None:
        key = normalize_token(token)
        if not key:
            return
        self.entries.setdefault(key, ValueSet()).add(name)


@dataclass(slots=True)
class MetricLabelCatalog:
    """metric -> label -> observed values, populated from live series."""

    metrics: dict[str, dict[str, ValueSet]] = field(default_factory=dict)

    def add_series(self, labels: Mapping[str, str]) -> bool:
        """Record one series label set; return False when it has no metric name."""
        metric = labels.get(METRIC_NAME_LABEL)
        if not metric:
            return False
        metric_labels = self.metrics.setdefault(metric, {})
        for label, value in labels.items():
            if label == METRIC_NAME_LABEL:
                continue
            metric_labels.setdefault(label, ValueSet()).add(value)
        return True

    def has_metric(self, metric: str) -> bool:
        return metric in self.metrics

    def has_label(self, metric: str, label: str) -> bool:
        return label in self.metrics.get(metric, {})

    def labels_for(self, metric: str) -> list[str]:
        return sorted(self.metrics.get(metric, {}))

    def values_for(self, metric: str, label: str) -> ValueSet:
        return self.metrics.get(metric, {}).get(label, ValueSet())

    def missing_metrics(self, names: Iterable[str]) -> list[str]:
        return sorted({name for name in names if name and name not in self.metrics})

    def copy(self) -> MetricLabelCatalog:
        return MetricLabelCatalog(
            metrics={
                metric: {label: values.copy() for label, values in labels.items()}
                for metric, labels in self.metrics.items()
            }
        )

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            metric: {label: labels[label].to_sorted_list() for label in sorted(labels)}
            for metric, labels in sorted(self.metrics.items())
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MetricLabelCatalog:
        try:
            raw = _NESTED_CATALOG.validate_python(data)
        except ValidationError as exc:
            raise SerializationError(f"Malformed metric label catalog: {exc}") from exc
        return cls(
            metrics={
                metric: {label: ValueSet(values) for label, values in labels.items()}
                for metric, labels in raw.items()
            }
        )


@dataclass(slots=True)
class LabelValueCatalog:
    """label -> every value observed for it across all metrics."""

    labels: dict[str, ValueSet] = field(default_factory=dict)

    def add_series(self, labels: Mapping[str, str]) -> None:
        for label, value in labels.items():
            if label == METRIC_NAME_LABEL:
                continue
            self.labels.setdefault(label, ValueSet()).add(value)

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def label_names(self) -> list[str]:
        return sorted(self.labels)

    def values_for(self, label: str) -> ValueSet:
        return self.labels.get(label, ValueSet())

    def copy(self) -> LabelValueCatalog:
        return LabelValueCatalog(labels={label: values.copy() for label, values in self.labels.items()})

    def to_dict(self) -> dict[str, list[str]]:
        return {label: values.to_sorted_list() for label, values in sorted(self.labels.items())}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LabelValueCatalog:
        try:
            raw = _STRING_LIST_MAP.validate_python(data)
        except ValidationError as exc:
            raise SerializationError(f"Malformed label value catalog: {exc}") from exc
        return cls(labels={label: ValueSet(values) for label, values in raw.items()})


@dataclass(slots=True)
class HistoryTable:
    """Past (metric token, label token) pairs and the assignments they produced.

    Keys are JSON arrays ``["<metric token>", "<label token>"]`` and values are
    JSON objects ``{"<metric>": {"<label>": "<value>"}}``. Both are kept in
    their encoded form and decoded on first lookup.
    """

    entries: dict[str, str] = field(default_factory=dict)
    _index: dict[tuple[str, str], str] | None = field(default=None, init=False, repr=False, compare=False)

    @staticmethod
    def encode_key(metric_token: str, label_token: str) -> str:
        return _HISTORY_KEY.dump_json((normalize_token(metric_token), normalize_token(label_token))).decode()

    def record(self, metric_token: str, label_token: str, assignment: Mapping[str, Mapping[str, str]]) -> None:
        encoded = _HISTORY_ASSIGNMENT.dump_json({m: dict(labels) for m, labels in assignment.items()}).decode()
        self.entries[self.encode_key(metric_token, label_token)] = encoded
        self._index = None

    def lookup(self, metric_token: str, label_token: str) -> dict[str, dict[str, str]] | None:
        """Return the decoded assignment for a token pair.

        Raises:
            SerializationError: A key or value in the table is not valid JSON
                of the expected shape.
        """
        raw = self._decoded_index().get((normalize_token(metric_token), normalize_token(label_token)))
        if raw is None:
            return None
        try:
            return _HISTORY_ASSIGNMENT.validate_json(raw)
        except ValidationError as exc:
            raise SerializationError(f"Malformed history entry for ({metric_token}, {label_token}): {exc}") from exc

    def copy(self) -> HistoryTable:
        return HistoryTable(entries=dict(self.entries))

    def to_dict(self) -> dict[str, str]:
        return dict(sorted(self.entries.items()))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HistoryTable:
        try:
            return cls(entries=_STRING_MAP.validate_python(data))
        except ValidationError as exc:
            raise SerializationError(f"Malformed history table: {exc}") from exc

    def __len__(self) -> int:
        return len(self.entries)

    def _decoded_index(self) -> dict[tuple[str, str], str]:
        if self._index is not None:
            return self._index
        index: dict[tuple[str, str], str] = {}
        for key, value in self.entries.items():
            try:
                metric_token, label_token = _HISTORY_KEY.validate_json(key)
            except ValidationError as exc:
                raise SerializationError(f"Malformed history key {key!r}: {exc}") from exc
            index[(normalize_token(metric_token), normalize_token(label_token))] = value
        self._index = index
        return index


@dataclass(frozen=True, slots=True)
class KnowledgeSnapshot:
    """Everything the resolver reads, bundled so it can be swapped atomically."""

    metric_index: SynonymIndex = field(default_factory=SynonymIndex)
    label_index: SynonymIndex = field(default_factory=SynonymIndex)
    metric_labels: MetricLabelCatalog = field(default_factory=MetricLabelCatalog)
    label_values: LabelValueCatalog = field(default_factory=LabelValueCatalog)
    history: HistoryTable = field(default_factory=HistoryTable)

    def working_copy(self) -> KnowledgeSnapshot:
        return KnowledgeSnapshot(
            metric_index=self.metric_index.copy(),
            label_index=self.label_index.copy(),
            metric_labels=self.metric_labels.copy(),
            label_values=self.label_values.copy(),
            history=self.history.copy(),
        )

    def summary(self) -> dict[str, int]:
        return {
            "known_metrics": len(self.metric_index.known),
            "known_labels": len(self.label_index.known),
            "catalog_metrics": len(self.metric_labels.metrics),
            "catalog_labels": len(self.label_values.labels),
            "history_entries": len(self.history),
        }


class KnowledgeHolder:
    """Publish point for the current snapshot."""

    def __init__(self, snapshot: KnowledgeSnapshot | None = None) -> None:
        self._snapshot = snapshot or KnowledgeSnapshot()
        self._version = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> KnowledgeSnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._version

    def publish(self, snapshot: KnowledgeSnapshot) -> int:
        with self._lock:
            self._snapshot = snapshot
            self._version += 1
            return self._version
