"""Unit tests for the label catalogs, history table and knowledge snapshot."""

import json

import pytest

from nlpromql.domain.errors import SerializationError
from nlpromql.domain.model import (
    HistoryTable,
    KnowledgeHolder,
    KnowledgeSnapshot,
    LabelValueCatalog,
    MetricLabelCatalog,
)


@pytest.fixture
def catalog(node_series):
    catalog = MetricLabelCatalog()
    for series in node_series:
        catalog.add_series(series)
    return catalog


@pytest.mark.unit
class TestMetricLabelCatalog:
    def test_name_label_is_not_a_label(self, catalog):
        assert not catalog.has_label("node_cpu_seconds_total", "__name__")
        assert catalog.labels_for("node_cpu_seconds_total") == ["cpu", "instance", "mode"]

    def test_values_are_collected_per_metric(self, catalog):
        assert catalog.values_for("http_requests_total", "method") == {"GET", "POST"}
        assert catalog.values_for("node_memory_free_bytes", "env") == {"dev", "prod"}

    def test_series_without_metric_name_is_ignored(self):
        catalog = MetricLabelCatalog()

        assert catalog.add_series({"job": "x"}) is False
        assert catalog.metrics == {}

    def test_metric_with_only_name_is_recorded(self):
        catalog = MetricLabelCatalog()
        catalog.add_series({"__name__": "up"})

        assert catalog.has_metric("up")
        assert catalog.labels_for("up") == []

    def test_missing_metrics_sorted(self, catalog):
        assert catalog.missing_metrics(["zz", "http_requests_total", "aa"]) == ["aa", "zz"]

    def test_round_trip(self, catalog):
        assert MetricLabelCatalog.from_dict(catalog.to_dict()) == catalog

    def test_from_dict_rejects_wrong_shape(self):
        with pytest.raises(SerializationError):
            MetricLabelCatalog.from_dict({"up": ["not", "a", "map"]})


@pytest.mark.unit
class TestLabelValueCatalog:
    def test_values_across_metrics_are_merged(self, node_series):
        catalog = LabelValueCatalog()
        for series in node_series:
            catalog.add_series(series)

        assert catalog.values_for("instance") == {"host-a", "host-b", "web-1"}
        assert "__name__" not in catalog.label_names()

    def test_round_trip(self):
        catalog = LabelValueCatalog()
        catalog.add_series({"env": "prod", "job": "api"})

        assert LabelValueCatalog.from_dict(catalog.to_dict()) == catalog


@pytest.mark.unit
class TestHistoryTable:
    def test_encode_key_is_json_pair(self):
        assert json.loads(HistoryTable.encode_key("CPU", "Env")) == ["cpu", "env"]

    def test_record_and_lookup(self):
        table = HistoryTable()
        table.record("cpu", "env", {"node_cpu_seconds_total": {"env": "prod"}})

        assert table.lookup("cpu", "env") == {"node_cpu_seconds_total": {"env": "prod"}}
        assert table.lookup("cpu", "mode") is None

    def test_lookup_accepts_keys_written_with_spacing(self):
        table = HistoryTable.from_dict({'["cpu", "env"]': '{"node_cpu_seconds_total": {"env": "prod"}}'})

        assert table.lookup("cpu", "env") == {"node_cpu_seconds_total": {"env": "prod"}}

    def test_malformed_key_raises(self):
        table = HistoryTable.from_dict({"cpu|env": "{}"})

        with pytest.raises(SerializationError):
            table.lookup("cpu", "env")

    def test_malformed_value_raises(self):
        table = HistoryTable.from_dict({HistoryTable.encode_key("cpu", "env"): "{not json"})

        with pytest.raises(SerializationError):
            table.lookup("cpu", "env")

    def test_from_dict_requires_string_values(self):
        with pytest.raises(SerializationError):
            HistoryTable.from_dict({HistoryTable.encode_key("cpu", "env"): {"already": "decoded"}})


@pytest.mark.unit
class TestKnowledgeSnapshot:
    def test_working_copy_is_deep(self):
        snapshot = KnowledgeSnapshot()
        snapshot.metric_index.merge("up")

        working = snapshot.working_copy()
        working.metric_index.merge("node_load1")
        working.metric_labels.add_series({"__name__": "up", "job": "api"})

        assert snapshot.metric_index.known == {"up"}
        assert snapshot.metric_labels.metrics == {}

    def test_holder_publish_swaps_reference(self):
        holder = KnowledgeHolder()
        first = holder.current
        replacement = KnowledgeSnapshot()

        version = holder.publish(replacement)

        assert holder.current is replacement
        assert holder.current is not first
        assert version == holder.version == 1

    def test_summary_counts(self):
        snapshot = KnowledgeSnapshot()
        snapshot.metric_index.merge("up")
        snapshot.label_index.merge("job")

        summary = snapshot.summary()

        assert summary["known_metrics"] == 1
        assert summary["known_labels"] == 1
        assert summary["history_entries"] == 0
