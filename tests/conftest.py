"""Shared test fixtures and configuration."""

import asyncio
import os

import pytest


# Complete test environment that overrides every configurable value
TEST_ENV = {
    "PROMETHEUS_URL": "http://prometheus.test:9090",
    "PROMETHEUS_USER": "",
    "PROMETHEUS_PASSWORD": "",
    "OPENAI_API_KEY": "sk-test",
    "DATA_DIR": "./info-test",
    "METRIC_SYNONYM_BATCH_SIZE": "10",
    "LABEL_SYNONYM_BATCH_SIZE": "10",
    "CATALOG_QUERY_BATCH_SIZE": "100",
    "SAMPLE_VALUE_LIMIT": "5",
    "REFRESH_SCHEDULE": "",
    "BUILD_ON_STARTUP": "false",
    "LOG_LEVEL": "info",
    "LOG_JSON": "false",
    # Proxy settings - ensure they're cleared for tests
    "http_proxy": "",
    "https_proxy": "",
    "all_proxy": "",
    "no_proxy": "",
}


for key, value in TEST_ENV.items():
    os.environ[key] = value


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset environment variables to the test defaults before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


class FakeMonitoringStore:
    """In-memory MonitoringStore; ``series`` holds full label sets incl. ``__name__``."""

    def __init__(self, series=None, *, descriptions=None, label_names=None, fail_selectors=()):
        self.series = list(series or [])
        self.descriptions = dict(descriptions or {})
        self._label_names = label_names
        self.fail_selectors = set(fail_selectors)
        self.selectors = []
        self.calls = []

    async def list_metric_names(self):
        self.calls.append("list_metric_names")
        return sorted({labels["__name__"] for labels in self.series})

    async def list_label_names(self):
        self.calls.append("list_label_names")
        if self._label_names is not None:
            return list(self._label_names)
        return sorted({label for labels in self.series for label in labels})

    async def metric_descriptions(self):
        self.calls.append("metric_descriptions")
        return dict(self.descriptions)

    async def query_label_combinations(self, selector):
        self.selectors.append(selector)
        if selector in self.fail_selectors:
            from nlpromql.domain.errors import ExternalServiceError

            raise ExternalServiceError("prometheus", f"query failed for {selector}")
        names = selector.split('=~"', 1)[1].rsplit('"', 1)[0].split("|")
        return [dict(labels) for labels in self.series if labels["__name__"] in names]


class FakeSynonymProvider:
    """Deterministic SynonymProvider; ``synonyms`` maps name -> synonyms."""

    def __init__(self, synonyms=None, *, fail_on=(), delay=0.0):
        self.synonyms = dict(synonyms or {})
        self.fail_on = set(fail_on)
        self.delay = delay
        self.metric_batches = []
        self.label_batches = []

    async def generate_metric_synonyms(self, batch):
        self.metric_batches.append(dict(batch))
        return await self._respond(list(batch))

    async def generate_label_synonyms(self, batch):
        self.label_batches.append(list(batch))
        return await self._respond(list(batch))

    async def _respond(self, names):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on.intersection(names):
            from nlpromql.domain.errors import ExternalServiceError

            raise ExternalServiceError("openai", f"synonym generation failed for {names}")
        return {name: list(self.synonyms.get(name, [])) for name in names}


@pytest.fixture
def fake_store_cls():
    return FakeMonitoringStore


@pytest.fixture
def fake_synonyms_cls():
    return FakeSynonymProvider


@pytest.fixture
def node_series():
    """A small node-exporter style catalog."""
    return [
        {"__name__": "node_cpu_seconds_total", "cpu": "0", "mode": mode, "instance": "host-a"}
        for mode in ("idle", "iowait", "nice", "steal", "system", "user")
    ] + [
        {"__name__": "node_memory_free_bytes", "instance": "host-a", "env": "prod"},
        {"__name__": "node_memory_free_bytes", "instance": "host-b", "env": "dev"},
        {"__name__": "http_requests_total", "method": "GET", "env": "prod", "instance": "web-1"},
        {"__name__": "http_requests_total", "method": "POST", "env": "prod", "instance": "web-1"},
    ]


@pytest.fixture
def test_settings():
    """Settings built explicitly so static type checkers see the arguments."""
    from nlpromql.config import Settings

    return Settings(prometheus_url="http://prometheus.test:9090", openai_api_key="sk-test")
