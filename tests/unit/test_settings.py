"""Unit tests for Settings."""

from pathlib import Path

from pydantic import ValidationError
import pytest

from nlpromql.config import IndexBuilderConfig, ResolverConfig, Settings


@pytest.mark.unit
class TestSettings:
    def test_values_come_from_environment(self):
        settings = Settings()

        assert settings.prometheus_url == "http://prometheus.test:9090"
        assert settings.data_dir == Path("./info-test")
        assert settings.build_on_startup is False
        assert settings.log_json is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("METRIC_SYNONYM_BATCH_SIZE", "25")
        monkeypatch.setenv("MAX_CONCURRENT_BATCHES", "4")

        config = Settings().index_builder_config()

        assert config.metric_synonym_batch_size == 25
        assert config.max_concurrent_batches == 4

    def test_zero_concurrency_means_unbounded(self, test_settings):
        assert test_settings.index_builder_config().max_concurrent_batches is None

    def test_index_builder_config_defaults(self, test_settings):
        config = test_settings.index_builder_config()

        assert config == IndexBuilderConfig(max_concurrent_batches=None)

    def test_resolver_config(self, monkeypatch):
        monkeypatch.setenv("SAMPLE_VALUE_LIMIT", "3")

        config = Settings().resolver_config()

        assert config == ResolverConfig(sample_value_limit=3)

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(label_synonym_batch_size=0)

    def test_credentials_must_come_in_pairs(self):
        with pytest.raises(ValidationError, match="PROMETHEUS_USER and PROMETHEUS_PASSWORD"):
            Settings(prometheus_user="reader")

    def test_prometheus_auth(self):
        assert Settings().prometheus_auth is None
        assert Settings(prometheus_user="reader", prometheus_password="secret").prometheus_auth == ("reader", "secret")

    def test_refresh_schedule_is_validated(self):
        assert Settings(refresh_schedule="*/15 * * * *").refresh_schedule == "*/15 * * * *"

        with pytest.raises(ValidationError, match="Invalid cron schedule"):
            Settings(refresh_schedule="every hour")
