"""Centralized configuration for nlpromql using Pydantic Settings."""

from dataclasses import dataclass
from pathlib import Path

from cron_converter import Cron
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True, slots=True)
class IndexBuilderConfig:
    """Tunables handed to ``IndexBuilder``; no environment access."""

    metric_synonym_batch_size: int = 10
    label_synonym_batch_size: int = 10
    catalog_query_batch_size: int = 100
    synonym_call_timeout: float | None = 120.0
    store_call_timeout: float | None = 30.0
    max_concurrent_batches: int | None = None


@dataclass(frozen=True, slots=True)
class ResolverConfig:
    """Scoring weights and limits handed to ``RelevanceResolver``."""

    sample_value_limit: int = 5
    first_mention_score: float = 1.0
    repeat_mention_weight: float = 0.5
    value_match_weight: float = 0.2


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Variable names match the fields case-insensitively, e.g.
    ``PROMETHEUS_URL`` or ``OPENAI_API_KEY``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Monitoring store
    prometheus_url: str = Field(default="http://localhost:9090", description="Base URL of the Prometheus API")
    prometheus_user: str = Field(default="", description="Basic auth user (requires PROMETHEUS_PASSWORD)")
    prometheus_password: str = Field(default="", description="Basic auth password (requires PROMETHEUS_USER)")
    store_call_timeout: float = Field(default=30.0, gt=0, description="Timeout in seconds for Prometheus calls")

    # LLM
    openai_api_key: str = Field(default="", description="API key for the OpenAI-compatible endpoint")
    openai_base_url: str | None = Field(default=None, description="Override for OpenAI-compatible endpoints")
    synonym_model: str = Field(default="gpt-4o-mini", description="Model used to generate synonyms")
    understanding_model: str = Field(default="gpt-4o-mini", description="Model used to extract candidate tokens")
    generation_model: str = Field(default="gpt-4o", description="Model used to generate PromQL")
    synonym_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    generation_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    synonym_call_timeout: float = Field(default=120.0, gt=0, description="Timeout in seconds per synonym batch")

    # Index building
    data_dir: Path = Field(default=Path("./info"), description="Directory holding the persisted knowledge files")
    metric_synonym_batch_size: int = Field(default=10, ge=1, description="Metric names per synonym request")
    label_synonym_batch_size: int = Field(default=10, ge=1, description="Label names per synonym request")
    catalog_query_batch_size: int = Field(default=100, ge=1, description="Metric names per catalog selector query")
    max_concurrent_batches: int = Field(default=0, ge=0, description="Cap on concurrent batches (0 = unbounded)")
    build_on_startup: bool = Field(default=True, description="Run an index build when the scheduler starts")
    refresh_schedule: str = Field(default="", description="Cron expression for periodic rebuilds (empty = off)")

    # Resolution
    sample_value_limit: int = Field(default=5, ge=1, description="Sample values kept per relevant label")
    repeat_mention_weight: float = Field(default=0.5, ge=0.0, description="Score added for a repeated mention")
    value_match_weight: float = Field(default=0.2, ge=0.0, description="Score added for a corroborating value")
    generation_batch_size: int = Field(default=5, ge=1, description="Relevant entities per generation request")

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    # Telemetry
    otel_service_name: str = Field(default="nlpromql", description="service.name reported to OpenTelemetry")

    @model_validator(mode="after")
    def _check_prometheus_credentials(self) -> "Settings":
        if bool(self.prometheus_user) != bool(self.prometheus_password):
            raise ValueError("PROMETHEUS_USER and PROMETHEUS_PASSWORD must be set together or not at all")
        return self

    @model_validator(mode="after")
    def validate_refresh_schedule(self) -> "Settings":
        """Validate cron schedule syntax if provided."""
        if self.refresh_schedule:
            try:
                Cron(self.refresh_schedule)
            except Exception as e:
                raise ValueError(f"Invalid cron schedule '{self.refresh_schedule}': {e}") from e
        return self

    @property
    def prometheus_auth(self) -> tuple[str, str] | None:
        if not self.prometheus_user:
            return None
        return (self.prometheus_user, self.prometheus_password)

    def index_builder_config(self) -> IndexBuilderConfig:
        return IndexBuilderConfig(
            metric_synonym_batch_size=self.metric_synonym_batch_size,
            label_synonym_batch_size=self.label_synonym_batch_size,
            catalog_query_batch_size=self.catalog_query_batch_size,
            synonym_call_timeout=self.synonym_call_timeout,
            store_call_timeout=self.store_call_timeout,
            max_concurrent_batches=self.max_concurrent_batches or None,
        )

    def resolver_config(self) -> ResolverConfig:
        return ResolverConfig(
            sample_value_limit=self.sample_value_limit,
            repeat_mention_weight=self.repeat_mention_weight,
            value_match_weight=self.value_match_weight,
        )
