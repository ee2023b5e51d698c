"""Prometheus HTTP API client implementing ``MonitoringStore``."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from nlpromql.domain.errors import ExternalServiceError, SerializationError


logger = logging.getLogger(__name__)

SERVICE = "prometheus"


class _ApiResponse(BaseModel):
    status: str
    data: Any = None
    errorType: str | None = None  # noqa: N815 - Prometheus field name
    error: str | None = None


class PrometheusStore:
    """Read the metric and label catalog from a Prometheus-compatible API.

    The client is created lazily; use ``async with`` or call ``close``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: tuple[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self._transport = transport
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> PrometheusStore:
        self._ensure_client()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def list_metric_names(self) -> list[str]:
        data = await self._get("/api/v1/label/__name__/values")
        return sorted(self._string_list(data, "metric names"))

    async def list_label_names(self) -> list[str]:
        data = await self._get("/api/v1/labels")
        return sorted(self._string_list(data, "label names"))

    async def metric_descriptions(self) -> dict[str, str]:
        """Return the first non-empty HELP text reported for each metric."""
        data = await self._get("/api/v1/metadata")
        if not isinstance(data, dict):
            raise SerializationError(f"Unexpected metadata payload: {type(data).__name__}")
        descriptions: dict[str, str] = {}
        for metric, entries in data.items():
            if not isinstance(entries, list):
                continue
            for entry in entries:
                help_text = entry.get("help") if isinstance(entry, dict) else None
                if help_text:
                    descriptions[metric] = help_text
                    break
        return descriptions

    async def query_label_combinations(self, selector: str) -> list[dict[str, str]]:
        """Run ``selector`` as an instant query and return each series' labels."""
        data = await self._get(
            "/api/v1/query",
            params={"query": selector, "time": datetime.now(timezone.utc).isoformat()},
        )
        if not isinstance(data, dict) or not isinstance(data.get("result"), list):
            raise SerializationError("Unexpected query payload: missing result list")
        series: list[dict[str, str]] = []
        for item in data["result"]:
            labels = item.get("metric") if isinstance(item, dict) else None
            if isinstance(labels, dict):
                series.append({str(key): str(value) for key, value in labels.items()})
        return series

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=self.auth,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                transport=self._transport,
            )
        return self.client

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        client = self._ensure_client()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                SERVICE, f"GET {path} returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(SERVICE, f"GET {path} failed: {exc}") from exc

        try:
            payload = _ApiResponse.model_validate(response.json())
        except (json.JSONDecodeError, ValidationError) as exc:
            raise SerializationError(f"Cannot decode Prometheus response for {path}: {exc}") from exc
        if payload.status != "success":
            raise ExternalServiceError(SERVICE, f"GET {path}: {payload.errorType or 'error'}: {payload.error or ''}")
        logger.debug("GET %s ok", path)
        return payload.data

    def _string_list(self, data: Any, what: str) -> list[str]:
        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            raise SerializationError(f"Expected a list of {what} from Prometheus")
        return data
