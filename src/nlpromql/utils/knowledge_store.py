"""Filesystem-backed store for the knowledge snapshot."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from uuid import uuid4

import anyio
from anyio import to_thread

from nlpromql.domain.errors import SerializationError
from nlpromql.domain.model import (
    HistoryTable,
    KnowledgeSnapshot,
    LabelValueCatalog,
    MetricLabelCatalog,
    SynonymIndex,
)


logger = logging.getLogger(__name__)

METRIC_INDEX_FILE = "metric_index.json"
LABEL_INDEX_FILE = "label_index.json"
METRIC_LABEL_CATALOG_FILE = "metric_label_catalog.json"
LABEL_VALUE_CATALOG_FILE = "label_value_catalog.json"
HISTORY_FILE = "history.json"


class KnowledgeStore:
    """Persist the five knowledge documents under one directory.

    ``save`` stages every document in a temporary file before replacing any
    of them. Replaced documents are kept as backups until every move has
    succeeded and are restored if one fails, so a failed save leaves the
    previous documents in place.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    async def save(self, snapshot: KnowledgeSnapshot) -> None:
        documents = {
            METRIC_INDEX_FILE: snapshot.metric_index.to_dict(),
            LABEL_INDEX_FILE: snapshot.label_index.to_dict(),
            METRIC_LABEL_CATALOG_FILE: snapshot.metric_labels.to_dict(),
            LABEL_VALUE_CATALOG_FILE: snapshot.label_values.to_dict(),
            HISTORY_FILE: snapshot.history.to_dict(),
        }
        self.data_dir.mkdir(parents=True, exist_ok=True)

        staged: list[tuple[Path, Path]] = []
        try:
            for name, payload in documents.items():
                path = self.data_dir / name
                staged.append((await self._write_tmp(path, payload), path))
            await to_thread.run_sync(_commit, staged, uuid4().hex)
        finally:
            for tmp_path, _ in staged:
                tmp_path.unlink(missing_ok=True)
        logger.info("Persisted knowledge to %s: %s", self.data_dir, snapshot.summary())

    async def load(self) -> KnowledgeSnapshot:
        """Load every document; missing files load as empty structures.

        Raises:
            SerializationError: A document exists but cannot be decoded.
        """
        snapshot = KnowledgeSnapshot(
            metric_index=SynonymIndex.from_dict(await self._read_json(METRIC_INDEX_FILE)),
            label_index=SynonymIndex.from_dict(await self._read_json(LABEL_INDEX_FILE)),
            metric_labels=MetricLabelCatalog.from_dict(await self._read_json(METRIC_LABEL_CATALOG_FILE)),
            label_values=LabelValueCatalog.from_dict(await self._read_json(LABEL_VALUE_CATALOG_FILE)),
            history=HistoryTable.from_dict(await self._read_json(HISTORY_FILE)),
        )
        logger.info("Loaded knowledge from %s: %s", self.data_dir, snapshot.summary())
        return snapshot

    async def _write_tmp(self, path: Path, payload: dict[str, Any]) -> Path:
        try:
            content = json.dumps(payload, indent=2, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Cannot serialize {path.name}: {exc}") from exc
        tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
        async with await anyio.open_file(tmp_path, "w", encoding="utf-8") as fp:
            await fp.write(content)
        return tmp_path

    async def _read_json(self, name: str) -> dict[str, Any]:
        path = self.data_dir / name
        try:
            async with await anyio.open_file(path, "r", encoding="utf-8") as fp:
                content = await fp.read()
        except FileNotFoundError:
            logger.debug("No %s yet; starting empty", path)
            return {}
        try:
            data = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as exc:
            raise SerializationError(f"Cannot decode {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SerializationError(f"Expected a JSON object in {path}, got {type(data).__name__}")
        return data


def _safe_move(src: Path, dest: Path) -> None:
    src.replace(dest)


def _commit(staged: list[tuple[Path, Path]], token: str) -> None:
    """Move staged files into place, restoring the previous set on failure."""
    replaced: list[tuple[Path, Path | None]] = []
    try:
        for tmp_path, path in staged:
            backup = None
            if path.exists():
                backup = path.with_name(f"{path.name}.{token}.bak")
                path.replace(backup)
            replaced.append((path, backup))
            _safe_move(tmp_path, path)
    except BaseException:
        for path, backup in reversed(replaced):
            if backup is None:
                path.unlink(missing_ok=True)
            else:
                backup.replace(path)
        logger.error("Restored previous knowledge documents in %s after a failed save", staged[0][1].parent)
        raise
    for _, backup in replaced:
        if backup is not None:
            backup.unlink(missing_ok=True)
