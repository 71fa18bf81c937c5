"""Append-only JSON-lines log of completion outcomes."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

from copilot_bridge.log import get_logger
from copilot_bridge.storage.models import UsageRecord

logger = get_logger(__name__)


class UsageLog:
    """One JSON object per line, newest last. Records are never rewritten."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: UsageRecord) -> None:
        line = json.dumps(asdict(record), ensure_ascii=False)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        logger.info(
            "usage_recorded",
            model=record.model_id,
            status=record.status,
            attempt=record.attempt,
            total_tokens=record.total_tokens,
        )

    def read_all(self) -> list[UsageRecord]:
        if not self._path.exists():
            return []
        records: list[UsageRecord] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                records.append(UsageRecord(**json.loads(line)))
        return records
