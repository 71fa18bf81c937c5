"""Document ingestion: store uploaded files and describe them by pointer."""

from __future__ import annotations

import json
import mimetypes
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from copilot_bridge.log import get_logger

logger = get_logger(__name__)

_TEXT_PREFIXES = ("text/",)
_TEXT_TYPES = frozenset({
    "application/json", "application/xml", "application/javascript",
    "application/x-yaml", "application/sql", "application/x-sh",
    "application/xhtml+xml", "application/csv",
})
_UNSAFE_CHARS = re.compile(r"[^\w.\-]+")
SUMMARY_CHARS = 1000


def _is_text_media_type(media_type: str) -> bool:
    """Return True if the media type represents a human-readable text format."""
    return media_type.startswith(_TEXT_PREFIXES) or media_type in _TEXT_TYPES


@dataclass(frozen=True)
class DocumentRecord:
    title: str
    category: str
    summary: str
    storage_path: str


class DocumentIngestor(ABC):
    """Turns uploaded bytes into a stored document the bridge can point at."""

    @abstractmethod
    async def ingest(self, data: bytes, filename: str, chat_id: int, topic: str) -> DocumentRecord:
        ...

    @abstractmethod
    async def describe(self, storage_path: str) -> Optional[DocumentRecord]:
        """Return metadata for a previously ingested document, or None if gone."""
        ...


class LocalDocumentIngestor(DocumentIngestor):
    """Saves files under ``<root>/<chat_id>/<topic>/`` with a JSON metadata sidecar.

    Text files get their leading text as the summary; binary formats (PDF
    included) are stored as-is with an empty summary.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root)

    async def ingest(self, data: bytes, filename: str, chat_id: int, topic: str) -> DocumentRecord:
        safe_name = _UNSAFE_CHARS.sub("_", Path(filename).name).strip("._") or "document"
        target_dir = self._root / str(chat_id) / _UNSAFE_CHARS.sub("_", topic)
        target_dir.mkdir(parents=True, exist_ok=True)

        target = target_dir / safe_name
        counter = 1
        while target.exists():
            target = target_dir / f"{Path(safe_name).stem}-{counter}{Path(safe_name).suffix}"
            counter += 1
        target.write_bytes(data)

        media_type = mimetypes.guess_type(safe_name)[0] or "application/octet-stream"
        if _is_text_media_type(media_type):
            category = "text"
            summary = data.decode("utf-8", errors="replace").strip()[:SUMMARY_CHARS]
        else:
            category = media_type.split("/")[-1]
            summary = ""

        record = DocumentRecord(
            title=Path(filename).stem or safe_name,
            category=category,
            summary=summary,
            storage_path=str(target),
        )
        self._sidecar(target).write_text(json.dumps(asdict(record), ensure_ascii=False), encoding="utf-8")
        logger.info("document_ingested", path=str(target), size=len(data), category=category)
        return record

    async def describe(self, storage_path: str) -> Optional[DocumentRecord]:
        sidecar = self._sidecar(Path(storage_path))
        if not sidecar.exists():
            return None
        try:
            return DocumentRecord(**json.loads(sidecar.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("document_metadata_unreadable", path=storage_path, error=str(e))
            return None

    @staticmethod
    def _sidecar(path: Path) -> Path:
        return path.with_name(path.name + ".meta.json")
