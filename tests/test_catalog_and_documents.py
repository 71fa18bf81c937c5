from __future__ import annotations

import json

from conftest import StubGateway
from copilot_bridge.ai.catalog import DEFAULT_MODELS, ModelCatalog, refresh_model_catalog
from copilot_bridge.services.documents import LocalDocumentIngestor
from copilot_bridge.storage.models import UsageRecord
from copilot_bridge.storage.usage_log import UsageLog


def test_missing_catalog_uses_defaults(tmp_path):
    catalog = ModelCatalog(tmp_path / "absent.json")

    assert catalog.ids() == [m.id for m in DEFAULT_MODELS]
    assert catalog.find_by_id("gpt-4o").provider == "OpenAI"
    assert catalog.find_by_id("nope") is None


def test_invalid_catalog_falls_back_to_defaults(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text("{not json", encoding="utf-8")

    assert ModelCatalog(path).ids() == [m.id for m in DEFAULT_MODELS]


def test_catalog_skips_incomplete_entries(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "models": [
                    {"id": "m1", "name": "M1", "provider": "P", "pricing": "free", "referenceUrl": "https://x"},
                    {"id": "m2", "name": "M2"},
                ]
            }
        ),
        encoding="utf-8",
    )

    catalog = ModelCatalog(path)

    assert catalog.ids() == ["m1"]
    assert catalog.find_by_id("m1").reference_url == "https://x"


def test_replace_with_model_ids_persists(tmp_path):
    path = tmp_path / "catalog.json"
    catalog = ModelCatalog(path)

    catalog.replace_with_model_ids(["gpt-4o", "llama-3-70b"])

    reloaded = ModelCatalog(path)
    assert reloaded.ids() == ["gpt-4o", "llama-3-70b"]
    assert reloaded.find_by_id("gpt-4o").name == "GPT-4o"
    assert reloaded.find_by_id("llama-3-70b").provider == "Meta"


async def test_refresh_keeps_catalog_when_nothing_answers(tmp_path):
    catalog = ModelCatalog(tmp_path / "catalog.json")

    assert await refresh_model_catalog(catalog, StubGateway(), "gpt-4o") == []
    assert catalog.ids() == [m.id for m in DEFAULT_MODELS]
    assert not (tmp_path / "catalog.json").exists()


async def test_refresh_puts_preferred_models_first(tmp_path):
    catalog = ModelCatalog(tmp_path / "catalog.json")
    gateway = StubGateway()
    gateway.discovered = ["phi-4", "gpt-4o", "gpt-4o-mini"]

    ranked = await refresh_model_catalog(catalog, gateway, "gpt-4o")

    assert ranked == ["gpt-4o", "gpt-4o-mini", "phi-4"]
    assert catalog.ids() == ranked


async def test_refresh_skipped_without_credentials(tmp_path):
    catalog = ModelCatalog(tmp_path / "catalog.json")
    gateway = StubGateway(enabled=False)
    gateway.discovered = ["phi-4"]

    assert await refresh_model_catalog(catalog, gateway, "gpt-4o") == []


async def test_document_ingest_stores_text_summary(tmp_path):
    ingestor = LocalDocumentIngestor(tmp_path)

    record = await ingestor.ingest(b"line one\nline two", "notes.txt", 5, "research")

    assert record.title == "notes"
    assert record.category == "text"
    assert record.summary == "line one\nline two"
    assert record.storage_path.endswith("notes.txt")
    assert (tmp_path / "5" / "research" / "notes.txt").read_bytes() == b"line one\nline two"
    assert await ingestor.describe(record.storage_path) == record


async def test_document_ingest_binary_and_name_collisions(tmp_path):
    ingestor = LocalDocumentIngestor(tmp_path)

    first = await ingestor.ingest(b"%PDF-1.7", "../report.pdf", 5, "default")
    second = await ingestor.ingest(b"%PDF-1.7", "report.pdf", 5, "default")

    assert first.category == "pdf"
    assert first.summary == ""
    assert first.storage_path != second.storage_path
    assert second.storage_path.endswith("report-1.pdf")


async def test_describe_unknown_document(tmp_path):
    assert await LocalDocumentIngestor(tmp_path).describe(str(tmp_path / "gone.txt")) is None


def test_usage_log_appends_json_lines(tmp_path):
    log = UsageLog(tmp_path / "logs" / "usage.log")
    for attempt in (1, 2):
        log.write(
            UsageRecord(
                timestamp="2026-01-01T00:00:00+00:00",
                model_id="gpt-4o",
                topic="default",
                agent="default",
                status="failure",
                attempt=attempt,
                latency_ms=10,
                error="boom",
            )
        )

    lines = log.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["attempt"] == 2
    assert [r.attempt for r in log.read_all()] == [1, 2]
