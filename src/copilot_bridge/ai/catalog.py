"""Model catalog loaded from a JSON file, with built-in defaults."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from copilot_bridge.log import get_logger

if TYPE_CHECKING:
    from copilot_bridge.ai.client import CompletionGateway

logger = get_logger(__name__)

_SUBSCRIPTION_PRICING = "Billed by your GitHub Copilot plan; check the official page for model multipliers."
_REFERENCE_URL = "https://github.com/features/copilot"


@dataclass(frozen=True, slots=True)
class ModelInfo:
    id: str
    name: str
    provider: str
    pricing: str
    reference_url: Optional[str] = None


DEFAULT_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("gpt-4o", "GPT-4o", "OpenAI", _SUBSCRIPTION_PRICING, _REFERENCE_URL),
    ModelInfo("gpt-4o-mini", "GPT-4o mini", "OpenAI", _SUBSCRIPTION_PRICING, _REFERENCE_URL),
    ModelInfo("claude-sonnet-4.5", "Claude Sonnet 4.5", "Anthropic", _SUBSCRIPTION_PRICING, _REFERENCE_URL),
    ModelInfo("gemini-2.5-pro", "Gemini 2.5 Pro", "Google", _SUBSCRIPTION_PRICING, _REFERENCE_URL),
)

_PROVIDER_PREFIXES = {
    "gpt": "OpenAI",
    "o1": "OpenAI",
    "o3": "OpenAI",
    "o4": "OpenAI",
    "claude": "Anthropic",
    "gemini": "Google",
    "llama": "Meta",
    "mistral": "Mistral AI",
    "phi": "Microsoft",
    "deepseek": "DeepSeek",
}


def _guess_provider(model_id: str) -> str:
    lowered = model_id.lower()
    for prefix, provider in _PROVIDER_PREFIXES.items():
        if lowered.startswith(prefix):
            return provider
    return "unknown"


class ModelCatalog:
    """List of models a thread may select."""

    def __init__(self, catalog_path: str | Path):
        self._path = Path(catalog_path)
        self._models: list[ModelInfo] = self._load()

    def list(self) -> list[ModelInfo]:
        return list(self._models)

    def ids(self) -> list[str]:
        return [m.id for m in self._models]

    def find_by_id(self, model_id: str) -> ModelInfo | None:
        return next((m for m in self._models if m.id == model_id), None)

    def replace_with_model_ids(self, model_ids: list[str]) -> None:
        """Swap the catalog for the given ids, keeping known metadata, and save it."""
        known = {m.id: m for m in self._models}
        known.update({m.id: m for m in DEFAULT_MODELS if m.id not in known})
        self._models = [
            known.get(model_id)
            or ModelInfo(
                id=model_id,
                name=model_id,
                provider=_guess_provider(model_id),
                pricing=_SUBSCRIPTION_PRICING,
                reference_url=_REFERENCE_URL,
            )
            for model_id in model_ids
        ]
        self._save()
        logger.info("model_catalog_replaced", count=len(self._models))

    def _load(self) -> list[ModelInfo]:
        if not self._path.exists():
            return list(DEFAULT_MODELS)

        try:
            parsed = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.error("model_catalog_load_error", path=str(self._path), error=str(e))
            return list(DEFAULT_MODELS)

        raw_models = parsed.get("models") if isinstance(parsed, dict) else None
        if not isinstance(raw_models, list) or not raw_models:
            return list(DEFAULT_MODELS)

        valid = [
            ModelInfo(
                id=item["id"],
                name=item["name"],
                provider=item["provider"],
                pricing=item["pricing"],
                reference_url=item.get("reference_url") or item.get("referenceUrl"),
            )
            for item in raw_models
            if isinstance(item, dict)
            and all(item.get(k) for k in ("id", "name", "provider", "pricing"))
        ]
        return valid or list(DEFAULT_MODELS)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps({"models": [asdict(m) for m in self._models]}, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )


PREFERRED_MODEL_ORDER = ("gpt-4o", "gpt-4o-mini")


async def refresh_model_catalog(
    catalog: ModelCatalog, gateway: CompletionGateway, default_model: str
) -> list[str]:
    """Replace the catalog with the models that currently answer; empty list if none do."""
    if not gateway.is_enabled():
        return []

    discovered = await gateway.discover_models([default_model, *catalog.ids()])
    if not discovered:
        return []

    ranked = [m for m in dict.fromkeys([*PREFERRED_MODEL_ORDER, *discovered]) if m in discovered]
    catalog.replace_with_model_ids(ranked)
    return ranked
