"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Annotated, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, BeforeValidator, Field

_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _blank_unresolved(value: Optional[str]) -> str:
    """Treat a ``${VAR}`` placeholder that had no value in the environment as unset."""
    if value is None:
        return ""
    if _ENV_VAR_PATTERN.fullmatch(value.strip()):
        return ""
    return value


Secret = Annotated[str, BeforeValidator(_blank_unresolved)]


class TelegramConfig(BaseModel):
    token: Secret = ""
    api_base: str = "https://api.telegram.org"
    poll_timeout: int = Field(20, ge=0, le=50)  # seconds, long-poll wait
    poll_interval: float = Field(1.2, ge=0, le=60)  # seconds between poll cycles
    message_chunk_size: int = Field(3500, ge=100, le=4096)


class CompletionConfig(BaseModel):
    endpoint: str = "https://models.inference.ai.azure.com/chat/completions"
    api_key: Optional[Secret] = None  # preferred credential
    github_token: Optional[Secret] = None  # fallback credential
    max_retries: int = Field(3, ge=1, le=8)
    retry_base_delay: float = Field(0.4, ge=0.1, le=10)  # seconds
    timeout: float = Field(25, ge=1, le=180)  # seconds, per attempt
    max_total_wait: float = Field(70, ge=5, le=300)  # seconds, whole call
    budget_safety_margin: float = Field(1.5, ge=0, le=30)
    min_interval: float = Field(1.2, ge=0)  # seconds between calls per thread
    temperature: float = Field(0.2, ge=0, le=2)
    price_input_per_1m: float = Field(0, ge=0, le=1000)
    price_output_per_1m: float = Field(0, ge=0, le=1000)
    usage_log_path: str = "./data/copilot-usage.log"
    auto_refresh_catalog: bool = True


class SessionConfig(BaseModel):
    default_topic: str = "default"
    default_agent: str = "default"
    default_model: str = "gpt-4o"
    default_language: Literal["zh", "en"] = "en"
    reply_mode: Literal["manual", "auto"] = "auto"
    retention_messages: int = Field(200, ge=1)
    retention_days: int = Field(30, ge=0)
    context_window: int = Field(20, ge=1, le=200)


class StorageConfig(BaseModel):
    db_path: str = "./data/copilot_bridge.db"
    documents_dir: str = "./data/documents"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    model_catalog_path: str = "./config/models.catalog.json"
    repo_url: str = ""
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation.

    Raises ``FileNotFoundError`` for a missing file and pydantic's
    ``ValidationError`` for out-of-range numeric options; callers treat both
    as fatal.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
