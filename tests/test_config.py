from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from copilot_bridge.config import AppConfig, load_config


def write_config(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_sections(tmp_path):
    config = load_config(write_config(tmp_path, "log_level: DEBUG\n"), tmp_path / "missing.env")

    assert config.log_level == "DEBUG"
    assert config.completion.max_retries == 3
    assert config.completion.max_total_wait == 70
    assert config.session.default_topic == "default"
    assert config.telegram.message_chunk_size == 3500


def test_env_interpolation_and_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("BRIDGE_TEST_TOKEN", "123:abc")
    path = write_config(
        tmp_path,
        "data_dir: /srv/bridge\n"
        "telegram:\n  token: ${BRIDGE_TEST_TOKEN}\n"
        "storage:\n  db_path: ${data_dir}/bridge.db\n",
    )

    config = load_config(path, tmp_path / "missing.env")

    assert config.telegram.token == "123:abc"
    assert config.storage.db_path == "/srv/bridge/bridge.db"


def test_unset_credentials_are_blank(tmp_path, monkeypatch):
    monkeypatch.delenv("BRIDGE_TEST_MISSING", raising=False)
    path = write_config(
        tmp_path,
        "completion:\n  api_key: ${BRIDGE_TEST_MISSING}\n  github_token:\n",
    )

    config = load_config(path, tmp_path / "missing.env")

    assert config.completion.api_key == ""
    assert not config.completion.github_token


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("BRIDGE_DOTENV_KEY", raising=False)
    env = tmp_path / ".env"
    env.write_text("BRIDGE_DOTENV_KEY=from-dotenv\n", encoding="utf-8")
    path = write_config(tmp_path, "completion:\n  api_key: ${BRIDGE_DOTENV_KEY}\n")

    config = load_config(path, env)

    assert config.completion.api_key == "from-dotenv"
    os.environ.pop("BRIDGE_DOTENV_KEY", None)


def test_missing_file_is_fatal(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / "missing.env")


@pytest.mark.parametrize(
    "section,values",
    [
        ("completion", {"max_retries": 0}),
        ("completion", {"max_retries": 9}),
        ("completion", {"timeout": 0.5}),
        ("completion", {"max_total_wait": 301}),
        ("completion", {"retry_base_delay": 20}),
        ("telegram", {"poll_timeout": 60}),
        ("session", {"retention_messages": 0}),
    ],
)
def test_out_of_range_numbers_are_rejected(section, values):
    with pytest.raises(ValidationError):
        AppConfig(**{section: values})
