"""CLI entry point for copilot-bridge."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from copilot_bridge.ai.catalog import ModelCatalog, refresh_model_catalog
from copilot_bridge.ai.client import CompletionGateway
from copilot_bridge.app import BridgeApp
from copilot_bridge.config import AppConfig, load_config
from copilot_bridge.log import setup_logging
from copilot_bridge.storage.usage_log import UsageLog


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="copilot-bridge",
        description="Telegram to Copilot chat bridge with persistent topic threads",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the bridge"),
        ("config-check", "Validate configuration"),
        ("model-info", "Show the model catalog and completion settings"),
        ("model-sync", "Probe the endpoint and rewrite the model catalog"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "model-info":
        _model_info(args.config, args.env)
    elif args.command == "model-sync":
        _model_sync(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _key_source(config: AppConfig) -> str:
    if config.completion.api_key:
        return "api_key"
    if config.completion.github_token:
        return "github_token"
    return "none"


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory : {config.data_dir}")
    print(f"  Telegram token : {'set' if config.telegram.token else 'MISSING'}")
    print(f"  Credential     : {_key_source(config)}")
    print(f"  Endpoint       : {config.completion.endpoint}")
    print(f"  Storage        : {config.storage.db_path}")
    print(f"  Retention      : {config.session.retention_messages} messages / {config.session.retention_days} days")
    if not config.telegram.token:
        sys.exit(1)


def _model_info(config_path: str, env_path: str) -> None:
    """Show the model catalog and completion settings."""
    config = _load_or_exit(config_path, env_path)
    catalog = ModelCatalog(config.model_catalog_path)
    completion = config.completion

    print("Completion Configuration")
    print("=" * 50)
    print(f"  Default  : {config.session.default_model}")
    print(f"  Retries  : {completion.max_retries} (base delay {completion.retry_base_delay}s)")
    print(f"  Timeout  : {completion.timeout}s per attempt, {completion.max_total_wait}s total")
    print(f"  Interval : {completion.min_interval}s per thread")
    print(f"  Pricing  : ${completion.price_input_per_1m}/1M in, ${completion.price_output_per_1m}/1M out")
    print(f"\n  Catalog: {config.model_catalog_path}")
    for model in catalog.list():
        print(f"    - {model.id} ({model.provider})")
    print()


def _model_sync(config_path: str, env_path: str) -> None:
    """Discover models that answer on the endpoint and save them as the catalog."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_json)

    async def _sync() -> list[str]:
        gateway = CompletionGateway(
            config.completion, UsageLog(config.completion.usage_log_path), config.session.default_model
        )
        try:
            if not gateway.is_enabled():
                print("No completion credential configured (api_key or github_token).", file=sys.stderr)
                sys.exit(1)
            catalog = ModelCatalog(config.model_catalog_path)
            return await refresh_model_catalog(catalog, gateway, config.session.default_model)
        finally:
            await gateway.close()

    ranked = asyncio.run(_sync())
    if not ranked:
        print("No model answered on chat/completions; catalog left unchanged.", file=sys.stderr)
        sys.exit(1)
    print(f"Model catalog updated ({len(ranked)}):")
    for model_id in ranked:
        print(f"  - {model_id}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_json)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = BridgeApp(config)
        try:
            await app.start()
            await app.run(stop_event)
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
