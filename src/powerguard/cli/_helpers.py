"""Shared utilities for CLI entrypoints."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional

from powerguard.config.loader import Config, ConfigError, load_config
from powerguard.store.memory import MemoryStore

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/example.yaml"
LOCAL_CONFIG_PATH = "config/local.yaml"


def add_common_args(parser: argparse.ArgumentParser, *, require_config: bool = False) -> None:
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        required=require_config,
        help=(
            "Path to YAML config file (default: "
            f"{LOCAL_CONFIG_PATH} if present, else {DEFAULT_CONFIG_PATH})"
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging for troubleshooting",
    )


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    if verbose:
        return
    # Quiet HTTP client and server internals unless explicitly requested.
    for name in ("urllib3", "requests", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


def resolve_config_path(config_path: Optional[str]) -> str:
    if config_path:
        return config_path
    local = Path(LOCAL_CONFIG_PATH)
    return str(local) if local.exists() else DEFAULT_CONFIG_PATH


def load_cli_config(config_path: Optional[str]) -> Config:
    resolved = resolve_config_path(config_path)
    try:
        return load_config(resolved)
    except ConfigError as exc:
        raise SystemExit(f"Config validation failed: {exc}") from exc


def add_dump_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dump-store",
        dest="dump_store",
        default=None,
        help="Write the in-memory store to this JSON file on exit (memory backend only)",
    )


def dump_memory_store(store: object, out_path: Optional[str]) -> None:
    if not out_path:
        return
    if not isinstance(store, MemoryStore):
        LOGGER.warning("--dump-store ignored: the configured backend is not the in-memory store")
        return
    target = Path(out_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(store.snapshot(), indent=2, sort_keys=True), encoding="utf-8")
    LOGGER.info("Store snapshot written to %s", target)
