"""Policy engine entrypoint: runs the enforcement ticks against the configured store."""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from powerguard.cli._helpers import (
    add_common_args,
    add_dump_arg,
    configure_logging,
    dump_memory_store,
    load_cli_config,
)
from powerguard.config.loader import ConfigError
from powerguard.runtime import build_runtime
from powerguard.store.base import StoreError

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powerguard-engine",
        description="Enforce outlet schedules, monthly limits and unplug detection.",
    )
    add_common_args(parser)
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every enforcement pass once and exit",
    )
    add_dump_arg(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    config = load_cli_config(args.config)
    LOGGER.info("Config loaded (version=%s)", config.config_version)

    try:
        runtime = build_runtime(config)
    except (ConfigError, StoreError) as exc:
        LOGGER.error("Failed to open store: %s", exc)
        return 2

    scheduler = runtime.scheduler
    try:
        if args.once:
            scheduler.run_once()
            LOGGER.info("Enforcement passes complete (%d devices)", len(runtime.repository.list_devices()))
        else:
            scheduler.run_forever()
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; stopping policy scheduler")
    except StoreError as exc:
        LOGGER.error("Store unavailable: %s", exc)
        return 2
    finally:
        dump_memory_store(runtime.store, args.dump_store)
        runtime.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
