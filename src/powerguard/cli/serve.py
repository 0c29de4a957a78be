"""HTTP API entrypoint."""

from __future__ import annotations

import argparse
import logging
import os
from typing import Sequence

import uvicorn

from powerguard.cli._helpers import configure_logging, resolve_config_path

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powerguard-api",
        description="Serve the outlet API (settings come from the environment or .env).",
    )
    parser.add_argument("--config", default=None, help="Engine config file (sets POWERGUARD_CONFIG)")
    parser.add_argument("--host", default=None, help="Bind address (default: API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: API_PORT)")
    parser.add_argument(
        "--with-engine",
        action="store_true",
        help="Run the enforcement ticks inside the API process (sets RUN_ENGINE)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging for troubleshooting")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    # Settings are read when the app module is imported.
    if args.config:
        os.environ["POWERGUARD_CONFIG"] = resolve_config_path(args.config)
    if args.with_engine:
        os.environ["RUN_ENGINE"] = "true"

    from powerguard.api.main import app  # pylint: disable=import-outside-toplevel
    from powerguard.api.settings import settings  # pylint: disable=import-outside-toplevel

    host = args.host or settings.API_HOST
    port = args.port or settings.API_PORT
    LOGGER.info("Serving API on http://%s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level="debug" if args.verbose else "info")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
