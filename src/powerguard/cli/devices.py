"""Operator CLI for listing, toggling and deleting outlets and printing usage reports."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from powerguard.cli._helpers import (
    add_common_args,
    add_dump_arg,
    configure_logging,
    dump_memory_store,
    load_cli_config,
)
from powerguard.config.loader import ConfigError
from powerguard.control.lifecycle import LifecycleError
from powerguard.control.manual import Operator
from powerguard.devices.registry import DeviceView
from powerguard.logging.usage import UsageSummary, persist_summary, summarize_usage
from powerguard.runtime import Runtime, build_runtime
from powerguard.store.base import StoreError

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powerguard-devices",
        description="Inspect and control monitored outlets.",
    )
    add_common_args(parser)
    add_dump_arg(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    listing = subparsers.add_parser("list", help="Show every outlet with its display status")
    listing.add_argument("--json", action="store_true", help="Print the device views as JSON")

    toggle = subparsers.add_parser("toggle", help="Manually toggle an outlet on or off")
    toggle.add_argument("outlet", help="Outlet key or display name, e.g. Outlet_1")
    toggle.add_argument("--user", default="Operator", help="Name recorded in the activity log")
    toggle.add_argument(
        "--leave-group",
        action="store_true",
        help="Remove the outlet from its combined-limit group if the group blocks the turn on",
    )

    delete = subparsers.add_parser("delete", help="Delete an outlet and every reference to it")
    delete.add_argument("outlet", help="Outlet key or display name")

    report = subparsers.add_parser("report", help="Summarize monthly usage per outlet and department")
    report.add_argument("--month", default=None, help="Month to summarize as YYYY-MM (default: current)")
    report.add_argument("--out", default=None, help="Optional path to write the report JSON")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    config = load_cli_config(args.config)
    LOGGER.debug("Config loaded (version=%s)", config.config_version)

    try:
        runtime = build_runtime(config)
    except (ConfigError, StoreError) as exc:
        LOGGER.error("Failed to open store: %s", exc)
        return 2

    try:
        if args.command == "list":
            exit_code = _handle_list(runtime, as_json=args.json)
        elif args.command == "toggle":
            exit_code = _handle_toggle(runtime, args.outlet, user=args.user, leave_group=args.leave_group)
        elif args.command == "delete":
            exit_code = _handle_delete(runtime, args.outlet)
        elif args.command == "report":
            exit_code = _handle_report(runtime, month=args.month, out=args.out)
        else:  # pragma: no cover
            parser.error(f"Unknown command: {args.command}")
    except StoreError as exc:
        LOGGER.error("Store unavailable: %s", exc)
        return 2
    finally:
        dump_memory_store(runtime.store, args.dump_store)
        runtime.close()
    return exit_code


def _handle_list(runtime: Runtime, *, as_json: bool) -> int:
    views = runtime.registry.refresh()
    if as_json:
        print(json.dumps([view.to_dict() for view in views], indent=2))
        return 0
    if not views:
        LOGGER.warning("No outlets found")
        return 0
    for view in views:
        print(_format_view(view))
    return 0


def _handle_toggle(runtime: Runtime, outlet: str, *, user: str, leave_group: bool) -> int:
    result = runtime.manual.toggle(
        _outlet_key(outlet),
        operator=Operator(name=user, user_id=user.lower(), role="admin"),
        leave_group_if_blocked=leave_group,
    )
    if not result.accepted:
        LOGGER.error("Rejected: %s", result.reason)
        return 3
    if result.removed_from_group is not None:
        LOGGER.info("%s removed from combined group %s", result.outlet_key, result.removed_from_group)
    LOGGER.info("%s is now %s", result.outlet_key, result.control_state)
    return 0


def _handle_delete(runtime: Runtime, outlet: str) -> int:
    try:
        report = runtime.lifecycle.delete_device(_outlet_key(outlet))
    except LifecycleError as exc:
        LOGGER.error("%s", exc)
        return 3
    LOGGER.info(
        "Deleted %s (groups: %s, logs removed: %d)",
        report.outlet_key,
        ", ".join(report.removed_from_groups) or "none",
        sum(report.removed_logs.values()),
    )
    for error in report.errors:
        LOGGER.warning("Cleanup step failed: %s", error)
    return 0


def _handle_report(runtime: Runtime, *, month: Optional[str], out: Optional[str]) -> int:
    today = runtime.clock.now().date()
    year, month_number = today.year, today.month
    if month:
        try:
            year_text, month_text = month.split("-", 1)
            year, month_number = int(year_text), int(month_text)
        except ValueError:
            LOGGER.error("--month must look like YYYY-MM, got %r", month)
            return 2
        if not 1 <= month_number <= 12:
            LOGGER.error("--month must look like YYYY-MM, got %r", month)
            return 2
    summary = summarize_usage(
        runtime.repository.list_devices(),
        runtime.repository.list_combined_limits(),
        year,
        month_number,
    )
    if out:
        persist_summary(summary, out_path=Path(out))
    _print_report(summary)
    return 0


def _outlet_key(value: str) -> str:
    return value.strip().replace(" ", "_")


def _format_view(view: DeviceView) -> str:
    bypass = " (bypass)" if view.bypassed else ""
    return (
        f"{view.outlet_key:<12} {view.status.value:<8} control={view.control_state}{bypass} "
        f"month={view.month_energy_wh / 1000.0:.3f} kWh limit={view.limit_label} "
        f"office={view.office or '-'} appliance={view.appliance or '-'}"
    )


def _print_report(summary: UsageSummary) -> None:
    print(f"Usage for {summary.year:04d}-{summary.month:02d}: {summary.total_energy_wh / 1000.0:.3f} kWh")
    for device in summary.devices:
        percent = f"{device.percent_of_limit:.1f}%" if device.percent_of_limit is not None else "no limit"
        group = f" [{device.group}]" if device.group else ""
        print(f"  {device.outlet_key}{group}: {device.month_energy_wh / 1000.0:.3f} kWh ({percent})")
    for group in summary.groups:
        percent = f"{group.percent_of_limit:.1f}%" if group.percent_of_limit is not None else "no limit"
        label = group.department or "(combined)"
        print(f"  group {label}: {group.month_energy_wh / 1000.0:.3f} kWh ({percent}) control={group.device_control}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
