#!/usr/bin/env python3
"""
TaskLedger command line entry point.

```
python main.py status SAGAR
python main.py start SAGAR PICKING "AMAZON DF" --quantity 30
python main.py end SAGAR --remark "Shelf B restocked"
python main.py report SAGAR 2025-06-01 2025-06-30
```

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from typing import Optional, Sequence
import argparse
import datetime as dt
import logging
import sys

# Internal libraries
import bootstrap
from ledger_config import CONFIG_FILE_PATH
from model import IModelMessage, EmployeeReportReady, ModelError, TaskLedgerService
from core.record_codec import format_duration

logger = logging.getLogger("main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mecacerf TaskLedger")
    parser.add_argument(
        "--config",
        type=str,
        default=CONFIG_FILE_PATH,
        help=(
            "Path to ledger configuration file (.ini). "
            "A default file is created if not existing."
        ),
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log debug messages."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    status = commands.add_parser("status", help="Show the active task.")
    status.add_argument("employee", nargs="+", help="Employee name(s).")

    start = commands.add_parser("start", help="Start a task.")
    start.add_argument("employee")
    start.add_argument("task", help="Task type name.")
    start.add_argument("label", nargs="?", default="", help="Portal or label.")
    start.add_argument("--quantity", default=None, help="Number of items.")
    start.add_argument("--at", default=None, help="ISO start time, now if omitted.")
    start.add_argument("--remark", default=None)

    end = commands.add_parser("end", help="End the active task.")
    end.add_argument("employee")
    end.add_argument("--at", default=None, help="ISO end time, now if omitted.")
    end.add_argument("--remark", default=None, help="Final remark.")

    report = commands.add_parser("report", help="Summarize a date range.")
    report.add_argument("employee")
    report.add_argument("date_from", help="First date (YYYY-MM-DD).")
    report.add_argument("date_to", help="Last date (YYYY-MM-DD).")

    return parser


def run_command(service: TaskLedgerService, args: argparse.Namespace) -> IModelMessage:
    """
    Dispatch the parsed command to the service.
    """
    if args.command == "status":
        if len(args.employee) == 1:
            return service.get_active_task(args.employee[0])
        return service.get_all_active_tasks(args.employee)

    if args.command == "start":
        return service.start_task(
            args.employee,
            args.task,
            args.label,
            args.quantity,
            args.at or dt.datetime.now(),
            args.remark,
        )

    if args.command == "end":
        return service.end_task(
            args.employee, args.at or dt.datetime.now(), args.remark
        )

    return service.get_report(args.employee, args.date_from, args.date_to)


def print_result(result: IModelMessage):
    print(result.message)

    if isinstance(result, ModelError):
        for field, errors in result.details.items():
            for error in errors:
                print(f"  {field}: {error}")

    elif isinstance(result, EmployeeReportReady) and result.report:
        for totals in result.report.task_totals.values():
            print(
                f"  {totals.task_name}: {totals.records} records, "
                f"{totals.quantity} items, {format_duration(totals.duration)}"
            )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    bootstrap.configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    service = bootstrap.build_service(bootstrap.load_config(args.config))
    try:
        result = run_command(service, args)
    finally:
        service.close()

    print_result(result)
    return 0 if result.success else 1


# Program entry
if __name__ == "__main__":
    exit_code = 0
    try:
        exit_code = main()

    except Exception as exc:
        exit_code = 1
        try:
            # Log the crash if logging is ready
            logger.exception("An unhandled exception occurred.")
        except Exception:
            # Fallback to print
            print(f"An unhandled exception occurred {exc}.")

    sys.exit(exit_code)
