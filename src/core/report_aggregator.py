#!/usr/bin/env python3
"""
Builds per employee efficiency reports from the ledger rows of a date
range.

Inclusion rules:
- Only rows whose date falls in the range (bounds included) are read.
- Blocks of regular tasks without a positive quantity are skipped.
- Blocks of the freeform task are always included, even without items
    or with an unparsable start time, since that task is time tracked.

Totals:
- Total work time sums the durations of all completed records.
- Productive work time sums the completed records of regular tasks and
    of the freeform task when it declares items.
- The average run rate is `productive work time / total items`, or 0
    without items.

Detailed records are sorted by date then start time. Records without a
parsable start time come last in their day. The sort is stable.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from dataclasses import dataclass, field
from typing import Optional
import datetime as dt
import logging

# Internal libraries
from common.resilience import RetryExecutor
from .errors import LedgerValidationException
from .layout import FIRST_DATA_ROW, FULL_SHEET_RANGE, sanitize_sheet_name
from .record_codec import (
    RecordCodec,
    RecordStatus,
    OpenTaskRecord,
    TaskRecord,
    run_rate,
)
from .spreadsheets.sheet_store import SheetStore
from .tasks import DEFAULT_CATALOG, TaskCatalog

logger = logging.getLogger(__name__)

# Sort key of records without parsable start time
_UNKNOWN_START_MINUTES = 24 * 60


@dataclass
class TaskTotals:
    """
    Accumulated values of one task over the report range.

    Attributes:
        task_name (str): Task name.
        quantity (int): Total items of the ended records.
        duration (int): Total worked seconds of the completed records.
        records (int): Number of records, including the open ones.
        run_rate (float): Seconds per item, see `run_rate()`.
    """

    task_name: str
    quantity: int = 0
    duration: int = 0
    records: int = 0
    run_rate: float = 0.0


@dataclass(frozen=True)
class EmployeeReport:
    """
    Attributes:
        employee (str): Employee worksheet name.
        date_from (dt.date): First day of the range.
        date_to (dt.date): Last day of the range.
        total_work_time (int): Seconds worked on completed records.
        productive_work_time (int): Seconds worked on item producing
            records.
        total_items (int): Items of the ended records, open ones
            excluded.
        average_run_rate (float): Productive seconds per item.
        task_totals (dict[str, TaskTotals]): Totals by task name, in
            task ordinal order.
        records (list[TaskRecord]): Detailed records, sorted.
    """

    employee: str
    date_from: dt.date
    date_to: dt.date
    total_work_time: int
    productive_work_time: int
    total_items: int
    average_run_rate: float
    task_totals: dict[str, TaskTotals] = field(default_factory=dict)
    records: list[TaskRecord] = field(default_factory=list)


class ReportAggregator:
    """
    Reads the employee worksheet and aggregates its records.
    """

    def __init__(
        self,
        store: SheetStore,
        spreadsheet_id: str,
        catalog: TaskCatalog = DEFAULT_CATALOG,
        executor: Optional[RetryExecutor] = None,
    ):
        self._store = store
        self._spreadsheet_id = spreadsheet_id
        self._codec = RecordCodec(catalog)
        self._owns_executor = executor is None
        self._executor = executor or RetryExecutor()

    def get_report(
        self, employee: str, date_from: dt.date, date_to: dt.date
    ) -> Optional[EmployeeReport]:
        """
        Build the report of the employee between two dates, included.

        Returns:
            Optional[EmployeeReport]: The report, or `None` if no row is
                dated in the range or the rows hold no record.

        Raises:
            LedgerValidationException: Invalid employee or date range.
            StoreException: The store failed after retries.
        """
        sheet = sanitize_sheet_name(employee)
        date_from, date_to = _as_date(date_from), _as_date(date_to)
        if date_from > date_to:
            raise LedgerValidationException(
                "Invalid date range.",
                {"date_to": ["The end date must not be before the start date."]},
            )

        exists = self._executor.execute(
            lambda: self._store.sheet_exists(self._spreadsheet_id, sheet),
            f"check sheet of '{sheet}'",
        )
        if not exists:
            logger.info(f"[Employee '{sheet}'] No sheet, no report.")
            return None

        rows = self._executor.execute(
            lambda: self._store.read_range(
                self._spreadsheet_id, sheet, FULL_SHEET_RANGE
            ),
            f"read rows of '{sheet}'",
        )

        matching = []
        for cells in rows[FIRST_DATA_ROW:]:
            row = self._codec.row(cells)
            date = row.date
            if date is not None and date_from <= date <= date_to:
                matching.append(row)

        if not matching:
            logger.info(
                f"[Employee '{sheet}'] No row between {date_from} and {date_to}."
            )
            return None

        records = self.__collect(matching)
        if not records:
            logger.info(
                f"[Employee '{sheet}'] No record between {date_from} and {date_to}."
            )
            return None

        report = self.__aggregate(sheet, date_from, date_to, records)
        logger.info(
            f"[Employee '{sheet}'] Report from {date_from} to {date_to}: "
            f"{len(report.records)} records, {report.total_items} items, "
            f"{report.total_work_time}s worked."
        )
        return report

    def close(self):
        if self._owns_executor:
            self._executor.close()

    def __collect(self, rows) -> list[TaskRecord]:
        catalog = self._codec.catalog
        records: list[TaskRecord] = []

        for row in rows:
            for task in catalog:
                record = self._codec.decode_block(row, task.ordinal)
                if record is None:
                    continue
                if not catalog.is_freeform(task) and record.quantity <= 0:
                    continue
                if isinstance(record, OpenTaskRecord):
                    record = record.as_in_progress()
                records.append(record)

        records.sort(
            key=lambda r: (
                r.date,
                _UNKNOWN_START_MINUTES if r.start_minutes is None else r.start_minutes,
            )
        )
        return records

    def __aggregate(
        self,
        sheet: str,
        date_from: dt.date,
        date_to: dt.date,
        records: list[TaskRecord],
    ) -> EmployeeReport:
        catalog = self._codec.catalog
        totals = {task.name: TaskTotals(task.name) for task in catalog}

        total_work_time = 0
        productive_work_time = 0
        total_items = 0

        for record in records:
            freeform = catalog.is_freeform(record.task_name)
            task_totals = totals[record.task_name]
            task_totals.records += 1

            # Open tasks are listed but not totaled
            if record.status is RecordStatus.IN_PROGRESS:
                continue
            task_totals.quantity += record.quantity
            total_items += record.quantity

            if not record.completed:
                continue

            task_totals.duration += record.duration
            total_work_time += record.duration
            if not freeform or record.quantity > 0:
                productive_work_time += record.duration

        for name, task_totals in totals.items():
            task_totals.run_rate = run_rate(
                task_totals.duration, task_totals.quantity, catalog.is_freeform(name)
            )

        average = productive_work_time / total_items if total_items > 0 else 0.0

        return EmployeeReport(
            employee=sheet,
            date_from=date_from,
            date_to=date_to,
            total_work_time=total_work_time,
            productive_work_time=productive_work_time,
            total_items=total_items,
            average_run_rate=average,
            task_totals={n: t for n, t in totals.items() if t.records > 0},
            records=records,
        )


def _as_date(value: dt.date | dt.datetime) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    raise LedgerValidationException(
        "Invalid date range.", {"date": [f"'{value}' is not a date."]}
    )
