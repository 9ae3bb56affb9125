#!/usr/bin/env python3
"""
File: report_aggregator_test.py
Author: Bastian Cerf
Date: 05/06/2025
Description:
    Unit test of the report aggregator module.

Company: Mecacerf SA
Website: http://mecacerf.ch
Contact: info@mecacerf.ch
"""

# Standard libraries
import pytest
from pytest import approx
import datetime as dt
import logging

# Internal libraries
from .test_constants import *
from .classes_mocks import MemorySheetStore, ledger_row, sheet_with, task_block
from core.errors import LedgerValidationException
from core.record_codec import RecordStatus
from core.report_aggregator import ReportAggregator
from core.tasks import FREEFORM_TASK_NAME

logger = logging.getLogger(__name__)

JUNE_1 = dt.date(2025, 6, 1)
JUNE_3 = dt.date(2025, 6, 3)


def store_rows(memory_store: MemorySheetStore, *rows):
    memory_store.set_rows(TEST_SPREADSHEET_ID, TEST_EMPLOYEE, sheet_with(*rows))


def test_no_sheet_no_report(aggregator: ReportAggregator):
    assert aggregator.get_report(TEST_EMPLOYEE, JUNE_1, JUNE_3) is None


def test_empty_range_no_report(aggregator: ReportAggregator, memory_store: MemorySheetStore):
    """
    A range without any matching row gives no report.
    """
    store_rows(
        memory_store,
        ledger_row(
            "10/05/2025",
            {"PICKING": task_block(TEST_PORTAL, "30", "09:00 AM", "10:00 AM")},
        ),
    )

    assert aggregator.get_report(TEST_EMPLOYEE, JUNE_1, JUNE_3) is None


def test_rows_without_records_no_report(
    aggregator: ReportAggregator, memory_store: MemorySheetStore
):
    """
    Regular tasks without items don't count.
    """
    store_rows(
        memory_store,
        ledger_row(
            TEST_DATE_TEXT, {"PICKING": task_block(TEST_PORTAL, "0", "09:00 AM", "10:00 AM")}
        ),
    )

    assert aggregator.get_report(TEST_EMPLOYEE, JUNE_1, JUNE_3) is None


def test_reversed_range(aggregator: ReportAggregator, memory_store: MemorySheetStore):
    with pytest.raises(LedgerValidationException) as info:
        aggregator.get_report(TEST_EMPLOYEE, JUNE_3, JUNE_1)

    assert "date_to" in info.value.field_errors
    assert memory_store.reads == 0


def test_records_sorted_by_start(
    aggregator: ReportAggregator, memory_store: MemorySheetStore
):
    """
    Two records of the same day are sorted by start time, whatever their
    column order.
    """
    store_rows(
        memory_store,
        ledger_row(
            TEST_DATE_TEXT,
            {
                "PICKING": task_block(TEST_PORTAL, "10", "04:00 PM", "04:30 PM"),
                "PACKING": task_block(TEST_PORTAL, "10", "02:00 PM", "02:30 PM"),
            },
        ),
    )

    report = aggregator.get_report(TEST_EMPLOYEE, JUNE_1, JUNE_3)

    assert report is not None
    assert [r.start_text for r in report.records] == ["02:00 PM", "04:00 PM"]
    assert [r.task_name for r in report.records] == ["PACKING", "PICKING"]


def test_records_sorted_by_date(
    aggregator: ReportAggregator, memory_store: MemorySheetStore
):
    """
    Dates come first, then start times. Unparsable freeform starts come
    last in their day.
    """
    store_rows(
        memory_store,
        ledger_row(
            "03/06/2025", {"GUN": task_block(TEST_PORTAL, "5", "08:00 AM", "08:10 AM")}
        ),
        ledger_row(
            TEST_DATE_TEXT,
            {
                "GUN": task_block(TEST_PORTAL, "5", "11:00 AM", "11:10 AM"),
                FREEFORM_TASK_NAME: task_block("Meeting", "", "after lunch", "03:00 PM"),
            },
        ),
        ledger_row(
            TEST_DATE_TEXT, {"GUN": task_block(TEST_PORTAL, "5", "10:00 AM", "10:10 AM")}
        ),
    )

    report = aggregator.get_report(TEST_EMPLOYEE, JUNE_1, JUNE_3)

    assert [(r.date, r.start_text) for r in report.records] == [
        (TEST_DATE, "10:00 AM"),
        (TEST_DATE, "11:00 AM"),
        (TEST_DATE, "after lunch"),
        (JUNE_3, "08:00 AM"),
    ]


def test_range_bounds_included(
    aggregator: ReportAggregator, memory_store: MemorySheetStore
):
    store_rows(
        memory_store,
        ledger_row(
            "31/05/2025", {"GUN": task_block(TEST_PORTAL, "5", "08:00 AM", "08:10 AM")}
        ),
        ledger_row(
            "01/06/2025", {"GUN": task_block(TEST_PORTAL, "5", "08:00 AM", "08:10 AM")}
        ),
        ledger_row(
            "03/06/2025", {"GUN": task_block(TEST_PORTAL, "5", "08:00 AM", "08:10 AM")}
        ),
        ledger_row(
            "04/06/2025", {"GUN": task_block(TEST_PORTAL, "5", "08:00 AM", "08:10 AM")}
        ),
    )

    report = aggregator.get_report(TEST_EMPLOYEE, JUNE_1, JUNE_3)

    assert [r.date for r in report.records] == [JUNE_1, JUNE_3]


def test_totals(aggregator: ReportAggregator, memory_store: MemorySheetStore):
    """
    Totals and rates over completed, open, freeform and invalid records.
    """
    store_rows(
        memory_store,
        ledger_row(
            TEST_DATE_TEXT,
            {
                # 1 hour, 30 items
                "PICKING": task_block(TEST_PORTAL, "30", "09:00 AM", "10:00 AM"),
                # Invalid end, 10 items without duration
                "PACKING": task_block(TEST_PORTAL, "10", "10:00 AM", "ten past"),
                # Freeform without items, 2 minutes
                FREEFORM_TASK_NAME: task_block("Cleaning", "0", "11:00 AM", "11:02 AM"),
            },
        ),
        ledger_row(
            TEST_DATE_TEXT,
            {
                # Open, 20 items
                "PICKING": task_block(TEST_PORTAL, "20", "01:00 PM"),
                # Freeform with items, 30 minutes
                FREEFORM_TASK_NAME: task_block("Labels", "15", "02:00 PM", "02:30 PM"),
            },
        ),
    )

    report = aggregator.get_report(TEST_EMPLOYEE, dt.datetime(2025, 6, 2, 8), JUNE_3)

    assert report.employee == TEST_EMPLOYEE
    assert report.date_from == TEST_DATE
    assert len(report.records) == 5
    # The open PICKING record is listed but not totaled
    assert report.total_items == 30 + 10 + 0 + 15
    assert report.total_work_time == 3600 + 120 + 1800
    assert report.productive_work_time == 3600 + 1800
    assert report.average_run_rate == approx((3600 + 1800) / 55)

    picking = report.task_totals["PICKING"]
    assert picking.records == 2
    assert picking.quantity == 30
    assert picking.duration == 3600
    assert picking.run_rate == approx(120.0)

    freeform = report.task_totals[FREEFORM_TASK_NAME]
    assert freeform.quantity == 15
    assert freeform.duration == 1920
    assert freeform.run_rate == approx(128.0)

    assert "GUN" not in report.task_totals

    statuses = {(r.task_name, r.start_text): r.status for r in report.records}
    assert statuses[("PACKING", "10:00 AM")] is RecordStatus.INVALID_END
    assert statuses[("PICKING", "01:00 PM")] is RecordStatus.IN_PROGRESS


def test_open_record_not_totaled(
    aggregator: ReportAggregator, memory_store: MemorySheetStore
):
    """
    A task still in progress doesn't lower the run rates of the ended
    ones.
    """
    store_rows(
        memory_store,
        ledger_row(
            TEST_DATE_TEXT,
            {"PICKING": task_block(TEST_PORTAL, "30", "09:00 AM", "10:00 AM")},
        ),
        ledger_row(
            TEST_DATE_TEXT, {"PICKING": task_block(TEST_PORTAL, "20", "01:00 PM")}
        ),
    )

    report = aggregator.get_report(TEST_EMPLOYEE, TEST_DATE, TEST_DATE)

    assert len(report.records) == 2
    assert report.total_items == 30
    assert report.average_run_rate == approx(120.0)
    assert report.task_totals["PICKING"].records == 2
    assert report.task_totals["PICKING"].quantity == 30
    assert report.task_totals["PICKING"].run_rate == approx(120.0)


def test_freeform_run_rate_without_items(
    aggregator: ReportAggregator, memory_store: MemorySheetStore
):
    """
    The freeform task without items has its duration as run rate.
    """
    store_rows(
        memory_store,
        ledger_row(
            TEST_DATE_TEXT,
            {FREEFORM_TASK_NAME: task_block("Cleaning", "", "11:00 AM", "11:02 AM")},
        ),
    )

    report = aggregator.get_report(TEST_EMPLOYEE, TEST_DATE, TEST_DATE)

    assert report.records[0].run_rate == approx(120.0)
    assert report.task_totals[FREEFORM_TASK_NAME].run_rate == approx(120.0)
    assert report.productive_work_time == 0
    assert report.average_run_rate == 0.0


def test_invalid_date_argument(aggregator: ReportAggregator):
    with pytest.raises(LedgerValidationException):
        aggregator.get_report(TEST_EMPLOYEE, "2025-06-01", JUNE_3)  # type: ignore
