#!/usr/bin/env python3
"""
File: ledger_scheduler_test.py
Author: Bastian Cerf
Date: 08/06/2025
Description:
    Unit test of the asynchronous ledger scheduler.

Company: Mecacerf SA
Website: http://mecacerf.ch
Contact: info@mecacerf.ch
"""

# Standard libraries
import pytest
import time
import logging
from typing import Optional

# Internal libraries
from .test_constants import *
from .classes_mocks import MemorySheetStore
from model import (
    ActiveTaskList,
    ActiveTaskStatus,
    EmployeeReportReady,
    ErrorKind,
    IModelMessage,
    LedgerScheduler,
    ModelError,
    TaskEnded,
    TaskLedgerService,
    TaskStarted,
)

logger = logging.getLogger(__name__)


@pytest.fixture
def scheduler(service: TaskLedgerService):
    with LedgerScheduler(service) as scheduler:
        yield scheduler


def wait_result(scheduler: LedgerScheduler, handle: int) -> Optional[IModelMessage]:
    """
    Poll the scheduler the way a main loop does.
    """
    timeout = time.monotonic() + TEST_WAIT_TIMEOUT
    while not scheduler.available(handle):
        if time.monotonic() > timeout:
            raise TimeoutError(f"Task {handle} didn't finish in time.")
        time.sleep(0.01)
    return scheduler.get_result(handle)


def test_task_flow(scheduler: LedgerScheduler):
    """
    Run a whole task flow through the scheduler.
    """
    result = wait_result(scheduler, scheduler.submit_status(TEST_EMPLOYEE))
    assert isinstance(result, ActiveTaskStatus)
    assert result.active_task is None

    result = wait_result(
        scheduler,
        scheduler.submit_start(TEST_EMPLOYEE, "PICKING", TEST_PORTAL, "30", at(9)),
    )
    assert isinstance(result, TaskStarted)

    result = wait_result(
        scheduler, scheduler.submit_status_list([TEST_EMPLOYEE, TEST_OTHER_EMPLOYEE])
    )
    assert isinstance(result, ActiveTaskList)
    assert result.active_tasks[TEST_EMPLOYEE].task_name == "PICKING"

    result = wait_result(scheduler, scheduler.submit_end(TEST_EMPLOYEE, at(11), "Done"))
    assert isinstance(result, TaskEnded)
    assert result.task.duration == 7200

    result = wait_result(
        scheduler, scheduler.submit_report(TEST_EMPLOYEE, TEST_DATE, TEST_DATE)
    )
    assert isinstance(result, EmployeeReportReady)
    assert result.report.total_items == 30


def test_unique_handles(scheduler: LedgerScheduler):
    handles = [scheduler.submit_status(TEST_EMPLOYEE) for _ in range(5)]

    assert len(set(handles)) == 5
    for handle in handles:
        assert isinstance(wait_result(scheduler, handle), ActiveTaskStatus)


def test_result_read_once(scheduler: LedgerScheduler):
    handle = scheduler.submit_status(TEST_EMPLOYEE)

    assert wait_result(scheduler, handle) is not None
    assert not scheduler.available(handle)
    assert scheduler.get_result(handle) is None


def test_unknown_handle(scheduler: LedgerScheduler):
    assert not scheduler.available(42)
    assert scheduler.get_result(42) is None
    # Dropping an unknown handle is harmless
    scheduler.drop(42)


def test_pending_task(scheduler: LedgerScheduler, memory_store: MemorySheetStore):
    """
    A running task isn't available, and its result is never returned
    once dropped.
    """
    memory_store.hold("sheet_exists")
    try:
        handle = scheduler.submit_status(TEST_EMPLOYEE)
        time.sleep(0.05)
        assert not scheduler.available(handle)
        assert scheduler.get_result(handle) is None

        scheduler.drop(handle)
    finally:
        memory_store.release("sheet_exists")

    time.sleep(0.05)
    assert not scheduler.available(handle)


def test_errors_are_results(scheduler: LedgerScheduler):
    result = wait_result(scheduler, scheduler.submit_end(TEST_EMPLOYEE, at(11)))

    assert isinstance(result, ModelError)
    assert result.kind is ErrorKind.CONFLICT


class RaisingService:
    def get_active_task(self, employee: str):
        raise RuntimeError("worker crashed")


def test_raising_task(caplog: pytest.LogCaptureFixture):
    """
    A task raising an exception produces an internal error message.
    """
    with LedgerScheduler(RaisingService()) as scheduler:  # type: ignore
        with caplog.at_level(logging.ERROR):
            result = wait_result(scheduler, scheduler.submit_status(TEST_EMPLOYEE))

    assert isinstance(result, ModelError)
    assert result.kind is ErrorKind.INTERNAL
    assert result.message == "Task raised RuntimeError."
    assert "didn't finish properly" in caplog.text
