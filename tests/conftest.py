#!/usr/bin/env python3
"""
File: conftest.py
Author: Bastian Cerf
Date: 02/06/2025
Description:
    Declaration of shared fixtures across unit test modules.

Company: Mecacerf SA
Website: http://mecacerf.ch
Contact: info@mecacerf.ch
"""

# Standard libraries
import pytest
from pathlib import Path
from typing import Generator

# Internal libraries
from tests.test_constants import *
from tests.classes_mocks import MemorySheetStore
from common.resilience import RetryExecutor, RetryPolicy
from common.ttl_cache import TTLCache
from core.task_ledger import TaskLedger
from core.report_aggregator import ReportAggregator
from core.spreadsheets.workbook_store import WorkbookSheetStore
from model.ledger_service import TaskLedgerService

########################################################################
#                             Store fixtures                           #
########################################################################


@pytest.fixture
def memory_store() -> MemorySheetStore:
    """
    Get an empty in-memory store.
    """
    return MemorySheetStore()


@pytest.fixture
def workbook_store(tmp_path: Path) -> WorkbookSheetStore:
    """
    Get a workbook store on a fresh repository folder.
    """
    return WorkbookSheetStore(str(tmp_path / "repository"), lock_timeout=0.5)


########################################################################
#                            Ledger fixtures                           #
########################################################################


@pytest.fixture
def sleeps() -> list[float]:
    """
    Backoff delays requested by the executor, in order.
    """
    return []


@pytest.fixture
def executor(sleeps: list[float]) -> Generator[RetryExecutor, None, None]:
    """
    Get a retry executor that records its backoff delays instead of
    waiting them.
    """
    policy = RetryPolicy(
        max_retries=TEST_MAX_RETRIES, base_delay=TEST_BASE_DELAY, timeout=TEST_TIMEOUT
    )
    with RetryExecutor(policy, sleep=sleeps.append) as executor:
        yield executor


@pytest.fixture
def cache() -> Generator[TTLCache, None, None]:
    """
    Get a cache without background sweeper.
    """
    cache = TTLCache(sweep_interval=0)
    yield cache
    cache.close()


@pytest.fixture
def ledger(
    memory_store: MemorySheetStore, executor: RetryExecutor, cache: TTLCache
) -> Generator[TaskLedger, None, None]:
    """
    Get a task ledger on the in-memory store.
    """
    ledger = TaskLedger(
        memory_store, TEST_SPREADSHEET_ID, executor=executor, cache=cache
    )
    yield ledger
    ledger.close()


@pytest.fixture
def aggregator(
    memory_store: MemorySheetStore, executor: RetryExecutor
) -> ReportAggregator:
    """
    Get a report aggregator on the in-memory store.
    """
    return ReportAggregator(memory_store, TEST_SPREADSHEET_ID, executor=executor)


@pytest.fixture
def service(
    ledger: TaskLedger, aggregator: ReportAggregator
) -> Generator[TaskLedgerService, None, None]:
    """
    Get the ledger service on the in-memory store.
    """
    service = TaskLedgerService(ledger, aggregator)
    yield service
    service.close()
