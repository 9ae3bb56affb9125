#!/usr/bin/env python3
"""
File: resilience_test.py
Author: Bastian Cerf
Date: 03/06/2025
Description:
    Unit test of the retry executor and the request de-duplication.

Company: Mecacerf SA
Website: http://mecacerf.ch
Contact: info@mecacerf.ch
"""

# Standard libraries
import pytest
import threading
import time
import logging
from concurrent.futures import TimeoutError as FutureTimeoutError

# Internal libraries
from .test_constants import *
from .classes_mocks import MemorySheetStore
from common.resilience import (
    RetryExecutor,
    RetryPolicy,
    RequestDeduplicator,
    is_retryable,
)
from core.errors import (
    LedgerConfigException,
    LedgerValidationException,
    StoreException,
    StoreTransientException,
)

logger = logging.getLogger(__name__)


class Flaky:
    """
    Callable failing with the given errors before returning `result`.
    """

    def __init__(self, errors: list[BaseException], result: str = "ok"):
        self._errors = list(errors)
        self._result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self._result


class StatusError(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"status {status_code}")
        self.status_code = status_code


########################################################################
#                         Classification test                          #
########################################################################


@pytest.mark.parametrize(
    "error",
    [
        StoreTransientException(),
        StoreTransientException("quota", 429),
        TimeoutError(),
        FutureTimeoutError(),
        ConnectionError(),
        StatusError(500),
        StatusError(503),
        StatusError(429),
        StatusError(408),
    ],
)
def test_retryable_errors(error: BaseException):
    assert is_retryable(error)


@pytest.mark.parametrize(
    "error",
    [
        StoreException("forbidden", 403),
        StoreException("not found", 404),
        LedgerValidationException(),
        LedgerConfigException(),
        StatusError(400),
        ValueError(),
    ],
)
def test_terminal_errors(error: BaseException):
    assert not is_retryable(error)


def test_policy_delay():
    policy = RetryPolicy(base_delay=0.5)
    assert [policy.delay(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]


########################################################################
#                           Retry executor test                        #
########################################################################


def test_success_first_attempt(executor: RetryExecutor, sleeps: list[float]):
    operation = Flaky([])

    assert executor.execute(operation, "read rows") == "ok"
    assert operation.calls == 1
    assert sleeps == []


def test_two_failures_then_success(executor: RetryExecutor, sleeps: list[float]):
    """
    A call failing twice with a retryable error then succeeding yields
    the result, with exactly two backoff delays.
    """
    operation = Flaky([StoreTransientException(), StoreTransientException()])

    assert executor.execute(operation, "read rows") == "ok"
    assert operation.calls == 3
    assert sleeps == [TEST_BASE_DELAY, TEST_BASE_DELAY * 2]


def test_store_call_retried(
    executor: RetryExecutor, sleeps: list[float], memory_store: MemorySheetStore
):
    """
    Same property on a store call.
    """
    memory_store.set_rows(TEST_SPREADSHEET_ID, TEST_EMPLOYEE, [["DATE"]])
    memory_store.fail_next(
        "read_range", StoreTransientException("busy"), StoreTransientException("503", 503)
    )

    rows = executor.execute(
        lambda: memory_store.read_range(TEST_SPREADSHEET_ID, TEST_EMPLOYEE), "read rows"
    )

    assert rows == [["DATE"]]
    assert memory_store.calls["read_range"] == 3
    assert len(sleeps) == 2


def test_terminal_error_not_retried(executor: RetryExecutor, sleeps: list[float]):
    operation = Flaky([StoreException("forbidden", 403)])

    with pytest.raises(StoreException, match="forbidden"):
        executor.execute(operation)

    assert operation.calls == 1
    assert sleeps == []


def test_retries_exhausted(
    executor: RetryExecutor, sleeps: list[float], caplog: pytest.LogCaptureFixture
):
    """
    The last error is raised once the retries are exhausted.
    """
    errors = [StoreTransientException(f"failure {n}") for n in range(10)]
    operation = Flaky(errors)

    with caplog.at_level(logging.WARNING):
        with pytest.raises(StoreTransientException, match="failure 3"):
            executor.execute(operation, "read rows")

    assert operation.calls == TEST_MAX_RETRIES + 1
    assert sleeps == [1.0, 2.0, 4.0]
    assert "retry 1/3" in caplog.text
    assert "after 4 attempts" in caplog.text


def test_no_retry_policy(sleeps: list[float]):
    with RetryExecutor(RetryPolicy(max_retries=0), sleep=sleeps.append) as executor:
        with pytest.raises(StoreTransientException):
            executor.execute(Flaky([StoreTransientException()]))

    assert sleeps == []


def test_attempt_timeout(sleeps: list[float]):
    """
    An attempt exceeding the timeout is reported as transient.
    """
    release = threading.Event()

    def slow() -> str:
        release.wait(TEST_WAIT_TIMEOUT)
        return "late"

    executor = RetryExecutor(
        RetryPolicy(max_retries=1, timeout=0.05), sleep=sleeps.append
    )
    try:
        with pytest.raises(StoreTransientException, match="Timed out"):
            executor.execute(slow, "read rows")
        assert sleeps == [1.0]
    finally:
        release.set()
        executor.close()


########################################################################
#                        De-duplication test                           #
########################################################################


def test_deduplicator_runs_operation():
    dedup = RequestDeduplicator()

    assert dedup.execute("key", lambda: 42) == 42
    assert len(dedup) == 0


def test_deduplicator_shares_in_flight_call():
    """
    Concurrent callers with the same key share a single execution.
    """
    dedup = RequestDeduplicator()
    started = threading.Event()
    release = threading.Event()
    calls = []

    def operation() -> str:
        calls.append(1)
        started.set()
        release.wait(TEST_WAIT_TIMEOUT)
        return "shared"

    results = []

    def caller():
        results.append(dedup.execute("active_task:SAGAR", operation))

    owner = threading.Thread(target=caller)
    owner.start()
    assert started.wait(TEST_WAIT_TIMEOUT)

    joiners = [threading.Thread(target=caller) for _ in range(3)]
    for thread in joiners:
        thread.start()
    # Let the joiners reach the shared future
    time.sleep(0.2)
    release.set()

    for thread in [owner] + joiners:
        thread.join(TEST_WAIT_TIMEOUT)

    assert results == ["shared"] * 4
    assert len(calls) == 1
    assert len(dedup) == 0


def test_deduplicator_shares_exception():
    dedup = RequestDeduplicator()
    started = threading.Event()
    release = threading.Event()

    def operation():
        started.set()
        release.wait(TEST_WAIT_TIMEOUT)
        raise StoreTransientException("busy")

    errors = []

    def caller():
        try:
            dedup.execute("key", operation)
        except StoreTransientException as e:
            errors.append(e)

    owner = threading.Thread(target=caller)
    owner.start()
    assert started.wait(TEST_WAIT_TIMEOUT)
    joiner = threading.Thread(target=caller)
    joiner.start()
    time.sleep(0.2)
    release.set()
    owner.join(TEST_WAIT_TIMEOUT)
    joiner.join(TEST_WAIT_TIMEOUT)

    assert len(errors) == 2
    assert errors[0] is errors[1]
    # The key is forgotten once settled
    assert dedup.execute("key", lambda: "again") == "again"


def test_deduplicator_clear_key():
    """
    A cleared key starts a new execution for later callers.
    """
    dedup = RequestDeduplicator()
    started = threading.Event()
    release = threading.Event()

    def slow() -> str:
        started.set()
        release.wait(TEST_WAIT_TIMEOUT)
        return "old"

    thread = threading.Thread(target=dedup.execute, args=("key", slow))
    thread.start()
    assert started.wait(TEST_WAIT_TIMEOUT)

    dedup.clear_key("key")
    assert dedup.execute("key", lambda: "new") == "new"

    release.set()
    thread.join(TEST_WAIT_TIMEOUT)
    assert len(dedup) == 0
