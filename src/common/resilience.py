#!/usr/bin/env python3
"""
Timeout-bounded, retried execution of remote store operations and
de-duplication of concurrent identical requests.

Each attempt of an operation runs on a worker thread of the executor
and is awaited for at most `timeout` seconds. Failures are classified
by `is_retryable()`: transient failures are retried with an
exponential backoff (`base_delay * 2**attempt`), anything else is
raised immediately. Once the retries are exhausted, the last error is
raised to the caller.

```
with RetryExecutor(RetryPolicy(max_retries=3, base_delay=1.0)) as executor:
    rows = executor.execute(lambda: store.read_range(ssid, "SAGAR"), "read rows")
```

An attempt that times out keeps running on its worker thread until it
returns by itself; its result is discarded.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from concurrent.futures import ThreadPoolExecutor, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from threading import Lock
from types import TracebackType
from typing import Callable, Optional, Type, TypeVar
import logging
import time

# Internal libraries
from core.errors import StoreTransientException

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maximal number of store operations running simultaneously
MAX_STORE_WORKERS = 4

# HTTP status codes worth a retry besides the 5xx family
_RETRYABLE_STATUS_CODES = (408, 429)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attributes:
        max_retries (int): Number of retries after the first attempt.
        base_delay (float): Delay before the first retry (seconds).
        timeout (float): Maximal duration of a single attempt (seconds).
    """

    max_retries: int = 3
    base_delay: float = 1.0
    timeout: float = 30.0

    def delay(self, attempt: int) -> float:
        """
        Returns:
            float: Backoff delay after the given failed attempt (0-based).
        """
        return self.base_delay * (2**attempt)


def is_retryable(error: BaseException) -> bool:
    """
    Tell whether an operation that failed with the given error may
    succeed on a later attempt.

    Transient store errors, timeouts, connection errors and errors
    carrying a 5xx or 429 status code are retryable. Validation,
    conflict, configuration and other store errors are terminal.
    """
    if isinstance(error, StoreTransientException):
        return True

    if isinstance(error, (TimeoutError, FutureTimeoutError, ConnectionError)):
        return True

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status >= 500 or status in _RETRYABLE_STATUS_CODES

    return False


class RetryExecutor:
    """
    Runs store operations with a per attempt timeout and retries the
    transient failures.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = MAX_STORE_WORKERS,
    ):
        """
        Args:
            policy (Optional[RetryPolicy]): Retry policy, defaults apply
                if not given.
            sleep (Callable[[float], None]): Function used to wait the
                backoff delays.
            max_workers (int): Number of worker threads.
        """
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="Store-"
        )

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def execute(self, operation: Callable[[], T], description: str = "operation") -> T:
        """
        Run the operation until it succeeds, fails with a terminal error
        or exhausts the retries.

        Args:
            operation (Callable[[], T]): Operation to run.
            description (str): Operation description used in logs.

        Returns:
            T: The operation result.

        Raises:
            StoreTransientException: An attempt timed out on the last try.
            Exception: The last error raised by the operation.
        """
        policy = self._policy
        attempt = 0

        while True:
            try:
                return self.__attempt(operation, description)

            except Exception as e:
                if not is_retryable(e):
                    raise

                if attempt >= policy.max_retries:
                    logger.error(
                        f"Failed to {description} after {attempt + 1} attempts: {e}"
                    )
                    raise

                delay = policy.delay(attempt)
                attempt += 1
                logger.warning(
                    f"Failed to {description} ({e.__class__.__name__}: {e}), "
                    f"retry {attempt}/{policy.max_retries} in {delay:.1f}s."
                )
                self._sleep(delay)

    def __attempt(self, operation: Callable[[], T], description: str) -> T:
        """
        Run a single attempt on a worker thread and wait for it.
        """
        future = self._pool.submit(operation)
        try:
            return future.result(timeout=self._policy.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise StoreTransientException(
                f"Timed out to {description} after {self._policy.timeout:.1f}s."
            ) from e

    def close(self, wait: bool = True):
        """
        Stop the worker threads. Running attempts finish, queued ones
        are cancelled.
        """
        self._pool.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "RetryExecutor":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> Optional[bool]:
        self.close()


class RequestDeduplicator:
    """
    Shares one in-flight execution per key. Callers arriving while an
    operation with the same key is running wait for it and observe the
    same result or the same exception. The key is forgotten as soon as
    the operation settles.
    """

    def __init__(self):
        self._lock = Lock()
        self._in_flight: dict[str, Future] = {}

    def execute(self, key: str, operation: Callable[[], T]) -> T:
        """
        Run the operation, or join the running one with the same key.

        Returns:
            T: The shared operation result.
        """
        with self._lock:
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future

        if not owner:
            logger.debug(f"Joined in-flight request '{key}'.")
            return future.result()

        try:
            result = operation()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                # A forced clear may already have replaced the entry
                if self._in_flight.get(key) is future:
                    del self._in_flight[key]

    def clear_key(self, key: str):
        """
        Forget the in-flight entry of the key. Waiting callers still get
        its result, but later callers start a new operation.
        """
        with self._lock:
            removed = self._in_flight.pop(key, None)
        if removed is not None:
            logger.debug(f"Cleared in-flight request '{key}'.")

    def clear(self):
        with self._lock:
            self._in_flight.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)
