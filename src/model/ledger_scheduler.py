#!/usr/bin/env python3
"""
Provides an asynchronous way to run the task ledger operations. The
scheduler allows to execute different tasks and get their result once
finished, for callers that poll results from a main loop.

```
scheduler = LedgerScheduler(service)
handle = scheduler.submit_start("SAGAR", "PICKING", "AMAZON DF", 30, now)
while not scheduler.available(handle):
    ...
result = scheduler.get_result(handle)
```

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from concurrent.futures import ThreadPoolExecutor, Future
from types import TracebackType
from typing import Any, Callable, Iterable, Optional, Type
import logging

# Internal imports
from .data import IModelMessage, ModelError, ErrorKind
from .ledger_service import TaskLedgerService

logger = logging.getLogger(__name__)

# Maximal number of asynchronous tasks that can be handled simultaneously by
# the scheduler
MAX_TASK_WORKERS = 4


class LedgerScheduler:
    """
    The scheduler holds a thread pool executor and posts the ledger
    operations on it. Results are retrieved with the handle returned at
    submission. This class is not thread safe: a single thread must post
    tasks and read results. Tasks however run in parallel.
    """

    def __init__(self, service: TaskLedgerService, max_workers: int = MAX_TASK_WORKERS):
        self._service = service
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="Task-"
        )

        self._pending_tasks: dict[int, Future[IModelMessage]] = {}
        self._task_handle = -1  # Attribute a unique handle per task

    def submit_status(self, employee: str) -> int:
        """
        Post an active task lookup. It produces an `ActiveTaskStatus` or
        a `ModelError`.

        Returns:
            int: Task handle.
        """
        return self.__submit(self._service.get_active_task, employee)

    def submit_status_list(self, employees: Iterable[str]) -> int:
        """
        Post an active task lookup for several employees. It produces an
        `ActiveTaskList` or a `ModelError`.
        """
        return self.__submit(self._service.get_all_active_tasks, list(employees))

    def submit_start(
        self,
        employee: str,
        task_name: str,
        label: str,
        quantity: Any,
        started_at: Any,
        remark: Optional[str] = None,
    ) -> int:
        """
        Post a task start. It produces a `TaskStarted` or a `ModelError`.

        Returns:
            int: Task handle.
        """
        return self.__submit(
            self._service.start_task,
            employee,
            task_name,
            label,
            quantity,
            started_at,
            remark,
        )

    def submit_end(
        self, employee: str, ended_at: Any, remark: Optional[str] = None
    ) -> int:
        """
        Post a task end. It produces a `TaskEnded` or a `ModelError`.

        Returns:
            int: Task handle.
        """
        return self.__submit(self._service.end_task, employee, ended_at, remark)

    def submit_report(self, employee: str, date_from: Any, date_to: Any) -> int:
        """
        Post a report query. It produces an `EmployeeReportReady` or a
        `ModelError`.

        Returns:
            int: Task handle.
        """
        return self.__submit(self._service.get_report, employee, date_from, date_to)

    def available(self, handle: int) -> bool:
        """
        Check if the task identified by the given handle has finished.

        `False` is returned whether the task is pending or doesn't exist.
        """
        return handle in self._pending_tasks and self._pending_tasks[handle].done()

    def get_result(self, handle: int) -> Optional[IModelMessage]:
        """
        Get a task result and forget the task.

        Returns:
            Optional[IModelMessage]: Task result or `None` if unavailable.
        """
        if not self.available(handle):
            return None

        future = self._pending_tasks.pop(handle)

        try:
            return future.result()

        except Exception as e:
            logger.error(
                "An asynchronous task didn't finish properly.", exc_info=True
            )
            return ModelError(
                ErrorKind.INTERNAL, f"Task raised {e.__class__.__name__}."
            )

    def drop(self, handle: int):
        """
        Drop a task. The task keeps running but its result will never be
        available. It is safe to call this method with any handle.
        """
        self._pending_tasks.pop(handle, None)

    def close(self):
        """
        Close the scheduler. Waits for the running tasks and cancels the
        pending ones.
        """
        self._pool.shutdown(wait=True, cancel_futures=True)
        self._pending_tasks.clear()

    def __submit(self, function: Callable[..., IModelMessage], *args: Any) -> int:
        # Submit a task on the executor and return its unique handle.
        self._task_handle += 1
        self._pending_tasks[self._task_handle] = self._pool.submit(function, *args)
        return self._task_handle

    def __enter__(self) -> "LedgerScheduler":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> Optional[bool]:
        self.close()
