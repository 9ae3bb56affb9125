#!/usr/bin/env python3
"""
Consumer boundary of the task ledger. The service validates the raw
input, calls the core and converts the outcome into a result message.
No exception crosses this boundary: failures are logged with their
context and returned as `ModelError`.

```
service = TaskLedgerService(ledger, aggregator)
result = service.start_task("SAGAR", "PICKING", "AMAZON DF", "30", now)
if not result.success:
    print(result.kind, result.message, result.details)
```

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from typing import Any, Callable, Iterable, Optional
import logging

# Third-party libraries
from pydantic import ValidationError

# Internal imports
from .data import *
from .requests import StartTaskRequest, EndTaskRequest, ReportRequest, field_errors
from core.errors import (
    LedgerValidationException,
    LedgerConflictException,
    LedgerConfigException,
    StoreException,
    StoreTransientException,
)
from core.record_codec import format_duration
from core.report_aggregator import ReportAggregator
from core.task_ledger import TaskLedger

logger = logging.getLogger(__name__)


class TaskLedgerService:
    """
    Entry points used by the user interfaces. Every method returns an
    `IModelMessage`.
    """

    def __init__(self, ledger: TaskLedger, aggregator: ReportAggregator):
        self._ledger = ledger
        self._aggregator = aggregator

    def get_active_task(self, employee: str) -> IModelMessage:
        """
        Returns:
            IModelMessage: `ActiveTaskStatus` or `ModelError`.
        """

        def operation() -> IModelMessage:
            active = self._ledger.get_active_task(employee)
            if active is None:
                message = f"{employee} has no active task."
            else:
                message = (
                    f"{employee} is working on {active.task_name} "
                    f"({active.label}) since {active.start_text}."
                )
            return ActiveTaskStatus(
                employee=employee, active_task=active, message=message
            )

        return self.__guard("get active task", employee, operation)

    def get_all_active_tasks(self, employees: Iterable[str]) -> IModelMessage:
        """
        Returns:
            IModelMessage: `ActiveTaskList` or `ModelError`.
        """

        def operation() -> IModelMessage:
            tasks = self._ledger.get_all_active_tasks(employees)
            working = sum(1 for task in tasks.values() if task is not None)
            return ActiveTaskList(
                active_tasks=tasks,
                message=f"{working} of {len(tasks)} employees have an active task.",
            )

        return self.__guard("list active tasks", None, operation)

    def start_task(
        self,
        employee: Any,
        task_name: Any,
        label: Any,
        quantity: Any,
        started_at: Any,
        remark: Any = None,
    ) -> IModelMessage:
        """
        Returns:
            IModelMessage: `TaskStarted` or `ModelError`.
        """

        def operation() -> IModelMessage:
            request = StartTaskRequest(
                employee=employee,
                task_name=task_name,
                label=label or "",
                quantity=0 if quantity in (None, "") else quantity,
                started_at=started_at,
                remark=remark or None,
            )
            task = self._ledger.start_task(
                request.employee,
                request.task_name,
                request.label,
                request.quantity,
                request.started_at,
                request.remark,
            )
            return TaskStarted(
                employee=request.employee,
                task=task,
                message=(
                    f"Task started successfully! You can now work on your "
                    f"{task.task_name} task."
                ),
            )

        return self.__guard("start task", employee, operation)

    def end_task(
        self, employee: Any, ended_at: Any, remark: Any = None
    ) -> IModelMessage:
        """
        Returns:
            IModelMessage: `TaskEnded` or `ModelError`.
        """

        def operation() -> IModelMessage:
            request = EndTaskRequest(
                employee=employee, ended_at=ended_at, remark=remark or None
            )
            ended = self._ledger.end_task(
                request.employee, request.ended_at, request.remark
            )
            return TaskEnded(
                employee=request.employee,
                task=ended,
                message=(
                    f"Task completed successfully! Total time: "
                    f"{format_duration(ended.duration)}"
                ),
            )

        return self.__guard("end task", employee, operation)

    def get_report(self, employee: Any, date_from: Any, date_to: Any) -> IModelMessage:
        """
        Returns:
            IModelMessage: `EmployeeReportReady` or `ModelError`. The
                report is `None` when no record exists in the range.
        """

        def operation() -> IModelMessage:
            request = ReportRequest(
                employee=employee, date_from=date_from, date_to=date_to
            )
            report = self._aggregator.get_report(
                request.employee, request.date_from, request.date_to
            )
            if report is None:
                message = (
                    f"No records found for {request.employee} between "
                    f"{request.date_from} and {request.date_to}."
                )
            else:
                message = (
                    f"Report ready: {len(report.records)} records, "
                    f"{report.total_items} items, "
                    f"{format_duration(report.total_work_time)} worked."
                )
            return EmployeeReportReady(
                employee=request.employee, report=report, message=message
            )

        return self.__guard("get report", employee, operation)

    def __guard(
        self,
        action: str,
        employee: Optional[Any],
        operation: Callable[[], IModelMessage],
    ) -> IModelMessage:
        """
        Run the operation and convert any failure to a `ModelError`.
        """
        who = f"[Employee '{employee}'] " if employee is not None else ""
        name = employee if isinstance(employee, str) else None

        try:
            return operation()

        except ValidationError as e:
            details = field_errors(e)
            logger.info(f"{who}Refused to {action}, invalid input: {details}")
            return ModelError(
                ErrorKind.VALIDATION, "Invalid data provided.", name, details
            )

        except LedgerValidationException as e:
            logger.info(f"{who}Refused to {action}, invalid input: {e.field_errors}")
            return ModelError(ErrorKind.VALIDATION, str(e), name, e.field_errors)

        except LedgerConflictException as e:
            logger.info(f"{who}Refused to {action}: {e}")
            return ModelError(ErrorKind.CONFLICT, str(e), name)

        except LedgerConfigException as e:
            logger.error(f"{who}Failed to {action}: {e}")
            return ModelError(ErrorKind.CONFIGURATION, str(e), name)

        except StoreTransientException as e:
            logger.error(f"{who}Failed to {action}, store unavailable: {e}")
            return ModelError(
                ErrorKind.STORE,
                "The spreadsheet is temporarily unavailable. Please try again.",
                name,
            )

        except StoreException as e:
            logger.error(f"{who}Failed to {action}: {e}", exc_info=True)
            return ModelError(ErrorKind.STORE, str(e), name)

        except Exception as e:
            logger.error(f"{who}Unexpected error during {action}.", exc_info=True)
            return ModelError(
                ErrorKind.INTERNAL, f"Unexpected error ({e.__class__.__name__}).", name
            )

    def close(self):
        self._ledger.close()
        self._aggregator.close()
