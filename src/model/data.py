#!/usr/bin/env python3
"""
Provides dataclasses to communicate task ledger results between the
application components.

Every message carries a human readable `message`. The `success`
property tells a `ModelError` apart from the other messages.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from abc import ABC

# Internal imports
from core.task_ledger import ActiveTask, EndedTask
from core.report_aggregator import EmployeeReport
from core.record_codec import format_duration


@dataclass(frozen=True)
class IModelMessage(ABC):
    """
    A generic message sent by the model to upper layers.
    """

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class ActiveTaskStatus(IModelMessage):
    """
    Attributes:
        employee (str): Employee name.
        active_task (Optional[ActiveTask]): Active task or `None` if the
            employee is idle.
        message (str): Status description.
    """

    employee: str
    active_task: Optional[ActiveTask]
    message: str


@dataclass(frozen=True)
class ActiveTaskList(IModelMessage):
    """
    Attributes:
        active_tasks (dict[str, Optional[ActiveTask]]): Active task by
            employee name.
        message (str): Summary.
    """

    active_tasks: dict[str, Optional[ActiveTask]]
    message: str


@dataclass(frozen=True)
class TaskStarted(IModelMessage):
    """
    Attributes:
        employee (str): Employee name.
        task (ActiveTask): The task now active.
        message (str): Confirmation message.
    """

    employee: str
    task: ActiveTask
    message: str


@dataclass(frozen=True)
class TaskEnded(IModelMessage):
    """
    Attributes:
        employee (str): Employee name.
        task (EndedTask): The task closed.
        message (str): Confirmation message with the worked time.
    """

    employee: str
    task: EndedTask
    message: str

    @property
    def duration_text(self) -> str:
        return format_duration(self.task.duration)


@dataclass(frozen=True)
class EmployeeReportReady(IModelMessage):
    """
    Attributes:
        employee (str): Employee name.
        report (Optional[EmployeeReport]): The report or `None` if no
            record exists in the range.
        message (str): Summary.
    """

    employee: str
    report: Optional[EmployeeReport]
    message: str


class ErrorKind(Enum):
    """
    Failure reasons. Only validation and conflict errors are actionable
    by the user, the other ones need a later retry or an administrator.
    """

    VALIDATION = "validation"
    CONFLICT = "conflict"
    STORE = "store"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ModelError(IModelMessage):
    """
    Error message container.

    Attributes:
        kind (ErrorKind): Failure reason.
        message (str): Error description.
        employee (Optional[str]): Employee name when related to an
            employee.
        details (dict[str, list[str]]): Problems by field name, for
            validation errors.
    """

    kind: ErrorKind
    message: str
    employee: Optional[str] = field(default=None)
    details: dict[str, list[str]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return False
