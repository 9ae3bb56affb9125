#!/usr/bin/env python3
"""
Static task definitions. The ordinal of a task fixes the position of
its column block in every ledger row, so definitions must never be
reordered once a ledger holds data.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from dataclasses import dataclass
from typing import Iterator, Iterable, Optional

# Internal libraries
from .errors import LedgerValidationException

# Estimated duration used when no per item duration applies (seconds)
DEFAULT_DURATION_SECONDS = 40

# Name of the untimed task type
FREEFORM_TASK_NAME = "OTHER WORK"


@dataclass(frozen=True)
class TaskDefinition:
    """
    Attributes:
        name (str): Task name, also used as block header.
        item_seconds (Optional[int]): Expected duration per item or
            `None` for the freeform task.
        ordinal (int): Position of the task column block.
    """

    name: str
    item_seconds: Optional[int]
    ordinal: int


class TaskCatalog:
    """
    Ordered collection of the task definitions known to the ledger. One
    of them is the designated freeform task: it has no per item duration,
    no estimated end time and its quantity may be zero.
    """

    def __init__(
        self,
        definitions: Iterable[TaskDefinition],
        freeform_name: str = FREEFORM_TASK_NAME,
        default_duration: int = DEFAULT_DURATION_SECONDS,
    ):
        self._tasks = sorted(definitions, key=lambda d: d.ordinal)
        self._by_name = {task.name: task for task in self._tasks}
        self._freeform_name = freeform_name
        self._default_duration = default_duration

        ordinals = [task.ordinal for task in self._tasks]
        if ordinals != list(range(len(self._tasks))):
            raise ValueError(f"Task ordinals must be contiguous from 0: {ordinals}.")
        if len(self._by_name) != len(self._tasks):
            raise ValueError("Task names must be unique.")
        if freeform_name not in self._by_name:
            raise ValueError(f"Freeform task '{freeform_name}' is not defined.")

    @classmethod
    def from_durations(
        cls,
        durations: dict[str, Optional[int]],
        freeform_name: str = FREEFORM_TASK_NAME,
        default_duration: int = DEFAULT_DURATION_SECONDS,
    ) -> "TaskCatalog":
        """
        Build a catalog from an ordered `name -> seconds per item` map.
        """
        return cls(
            (
                TaskDefinition(name, seconds, ordinal)
                for ordinal, (name, seconds) in enumerate(durations.items())
            ),
            freeform_name,
            default_duration,
        )

    @property
    def freeform_name(self) -> str:
        return self._freeform_name

    @property
    def default_duration(self) -> int:
        return self._default_duration

    def __iter__(self) -> Iterator[TaskDefinition]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> TaskDefinition:
        """
        Raises:
            LedgerValidationException: The task is not configured.
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise LedgerValidationException(
                f'Task "{name}" is not configured.',
                {"task_name": [f'Task "{name}" is not configured.']},
            ) from None

    def at(self, ordinal: int) -> TaskDefinition:
        return self._tasks[ordinal]

    def is_freeform(self, task: TaskDefinition | str) -> bool:
        name = task.name if isinstance(task, TaskDefinition) else task
        return name == self._freeform_name

    def per_item_seconds(self, task: TaskDefinition) -> int:
        if task.item_seconds:
            return task.item_seconds
        return self._default_duration


# Task layout in use at the warehouse, left to right
DEFAULT_CATALOG = TaskCatalog.from_durations(
    {
        "PICKING": 40,
        "GUN": 20,
        "PACKING": 38,
        "PENDING ORDER": 720,
        "SORTING": 54,
        "RETURN": 65,
        "COCOBLU PO": 35,
        "BARCODE, TAGLOOP, BUTTON": 65,
        FREEFORM_TASK_NAME: None,
    }
)
