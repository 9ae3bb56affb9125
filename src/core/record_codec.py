#!/usr/bin/env python3
"""
Encode task events into ledger row blocks and decode ledger rows into
typed records.

Ledger cells are edited by humans in a spreadsheet application, so the
decoding side is lenient: rows can be ragged, cells can hold numbers,
dates or times instead of text, and times may not follow the expected
`hh:mm AM/PM` pattern. Every cell is first normalized to a string by
`LedgerRow`, then parsed by the helpers of this module.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
import logging
import datetime as dt
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, NamedTuple, Optional, Sequence

# Internal libraries
from .layout import (
    DATE_COLUMN,
    DATE_FORMAT,
    TASK_COLUMN_WIDTH,
    BlockField,
    block_start_column,
    row_width,
)
from .tasks import TaskCatalog, TaskDefinition

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# 12-hour clock time, case-insensitive suffix ("09:05 AM", "9:05pm")
_TIME_12H_REGEX = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AP]M)\s*$", re.IGNORECASE)

# Spreadsheet applications store pure times on their epoch day
_SPREADSHEET_EPOCH_YEAR = 1900

########################################################################
#                      Cell level parse / format                       #
########################################################################


def format_time_12h(value: dt.time | dt.datetime) -> str:
    """
    Format a time as `hh:mm AM/PM`. Doesn't depend on the process locale,
    unlike `strftime("%p")`.
    """
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour:02d}:{value.minute:02d} {suffix}"


def parse_time_12h(text: str) -> Optional[dt.time]:
    """
    Parse a `hh:mm AM/PM` time. `12 AM` is midnight and `12 PM` is noon.

    Returns:
        Optional[dt.time]: The parsed time or `None` if the text doesn't
            match the pattern.
    """
    match = _TIME_12H_REGEX.match(text or "")
    if not match:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    if not 1 <= hour <= 12 or minute > 59:
        return None

    hour %= 12
    if match.group(3).upper() == "PM":
        hour += 12
    return dt.time(hour, minute)


def format_row_date(value: dt.date | dt.datetime) -> str:
    return value.strftime(DATE_FORMAT)


def parse_row_date(text: str) -> Optional[dt.date]:
    """
    Parse a `DD/MM/YYYY` row date.

    Returns:
        Optional[dt.date]: The parsed date or `None`.
    """
    try:
        return dt.datetime.strptime(text.strip(), DATE_FORMAT).date()
    except (AttributeError, ValueError):
        return None


def parse_quantity(text: str) -> Optional[int]:
    """
    Parse an item quantity. An empty cell is zero items.

    Returns:
        Optional[int]: The quantity or `None` if not a whole number.
    """
    text = text.strip()
    if not text:
        return 0
    try:
        value = float(text)
    except ValueError:
        return None
    if not value.is_integer() or value < 0:
        return None
    return int(value)


def cell_to_text(value: Any) -> str:
    """
    Normalize a raw cell value to the text the ledger would have written.
    """
    if value is None:
        return ""

    if isinstance(value, str):
        return value

    if isinstance(value, bool):
        return str(value).upper()

    if isinstance(value, int):
        return str(value)

    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)

    if isinstance(value, dt.datetime):
        # Midnight on a real day is a date cell, anything else is a time
        if value.time() == dt.time(0, 0) and value.year > _SPREADSHEET_EPOCH_YEAR:
            return format_row_date(value)
        return format_time_12h(value)

    if isinstance(value, dt.date):
        return format_row_date(value)

    if isinstance(value, dt.time):
        return format_time_12h(value)

    if isinstance(value, dt.timedelta):
        seconds = int(value.total_seconds()) % SECONDS_PER_DAY
        return format_time_12h(dt.time(seconds // 3600, (seconds % 3600) // 60))

    return str(value)


########################################################################
#                          Duration and rates                          #
########################################################################


def duration_seconds(start: dt.time, end: dt.time) -> int:
    """
    Seconds from `start` to `end`. An end earlier than the start means
    the task ran past midnight.
    """
    start_s = start.hour * 3600 + start.minute * 60 + start.second
    end_s = end.hour * 3600 + end.minute * 60 + end.second
    return (end_s - start_s) % SECONDS_PER_DAY


def run_rate(duration: float, quantity: int, freeform: bool) -> float:
    """
    Seconds per item. The freeform task falls back to its total duration
    when no item was declared, other tasks fall back to zero.
    """
    if quantity > 0:
        return duration / quantity
    return float(duration) if freeform else 0.0


def format_duration(seconds: float) -> str:
    """
    >>> format_duration(3900)
    '1h 5m'
    """
    minutes = int(seconds) // 60
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


########################################################################
#                              Row model                               #
########################################################################


class TaskBlock(NamedTuple):
    """The eight cells of one task block, as text."""

    label: str
    quantity: str
    start: str
    estimated_end: str
    actual_end: str
    first_remark: str
    secondary: str
    final_remark: str

    @property
    def is_empty(self) -> bool:
        return not (self.label.strip() or self.start.strip() or self.quantity.strip())

    @property
    def is_open(self) -> bool:
        """
        A block is open when it has a label and a start time but no actual
        end time.
        """
        return bool(
            self.label.strip() and self.start.strip() and not self.actual_end.strip()
        )


class LedgerRow:
    """
    Fixed width view on a ragged row of raw cell values. Missing cells
    are empty strings and cells past the ledger width are ignored.
    """

    def __init__(self, cells: Sequence[Any], width: int):
        texts = [cell_to_text(cell) for cell in list(cells)[:width]]
        texts.extend([""] * (width - len(texts)))
        self._cells = tuple(texts)

    @classmethod
    def for_catalog(cls, cells: Sequence[Any], catalog: TaskCatalog) -> "LedgerRow":
        return cls(cells, row_width(catalog))

    @property
    def cells(self) -> tuple[str, ...]:
        return self._cells

    @property
    def date_text(self) -> str:
        return self._cells[DATE_COLUMN].strip()

    @property
    def date(self) -> Optional[dt.date]:
        return parse_row_date(self.date_text)

    def block(self, ordinal: int) -> TaskBlock:
        start = block_start_column(ordinal)
        return TaskBlock(*self._cells[start : start + TASK_COLUMN_WIDTH])


########################################################################
#                           Decoded records                            #
########################################################################


class RecordStatus(Enum):
    COMPLETED = auto()
    IN_PROGRESS = auto()
    INVALID_END = auto()  # End time present but unparsable

    def __str__(self):
        return self.name.lower().replace("_", "-")


@dataclass(frozen=True)
class _BlockRecord:
    """
    Fields shared by open and finished task blocks.

    Attributes:
        date (dt.date): Row date.
        task_name (str): Task of the block.
        label (str): Portal name or freeform description.
        quantity (int): Declared items, 0 when empty or unparsable.
        start_text (str): Start time cell as written.
        start_time (Optional[dt.time]): Parsed start time.
        estimated_end_text (str): Estimated end time cell.
        first_remark (str): Remark written at start.
        secondary (str): Reserved annotation cell.
        final_remark (str): Remark written at end.
    """

    date: dt.date
    task_name: str
    label: str
    quantity: int
    start_text: str
    start_time: Optional[dt.time]
    estimated_end_text: str
    first_remark: str
    secondary: str
    final_remark: str

    @property
    def date_text(self) -> str:
        return format_row_date(self.date)

    @property
    def start_minutes(self) -> Optional[int]:
        if self.start_time is None:
            return None
        return self.start_time.hour * 60 + self.start_time.minute


@dataclass(frozen=True)
class OpenTaskRecord(_BlockRecord):
    """A started block without actual end time."""

    def as_in_progress(self) -> "TaskRecord":
        """
        Report view of the open block: no duration is counted until the
        task is ended.
        """
        return TaskRecord(
            **{name: getattr(self, name) for name in _BlockRecord.__dataclass_fields__},
            actual_end_text="",
            status=RecordStatus.IN_PROGRESS,
            duration=0,
            run_rate=0.0,
        )


@dataclass(frozen=True)
class TaskRecord(_BlockRecord):
    """
    A task block as seen by reports.

    Attributes:
        actual_end_text (str): Actual end time cell.
        status (RecordStatus): Completion status.
        duration (int): Worked seconds, 0 unless completed.
        run_rate (float): Seconds per item, see `run_rate()`.
    """

    actual_end_text: str
    status: RecordStatus
    duration: int
    run_rate: float

    @property
    def completed(self) -> bool:
        return self.status is RecordStatus.COMPLETED


########################################################################
#                             Record codec                             #
########################################################################


class RecordCodec:
    """
    Converts between task events and ledger row blocks for a given task
    catalog.
    """

    def __init__(self, catalog: TaskCatalog):
        self._catalog = catalog

    @property
    def catalog(self) -> TaskCatalog:
        return self._catalog

    def row(self, cells: Sequence[Any]) -> LedgerRow:
        return LedgerRow.for_catalog(cells, self._catalog)

    def estimated_end(
        self, task: TaskDefinition, quantity: int, start: dt.datetime
    ) -> Optional[dt.datetime]:
        """
        Returns:
            Optional[dt.datetime]: Estimated end or `None` for the
                freeform task.
        """
        if self._catalog.is_freeform(task):
            return None

        if quantity > 0:
            seconds = quantity * self._catalog.per_item_seconds(task)
        else:
            seconds = self._catalog.default_duration
        return start + dt.timedelta(seconds=seconds)

    def encode_start(
        self,
        task: TaskDefinition,
        label: str,
        quantity: int,
        start: dt.datetime,
        remark: Optional[str] = None,
    ) -> list[str]:
        """
        Encode a task start event as a full task block. The actual end
        time, the annotation and the final remark are left empty.
        """
        estimated = self.estimated_end(task, quantity, start)

        block = [""] * TASK_COLUMN_WIDTH
        block[BlockField.LABEL] = label
        block[BlockField.QUANTITY] = str(quantity)
        block[BlockField.START] = format_time_12h(start)
        if estimated is not None:
            block[BlockField.ESTIMATED_END] = format_time_12h(estimated)
        block[BlockField.FIRST_REMARK] = remark or ""
        return block

    def decode_block(
        self, row: LedgerRow, ordinal: int
    ) -> "TaskRecord | OpenTaskRecord | None":
        """
        Decode the block of the task at `ordinal`.

        - Empty block or row without a valid date: `None`.
        - Start time not matching the pattern: dropped for regular tasks,
            zero duration record for the freeform task.
        - No actual end time: `OpenTaskRecord`.
        - Actual end time not matching the pattern: `TaskRecord` with the
            `INVALID_END` status and no duration. A warning is logged,
            the duration is never guessed.
        - Otherwise a completed `TaskRecord`.
        """
        block = row.block(ordinal)
        if block.is_empty:
            return None

        date = row.date
        if date is None:
            return None

        task = self._catalog.at(ordinal)
        freeform = self._catalog.is_freeform(task)

        quantity = parse_quantity(block.quantity)
        if quantity is None:
            logger.debug(
                f"Unparsable quantity '{block.quantity}' for {task.name} on "
                f"{row.date_text}."
            )
            quantity = 0

        common = dict(
            date=date,
            task_name=task.name,
            label=block.label,
            quantity=quantity,
            start_text=block.start,
            start_time=parse_time_12h(block.start),
            estimated_end_text=block.estimated_end,
            first_remark=block.first_remark,
            secondary=block.secondary,
            final_remark=block.final_remark,
        )

        if common["start_time"] is None:
            if not freeform:
                logger.debug(
                    f"Dropped {task.name} on {row.date_text}: start time "
                    f"'{block.start}' is not a valid time."
                )
                return None

            return TaskRecord(
                **common,
                actual_end_text=block.actual_end,
                status=(
                    RecordStatus.COMPLETED
                    if block.actual_end.strip()
                    else RecordStatus.IN_PROGRESS
                ),
                duration=0,
                run_rate=0.0,
            )

        if not block.actual_end.strip():
            return OpenTaskRecord(**common)

        end_time = parse_time_12h(block.actual_end)
        if end_time is None:
            logger.warning(
                f"{task.name} on {row.date_text} started at '{block.start}' has "
                f"an invalid end time '{block.actual_end}', no duration counted."
            )
            return TaskRecord(
                **common,
                actual_end_text=block.actual_end,
                status=RecordStatus.INVALID_END,
                duration=0,
                run_rate=0.0,
            )

        duration = duration_seconds(common["start_time"], end_time)
        return TaskRecord(
            **common,
            actual_end_text=block.actual_end,
            status=RecordStatus.COMPLETED,
            duration=duration,
            run_rate=run_rate(duration, quantity, freeform),
        )
