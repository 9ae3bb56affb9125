#!/usr/bin/env python3
"""
Per employee task state machine on top of the ledger worksheets.

An employee is either idle or has exactly one active task. The active
task is never stored as such: it is derived by scanning the employee
worksheet for the first open block (label and start time set, actual
end time empty), in row order then task ordinal order.

```
ledger = TaskLedger(store, "timesheets")
task = ledger.start_task("SAGAR", "PICKING", "AMAZON DF", 30, dt.datetime.now())
ended = ledger.end_task("SAGAR", dt.datetime.now(), "Done")
print(format_duration(ended.duration))
ledger.close()
```

Derived states are cached for a few seconds to bound the volume of
remote reads. A cached idle state never decides a task start or end:
the worksheet is always read again first. Every write invalidates
the cached state of the employee and the in-flight lookups, so the
next lookup hits the store.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Iterable, Optional, TypeVar
import datetime as dt
import logging

# Internal libraries
from common.resilience import RetryExecutor, RequestDeduplicator
from common.ttl_cache import TTLCache, MISSING, active_task_key
from .errors import (
    ActiveTaskExistsException,
    LedgerValidationException,
    NoActiveTaskException,
    RowNotFoundException,
    StoreException,
)
from .layout import (
    DATE_COLUMN,
    FIRST_DATA_ROW,
    FULL_SHEET_RANGE,
    HEADER_ROW_COUNT,
    BlockField,
    block_column,
    block_start_column,
    cell_address,
    header_rows,
    sanitize_sheet_name,
)
from .record_codec import (
    RecordCodec,
    LedgerRow,
    TaskBlock,
    cell_to_text,
    duration_seconds,
    format_row_date,
    format_time_12h,
    parse_quantity,
    parse_time_12h,
)
from .spreadsheets.sheet_store import SheetStore, CellUpdate
from .tasks import DEFAULT_CATALOG, TaskCatalog, TaskDefinition

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Time-to-live of a derived active task state (seconds)
DEFAULT_ACTIVE_TTL = 5.0

# Maximal length of a remark
MAX_REMARK_LENGTH = 1000

########################################################################
#                            Ledger states                             #
########################################################################


@dataclass(frozen=True)
class ActiveTask:
    """
    The open task block of an employee.

    Attributes:
        employee (str): Employee worksheet name.
        task_name (str): Task of the open block.
        label (str): Portal name or freeform description.
        quantity (int): Declared items.
        date_text (str): Row date as written.
        start_text (str): Start time as written.
        started_at (Optional[dt.datetime]): Start date and time, `None`
            if the row date or the start time cannot be parsed.
        estimated_end_text (str): Estimated end time as written.
        remark (str): Remark written at start.
    """

    employee: str
    task_name: str
    label: str
    quantity: int
    date_text: str
    start_text: str
    started_at: Optional[dt.datetime]
    estimated_end_text: str = ""
    remark: str = ""


@dataclass(frozen=True)
class EndedTask:
    """
    A task block closed by `TaskLedger.end_task()`.

    Attributes:
        task (ActiveTask): The task as it was before ending.
        end_text (str): Actual end time written.
        final_remark (str): Final remark written, if any.
        duration (int): Worked seconds.
    """

    task: ActiveTask
    end_text: str
    final_remark: str
    duration: int


########################################################################
#                             Task ledger                              #
########################################################################


class TaskLedger:
    """
    Orchestrates task starts, task ends and active task lookups for all
    employees of a spreadsheet. Thread-safe: operations on the same
    employee are serialized within the process, operations on different
    employees run in parallel.
    """

    def __init__(
        self,
        store: SheetStore,
        spreadsheet_id: str,
        catalog: TaskCatalog = DEFAULT_CATALOG,
        executor: Optional[RetryExecutor] = None,
        cache: Optional[TTLCache] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        active_ttl: float = DEFAULT_ACTIVE_TTL,
        timezone: Optional[dt.tzinfo] = None,
    ):
        """
        Args:
            store (SheetStore): Remote store client.
            spreadsheet_id (str): Spreadsheet holding the ledger.
            catalog (TaskCatalog): Task definitions.
            executor (Optional[RetryExecutor]): Store operations runner.
                The ledger creates and owns one if not given.
            cache (Optional[TTLCache]): Derived states cache. The ledger
                creates and owns one if not given.
            deduplicator (Optional[RequestDeduplicator]): In-flight
                lookups register.
            active_ttl (float): Time-to-live of derived states.
            timezone (Optional[dt.tzinfo]): Time zone aware datetimes are
                converted to. `None` for the system time zone.
        """
        self._store = store
        self._spreadsheet_id = spreadsheet_id
        self._catalog = catalog
        self._codec = RecordCodec(catalog)
        self._active_ttl = active_ttl
        self._timezone = timezone

        self._owns_executor = executor is None
        self._executor = executor or RetryExecutor()
        self._owns_cache = cache is None
        self._cache = cache or TTLCache()
        self._deduplicator = deduplicator or RequestDeduplicator()

        self._lock = Lock()
        self._employee_locks: dict[str, Lock] = {}
        # Incremented on each invalidation, see `__derive_active()`
        self._generations: dict[str, int] = {}
        # Worksheets whose headers have been checked
        self._prepared_sheets: set[str] = set()

    @property
    def catalog(self) -> TaskCatalog:
        return self._catalog

    @property
    def codec(self) -> RecordCodec:
        return self._codec

    ### Public operations

    def get_active_task(self, employee: str) -> Optional[ActiveTask]:
        """
        Get the active task of the employee.

        The cached state is returned if still valid. Otherwise the
        worksheet is scanned; concurrent lookups for the same employee
        share a single scan.

        Returns:
            Optional[ActiveTask]: The active task or `None` if idle.

        Raises:
            LedgerValidationException: Invalid employee name.
            StoreException: The store failed after retries.
        """
        sheet = sanitize_sheet_name(employee)
        key = active_task_key(sheet)

        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        return self._deduplicator.execute(key, lambda: self.__derive_active(sheet))

    def get_all_active_tasks(
        self, employees: Iterable[str]
    ) -> dict[str, Optional[ActiveTask]]:
        """
        Returns:
            dict[str, Optional[ActiveTask]]: Active task by employee name.
        """
        return {employee: self.get_active_task(employee) for employee in employees}

    def start_task(
        self,
        employee: str,
        task_name: str,
        label: str,
        quantity: int,
        started_at: dt.datetime,
        remark: Optional[str] = None,
    ) -> ActiveTask:
        """
        Start a task for the employee.

        The task block is written in the first row of the start date
        whose block for this task is empty, or in a new row appended
        after the last one.

        Args:
            employee (str): Employee name.
            task_name (str): Configured task name.
            label (str): Portal name, or description for the freeform
                task.
            quantity (int): Declared items, may be 0 for the freeform
                task only.
            started_at (dt.datetime): Start date and time.
            remark (Optional[str]): Remark written with the start.

        Returns:
            ActiveTask: The active task derived after the write.

        Raises:
            LedgerValidationException: Invalid input, nothing written.
            ActiveTaskExistsException: The employee already has an active
                task, nothing written.
            StoreException: The store failed after retries.
        """
        sheet = sanitize_sheet_name(employee)
        task = self.__validate_start(task_name, label, quantity, remark)
        started_at = self.__local(started_at)
        label = label.strip()

        with self.__employee_lock(sheet):
            # A cached active task is enough to refuse, a cached idle
            # state is not enough to accept
            cached = self._cache.get(active_task_key(sheet))
            if cached is MISSING or cached is None:
                cached = self.__derive_active(sheet)
            if cached is not None:
                logger.info(
                    f"[Employee '{sheet}'] Refused to start {task.name}: "
                    f"{cached.task_name} started at {cached.start_text} is active."
                )
                raise ActiveTaskExistsException()

            self.__prepare_sheet(sheet)

            rows = self.__run(
                lambda: self._store.read_range(
                    self._spreadsheet_id, sheet, FULL_SHEET_RANGE
                ),
                f"read rows of '{sheet}'",
                sheet,
            )
            row_index = self.__find_start_row(rows, task, started_at.date())
            block = self._codec.encode_start(task, label, quantity, started_at, remark)

            try:
                if row_index < len(rows):
                    self.__run(
                        lambda: self._store.write_row(
                            self._spreadsheet_id,
                            sheet,
                            row_index,
                            block,
                            start_column=block_start_column(task.ordinal),
                        ),
                        f"write {task.name} start of '{sheet}'",
                        sheet,
                    )
                else:
                    # The new row only gets the date and the task block
                    first_column = block_start_column(task.ordinal)
                    updates = [
                        CellUpdate(
                            cell_address(row_index, DATE_COLUMN),
                            format_row_date(started_at),
                        )
                    ]
                    updates.extend(
                        CellUpdate(cell_address(row_index, first_column + i), value)
                        for i, value in enumerate(block)
                    )
                    self.__run(
                        lambda: self._store.batch_write_cells(
                            self._spreadsheet_id, sheet, updates
                        ),
                        f"append {task.name} start of '{sheet}'",
                        sheet,
                    )
            finally:
                # The write may have been applied even if it failed
                self.__invalidate(sheet)

            logger.info(
                f"[Employee '{sheet}'] Started {task.name} '{label}' ({quantity} "
                f"items) at {block[BlockField.START]} in row {row_index + 1}."
            )

            # Read back the state the store now holds
            active = self.__derive_active(sheet)

        if active is None:
            logger.warning(
                f"[Employee '{sheet}'] Started {task.name} is not visible yet in "
                f"the store."
            )
            active = ActiveTask(
                employee=sheet,
                task_name=task.name,
                label=label,
                quantity=quantity,
                date_text=format_row_date(started_at),
                start_text=block[BlockField.START],
                started_at=started_at.replace(second=0, microsecond=0),
                estimated_end_text=block[BlockField.ESTIMATED_END],
                remark=remark or "",
            )
        return active

    def end_task(
        self,
        employee: str,
        ended_at: dt.datetime,
        final_remark: Optional[str] = None,
    ) -> EndedTask:
        """
        End the active task of the employee.

        The block to close is located again on fresh data by its row date,
        label and start time. Its actual end time and the final remark
        are written in a single batch.

        Args:
            employee (str): Employee name.
            ended_at (dt.datetime): End date and time.
            final_remark (Optional[str]): Remark written with the end.

        Returns:
            EndedTask: The closed task and its duration.

        Raises:
            LedgerValidationException: Invalid input, nothing written.
            NoActiveTaskException: The employee has no active task.
            RowNotFoundException: The active task block cannot be found
                anymore.
            StoreException: The store failed after retries. The task
                stays active.
        """
        sheet = sanitize_sheet_name(employee)
        self.__validate_remark(final_remark, "final_remark")
        ended_at = self.__local(ended_at)

        with self.__employee_lock(sheet):
            # A cached idle state is not enough to refuse
            active = self._cache.get(active_task_key(sheet))
            if active is MISSING or active is None:
                active = self.__derive_active(sheet)
            if active is None:
                logger.info(f"[Employee '{sheet}'] No active task to end.")
                raise NoActiveTaskException()

            task = self._catalog.get(active.task_name)
            rows = self.__run(
                lambda: self._store.read_range(
                    self._spreadsheet_id, sheet, FULL_SHEET_RANGE
                ),
                f"read rows of '{sheet}'",
                sheet,
            )

            row_index = self.__locate(rows, task, active)
            if row_index is None:
                logger.warning(
                    f"[Employee '{sheet}'] {active.task_name} '{active.label}' "
                    f"started on {active.date_text} at {active.start_text} not "
                    f"found."
                )
                self.__invalidate(sheet)
                raise RowNotFoundException()

            end_text = format_time_12h(ended_at)
            end_column = block_column(task.ordinal, BlockField.ACTUAL_END)
            updates = [CellUpdate(cell_address(row_index, end_column), end_text)]
            if final_remark:
                remark_column = block_column(task.ordinal, BlockField.FINAL_REMARK)
                updates.append(
                    CellUpdate(cell_address(row_index, remark_column), final_remark)
                )

            try:
                self.__run(
                    lambda: self._store.batch_write_cells(
                        self._spreadsheet_id, sheet, updates
                    ),
                    f"write {task.name} end of '{sheet}'",
                    sheet,
                )
            finally:
                self.__invalidate(sheet)

        start_time = parse_time_12h(active.start_text)
        duration = duration_seconds(start_time, ended_at.time()) if start_time else 0

        logger.info(
            f"[Employee '{sheet}'] Ended {task.name} '{active.label}' at {end_text} "
            f"in row {row_index + 1} ({duration}s)."
        )
        return EndedTask(
            task=active,
            end_text=end_text,
            final_remark=final_remark or "",
            duration=duration,
        )

    def invalidate(self, employee: str):
        """
        Drop the cached state of the employee.
        """
        self.__invalidate(sanitize_sheet_name(employee))

    def close(self):
        """
        Release the executor and the cache if owned by the ledger.
        """
        self._deduplicator.clear()
        if self._owns_executor:
            self._executor.close()
        if self._owns_cache:
            self._cache.close()

    ### Internal helpers

    def __run(self, operation: Callable[[], T], description: str, sheet: str) -> T:
        try:
            return self._executor.execute(operation, description)
        except StoreException as e:
            if e.status_code == 404:
                # The sheet was deleted, prepare it again on next start
                with self._lock:
                    self._prepared_sheets.discard(sheet)
            raise

    def __employee_lock(self, sheet: str) -> Lock:
        with self._lock:
            return self._employee_locks.setdefault(sheet, Lock())

    def __generation(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def __invalidate(self, sheet: str):
        key = active_task_key(sheet)
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
        self._cache.invalidate(key)
        self._deduplicator.clear_key(key)

    def __local(self, value: dt.datetime) -> dt.datetime:
        """
        Convert an aware datetime to the ledger time zone, as a naive
        wall clock datetime.
        """
        if not isinstance(value, dt.datetime):
            raise LedgerValidationException(
                "Invalid date and time.", {"time": ["A date and time is required."]}
            )
        if value.tzinfo is not None:
            value = value.astimezone(self._timezone).replace(tzinfo=None)
        return value

    def __validate_remark(self, remark: Optional[str], field: str):
        if remark is not None and len(remark) > MAX_REMARK_LENGTH:
            raise LedgerValidationException(
                "Invalid remarks.",
                {field: [f"Remarks must not exceed {MAX_REMARK_LENGTH} characters."]},
            )

    def __validate_start(
        self, task_name: str, label: str, quantity: int, remark: Optional[str]
    ) -> TaskDefinition:
        """
        Raises:
            LedgerValidationException: With all the field errors found.
        """
        errors: dict[str, list[str]] = {}

        task: Optional[TaskDefinition] = None
        try:
            task = self._catalog.get(task_name)
        except LedgerValidationException as e:
            errors.update(e.field_errors)

        freeform = task is not None and self._catalog.is_freeform(task)

        if not isinstance(label, str) or not label.strip():
            errors["label"] = [
                "Please specify the other task."
                if freeform
                else "Please select a portal."
            ]

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            errors["quantity"] = ["Item quantity must be a whole number."]
        elif task is not None and not freeform and quantity == 0:
            errors["quantity"] = [
                "Item quantity is required and must be greater than 0."
            ]

        try:
            self.__validate_remark(remark, "remark")
        except LedgerValidationException as e:
            errors.update(e.field_errors)

        if errors or task is None:
            raise LedgerValidationException("Invalid data provided.", errors)
        return task

    def __derive_active(self, sheet: str) -> Optional[ActiveTask]:
        """
        Scan the worksheet for the active task and cache the result. The
        result isn't cached if the employee state was invalidated while
        scanning.
        """
        key = active_task_key(sheet)
        generation = self.__generation(key)

        exists = self.__run(
            lambda: self._store.sheet_exists(self._spreadsheet_id, sheet),
            f"check sheet of '{sheet}'",
            sheet,
        )
        active = None
        if exists:
            rows = self.__run(
                lambda: self._store.read_range(
                    self._spreadsheet_id, sheet, FULL_SHEET_RANGE
                ),
                f"read rows of '{sheet}'",
                sheet,
            )
            active = self.__scan_active(sheet, rows)
        else:
            with self._lock:
                self._prepared_sheets.discard(sheet)

        with self._lock:
            if self._generations.get(key, 0) == generation:
                self._cache.set(key, active, self._active_ttl)

        logger.debug(
            f"[Employee '{sheet}'] Derived state: "
            f"{'idle' if active is None else active.task_name + ' active'}."
        )
        return active

    def __scan_active(self, sheet: str, rows: list[list[Any]]) -> Optional[ActiveTask]:
        """
        Find the first open block, by row then by task ordinal.
        """
        for cells in rows[FIRST_DATA_ROW:]:
            row = self._codec.row(cells)
            for task in self._catalog:
                block = row.block(task.ordinal)
                if block.is_open:
                    return self.__active_from_block(sheet, row, task, block)
        return None

    def __active_from_block(
        self, sheet: str, row: LedgerRow, task: TaskDefinition, block: TaskBlock
    ) -> ActiveTask:
        start_time = parse_time_12h(block.start)
        date = row.date
        started_at = None
        if start_time is not None and date is not None:
            started_at = dt.datetime.combine(date, start_time)

        return ActiveTask(
            employee=sheet,
            task_name=task.name,
            label=block.label.strip(),
            quantity=parse_quantity(block.quantity) or 0,
            date_text=row.date_text,
            start_text=block.start.strip(),
            started_at=started_at,
            estimated_end_text=block.estimated_end.strip(),
            remark=block.first_remark,
        )

    def __find_start_row(
        self, rows: list[list[Any]], task: TaskDefinition, date: dt.date
    ) -> int:
        """
        Returns:
            int: Index of the first row of the date whose task block is
                empty, or index of a new row after the last one.
        """
        for index in range(FIRST_DATA_ROW, len(rows)):
            row = self._codec.row(rows[index])
            if row.date == date and row.block(task.ordinal).is_empty:
                return index
        return max(len(rows), FIRST_DATA_ROW)

    def __locate(
        self, rows: list[list[Any]], task: TaskDefinition, active: ActiveTask
    ) -> Optional[int]:
        """
        Returns:
            Optional[int]: Index of the open block row matching the
                active task date, label and start time exactly.
        """
        for index in range(FIRST_DATA_ROW, len(rows)):
            row = self._codec.row(rows[index])
            if row.date_text != active.date_text:
                continue
            block = row.block(task.ordinal)
            if (
                block.is_open
                and block.label.strip() == active.label
                and block.start.strip() == active.start_text
            ):
                return index
        return None

    def __prepare_sheet(self, sheet: str):
        """
        Create the worksheet if needed and make sure its header rows
        match the task catalog.
        """
        if sheet in self._prepared_sheets:
            return

        exists = self.__run(
            lambda: self._store.sheet_exists(self._spreadsheet_id, sheet),
            f"check sheet of '{sheet}'",
            sheet,
        )
        if not exists:
            self.__run(
                lambda: self._store.create_sheet(self._spreadsheet_id, sheet),
                f"create sheet '{sheet}'",
                sheet,
            )
            logger.info(f"[Employee '{sheet}'] Created the employee sheet.")

        expected = header_rows(self._catalog)
        current = self.__run(
            lambda: self._store.get_header_rows(self._spreadsheet_id, sheet),
            f"read headers of '{sheet}'",
            sheet,
        )
        if _normalize(current) != _normalize(expected):
            self.__run(
                lambda: self._store.write_header_rows(
                    self._spreadsheet_id, sheet, expected
                ),
                f"write headers of '{sheet}'",
                sheet,
            )
            logger.info(f"[Employee '{sheet}'] Header rows rewritten.")

        with self._lock:
            self._prepared_sheets.add(sheet)


def _normalize(rows: list[list[Any]]) -> list[list[str]]:
    """
    Header rows as text, without trailing empty cells.
    """
    result = []
    for row in rows:
        texts = [cell_to_text(cell).strip() for cell in row]
        while texts and not texts[-1]:
            texts.pop()
        result.append(texts)
    while len(result) < HEADER_ROW_COUNT:
        result.append([])
    return result
