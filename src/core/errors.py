#!/usr/bin/env python3
"""
Exceptions raised by the task ledger core. The consumer boundary in
`model.ledger_service` catches them and turns them into result
messages; nothing below that boundary swallows them.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from typing import Optional, Mapping


class LedgerException(Exception):
    """Base type for all exceptions related to the task ledger."""

    pass


class LedgerValidationException(LedgerException):
    """
    Malformed input rejected before any store call. Never retried.

    Attributes:
        field_errors (dict[str, list[str]]): Problems by field name.
    """

    def __init__(
        self,
        message: str = "Invalid data provided.",
        field_errors: Optional[Mapping[str, list[str]]] = None,
    ):
        super().__init__(message)
        self.field_errors: dict[str, list[str]] = dict(field_errors or {})


class LedgerConflictException(LedgerException):
    """The ledger state doesn't allow the requested transition."""

    def __init__(self, message: str = "Conflicting ledger state."):
        super().__init__(message)


class ActiveTaskExistsException(LedgerConflictException):
    def __init__(
        self,
        message: str = (
            "You already have an active task. Please end your current task "
            "before starting a new one."
        ),
    ):
        super().__init__(message)


class NoActiveTaskException(LedgerConflictException):
    def __init__(
        self, message: str = "No active task found. Please start a task first."
    ):
        super().__init__(message)


class RowNotFoundException(LedgerConflictException):
    def __init__(
        self, message: str = "Could not find the matching task entry to update."
    ):
        super().__init__(message)


class StoreException(LedgerException):
    """Terminal failure reported by the remote store."""

    def __init__(
        self,
        message: str = "The remote store rejected the operation.",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code


class StoreTransientException(StoreException):
    """
    Network, timeout, server (5xx), rate limit (429) or busy failure.
    Operations failing with this error may succeed on a later attempt.
    """

    def __init__(
        self,
        message: str = "The remote store is temporarily unavailable.",
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code)


class LedgerConfigException(LedgerException):
    """Missing credentials or spreadsheet identifier. Fatal, not retried."""

    def __init__(self, message: str = "The ledger is not configured."):
        super().__init__(message)
