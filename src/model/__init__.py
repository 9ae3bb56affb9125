#!/usr/bin/env python3
"""
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Expose everything from data, service and scheduler modules
from .data import *
from .ledger_service import *
from .ledger_scheduler import *

__all__ = [
    "IModelMessage",
    "ActiveTaskStatus",
    "ActiveTaskList",
    "TaskStarted",
    "TaskEnded",
    "EmployeeReportReady",
    "ErrorKind",
    "ModelError",
    "TaskLedgerService",
    "LedgerScheduler",
]
