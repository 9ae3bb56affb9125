#!/usr/bin/env python3
"""
Input models of the ledger operations. They coerce raw values (form
fields, command line arguments) to the types expected by the core and
reject malformed input before any store call.

Rules depending on the task catalog (known task name, label and item
quantity requirements) are checked by the ledger itself.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from typing import Optional
import datetime as dt

# Third-party libraries
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

# Maximal lengths of the text fields
MAX_NAME_LENGTH = 255
MAX_REMARK_LENGTH = 1000


class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)


class StartTaskRequest(_Request):
    employee: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    task_name: str = Field(min_length=1)
    label: str = ""
    quantity: int = Field(default=0, ge=0)
    started_at: dt.datetime
    remark: Optional[str] = Field(default=None, max_length=MAX_REMARK_LENGTH)


class EndTaskRequest(_Request):
    employee: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    ended_at: dt.datetime
    remark: Optional[str] = Field(default=None, max_length=MAX_REMARK_LENGTH)


class ReportRequest(_Request):
    employee: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    date_from: dt.date
    date_to: dt.date

    @field_validator("date_to")
    @classmethod
    def _validate_range(cls, value: dt.date, info: ValidationInfo) -> dt.date:
        date_from = info.data.get("date_from")
        if date_from is not None and value < date_from:
            raise ValueError("The end date must not be before the start date.")
        return value


def field_errors(error: ValidationError) -> dict[str, list[str]]:
    """
    Group the validation error messages by field name.
    """
    errors: dict[str, list[str]] = {}
    for detail in error.errors():
        name = ".".join(str(part) for part in detail["loc"]) or "request"
        cause = detail.get("ctx", {}).get("error")
        if detail["type"] == "value_error" and cause is not None:
            message = str(cause)
        else:
            message = detail["msg"]
        errors.setdefault(name, []).append(message)
    return errors
