"""Pydantic models for inbound action payloads.

Payloads arrive with the camelCase keys the clients send; models expose
snake_case attributes. ``parse_payload`` converts pydantic failures into the
package's ``ValidationError`` so callers handle one error taxonomy.
"""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Any, Literal, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def _calendar_date(value: str) -> str:
    try:
        dt.date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{value} is not a calendar date") from None
    return value


IsoDate = Annotated[str, Field(pattern=ISO_DATE_PATTERN), AfterValidator(_calendar_date)]

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class CounterAssignment(_Payload):
    employee_ids: list[str] = Field(default_factory=list, alias="employeeIds")
    assigned_by_manager_uids: list[str] = Field(default_factory=list, alias="assignedByManagerUids")

    @model_validator(mode="after")
    def _managers_subset(self) -> CounterAssignment:
        missing = set(self.assigned_by_manager_uids) - set(self.employee_ids)
        if missing:
            raise ValueError(f"assignedByManagerUids not in employeeIds: {', '.join(sorted(missing))}")
        return self


class BulkSchedulePayload(_Payload):
    """One shift of one day, with assignments for every counter in the store."""

    date: IsoDate
    shift_id: str = Field(min_length=1, alias="shiftId")
    store_id: str = Field(min_length=1, alias="storeId")
    assignments: dict[str, CounterAssignment]

    @field_validator("assignments")
    @classmethod
    def _non_empty(cls, value: dict[str, CounterAssignment]) -> dict[str, CounterAssignment]:
        if not value:
            raise ValueError("at least one counter assignment is required")
        return value


class ForceAssignPayload(_Payload):
    target_user_id: str = Field(min_length=1, alias="targetUserId")
    store_id: str | None = Field(default=None, alias="storeId")
    week_start_date: IsoDate = Field(alias="weekStartDate")
    date: IsoDate
    shift_id: str = Field(min_length=1, alias="shiftId")


class ShiftSelection(_Payload):
    date: IsoDate
    shift_id: str = Field(min_length=1, alias="shiftId")


class RegistrationPayload(_Payload):
    user_id: str = Field(min_length=1, alias="userId")
    store_id: str = Field(min_length=1, alias="storeId")
    week_start_date: IsoDate = Field(alias="weekStartDate")
    shifts: list[ShiftSelection] = Field(default_factory=list)


class BroadcastPayload(_Payload):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    target_type: Literal["ALL", "STORE", "ROLE"] = Field(alias="targetType")
    target_value: str | None = Field(default=None, alias="targetValue")

    @model_validator(mode="after")
    def _target_value_required(self) -> BroadcastPayload:
        if self.target_type != "ALL" and not self.target_value:
            raise ValueError(f"targetValue is required for targetType {self.target_type}")
        return self


def parse_payload(model: type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` against ``model``; failures raise ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}" for error in exc.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {details}") from exc
