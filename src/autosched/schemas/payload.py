from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from autosched.services.rules import ValidationRule


class AvailabilityPayload(BaseModel):
    date: date
    is_available: bool = True


class PreferencePayload(BaseModel):
    id: str | None = None
    employee_id: str
    preference_type: Literal["day_off", "preferred_shift", "avoid_shift"]
    target_date: date
    target_shift_id: str | None = None
    status: Literal["pending", "approved", "rejected"] = "pending"
    priority: int = 0


class EmployeePayload(BaseModel):
    id: str
    name: str
    role_id: int | None = None
    role_name: str | None = None
    exclude_from_hours: bool = False
    availability: list[AvailabilityPayload] = Field(default_factory=list)
    target_monthly_shifts: int | None = Field(default=None, ge=0)


class ShiftPayload(BaseModel):
    id: str
    name: str
    hours: float = Field(default=0.0, ge=0)
    abbreviation: str = ""
    color: str = ""
    start_time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}(:\d{2})?$")
    end_time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}(:\d{2})?$")
    min_staff: int = Field(default=1, ge=0)
    max_staff: int = Field(default=10, ge=0)
    required_roles: list[str] = Field(default_factory=list)
    is_night: bool = False
    coverage_priority: int = 1
    difficulty: float = 1.0


class ScheduleEntryPayload(BaseModel):
    employee_id: str
    day: int = Field(ge=1, le=31)
    shift_id: str


class MonthSchedulePayload(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int
    entries: list[ScheduleEntryPayload] = Field(default_factory=list)


class SchedulingPayload(BaseModel):
    """A complete snapshot of scheduling data, as exported by a host application."""

    employees: list[EmployeePayload] = Field(default_factory=list)
    shifts: list[ShiftPayload] = Field(default_factory=list)
    rules: list[ValidationRule] | None = None  # None selects the bundled default rules
    preferences: list[PreferencePayload] = Field(default_factory=list)
    schedules: list[MonthSchedulePayload] = Field(default_factory=list)
