"""Engine records shared by the generator, the evaluator and the optimizers."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from functools import cached_property
from typing import Iterable, Literal, Optional

from autosched.core.config import Settings, get_settings
from autosched.services.rules import ValidationRule

PreferenceType = Literal["day_off", "preferred_shift", "avoid_shift"]
PreferenceStatus = Literal["pending", "approved", "rejected"]


@dataclass(frozen=True)
class Availability:
    date: date
    is_available: bool


@dataclass
class Preference:
    employee_id: str
    preference_type: PreferenceType
    target_date: date
    target_shift_id: Optional[str] = None
    status: PreferenceStatus = "pending"
    priority: int = 0
    id: Optional[str] = None

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"

    def in_month(self, year: int, month: int) -> bool:
        return self.target_date.year == year and self.target_date.month == month


@dataclass
class Employee:
    id: str
    name: str
    role_id: Optional[int] = None
    role_name: Optional[str] = None
    exclude_from_hours: bool = False
    preferences: list[Preference] = field(default_factory=list)
    availability: list[Availability] = field(default_factory=list)
    target_monthly_shifts: Optional[int] = None

    def is_available(self, target_day: date) -> bool:
        for window in self.availability:
            if window.date == target_day:
                return window.is_available
        # Default to available if nothing recorded for the date
        return True

    def shift_preference(self, preference_type: PreferenceType, shift_id: str) -> Preference | None:
        for preference in self.preferences:
            if preference.status == "rejected":
                continue
            if preference.preference_type == preference_type and preference.target_shift_id == shift_id:
                return preference
        return None


@dataclass
class Shift:
    id: str
    name: str
    hours: float = 0.0
    abbreviation: str = ""
    color: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    min_staff: int = 1
    max_staff: int = 10
    required_roles: list[str] = field(default_factory=list)
    is_night: bool = False
    coverage_priority: int = 1
    difficulty: float = 1.0


@dataclass(frozen=True)
class ScheduleEntry:
    employee_id: str
    day: int
    shift_id: str


@dataclass(frozen=True)
class ScheduleChange:
    employee_id: str
    day: int
    before_shift_id: Optional[str]
    after_shift_id: Optional[str]


@dataclass(frozen=True)
class RuleViolation:
    rule_type: str
    severity: Literal["error", "warning"]
    message: str
    priority: int
    employee_id: Optional[str] = None
    day: Optional[int] = None
    shift_id: Optional[str] = None


@dataclass
class ScheduleMetrics:
    total_shifts: int
    coverage_percentage: float
    balance_score: float
    preference_satisfaction_rate: float
    violation_count: int
    error_count: int
    warning_count: int
    total_hours: float = 0.0


@dataclass
class SchedulingPolicy:
    """Policy knobs of the generator, lifted out of the algorithm."""

    day_off_shift_id: str = "Выходной"
    working_weekdays: frozenset[int] = frozenset({0, 1, 2, 3, 4, 5})
    target_monthly_shifts: int = 20
    target_monthly_shifts_by_role: dict[str, int] = field(default_factory=dict)
    max_consecutive_days: int = 5
    consecutive_penalty_start: int = 4
    local_search_max_iterations: int = 100
    constraint_time_limit_seconds: float = 10.0
    constraint_num_workers: int = 8

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SchedulingPolicy":
        settings = settings or get_settings()
        return cls(
            day_off_shift_id=settings.day_off_shift_id,
            working_weekdays=frozenset(settings.working_weekdays),
            target_monthly_shifts=settings.target_monthly_shifts,
            target_monthly_shifts_by_role=dict(settings.target_monthly_shifts_by_role),
            max_consecutive_days=settings.max_consecutive_days,
            consecutive_penalty_start=settings.consecutive_penalty_start,
            local_search_max_iterations=settings.local_search_max_iterations,
            constraint_time_limit_seconds=settings.constraint_time_limit_seconds,
            constraint_num_workers=settings.constraint_num_workers,
        )

    def is_working_day(self, target_day: date) -> bool:
        return target_day.weekday() in self.working_weekdays

    def target_for(self, employee: Employee) -> int:
        if employee.target_monthly_shifts is not None:
            return employee.target_monthly_shifts
        if employee.role_name and employee.role_name in self.target_monthly_shifts_by_role:
            return self.target_monthly_shifts_by_role[employee.role_name]
        return self.target_monthly_shifts


@dataclass
class SchedulingContext:
    """Everything one generation or validation run reads."""

    month: int
    year: int
    employees: list[Employee]
    shifts: list[Shift]
    rules: list[ValidationRule] = field(default_factory=list)
    approved_day_offs: list[Preference] = field(default_factory=list)
    policy: SchedulingPolicy = field(default_factory=SchedulingPolicy.from_settings)

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @property
    def day_off_shift_id(self) -> str:
        return self.policy.day_off_shift_id

    @cached_property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def date_for(self, day: int) -> date:
        return date(self.year, self.month, day)

    def month_days(self) -> Iterable[int]:
        return range(1, self.days_in_month + 1)

    def working_days(self) -> list[int]:
        return [day for day in self.month_days() if self.policy.is_working_day(self.date_for(day))]

    @cached_property
    def employee_lookup(self) -> dict[str, Employee]:
        return {employee.id: employee for employee in self.employees}

    @cached_property
    def shift_lookup(self) -> dict[str, Shift]:
        return {shift.id: shift for shift in self.shifts}

    @cached_property
    def work_shifts(self) -> list[Shift]:
        return [shift for shift in self.shifts if shift.id != self.day_off_shift_id]

    @property
    def has_day_off_shift(self) -> bool:
        return self.day_off_shift_id in self.shift_lookup

    def shift_hours(self, shift_id: str) -> float:
        shift = self.shift_lookup.get(shift_id)
        return float(shift.hours) if shift else 0.0

    def day_off_requests(self) -> list[tuple[Employee, Preference]]:
        """Approved in-month day-off preferences joined onto the employees."""

        requests: list[tuple[Employee, Preference]] = []
        for employee in self.employees:
            for preference in employee.preferences:
                if preference.preference_type != "day_off" or not preference.is_approved:
                    continue
                if preference.in_month(self.year, self.month):
                    requests.append((employee, preference))
        return requests

    def shift_preferences(self) -> list[tuple[Employee, Preference]]:
        preferences: list[tuple[Employee, Preference]] = []
        for employee in self.employees:
            for preference in employee.preferences:
                if preference.preference_type not in ("preferred_shift", "avoid_shift"):
                    continue
                if preference.status == "rejected" or not preference.in_month(self.year, self.month):
                    continue
                preferences.append((employee, preference))
        return preferences


def week_start(target_day: date) -> date:
    """Sunday opening the Sunday-to-Saturday week of ``target_day``."""

    return target_day - timedelta(days=(target_day.weekday() + 1) % 7)


def parse_time(value: str | None) -> float:
    """``"HH:MM"`` (or ``"HH:MM:SS"``) to fractional hours."""

    if not value:
        return 0.0
    parts = value.split(":")
    minutes = int(parts[1]) if len(parts) > 1 else 0
    return int(parts[0]) + minutes / 60
