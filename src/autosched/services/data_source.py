"""Data-loading collaborator used by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Protocol

from autosched.schemas.payload import SchedulingPayload
from autosched.services.domain import Availability, Employee, Preference, ScheduleEntry, Shift
from autosched.services.rules import ValidationRule, load_default_rules, order_rules


class ScheduleDataSource(Protocol):
    async def load_employees(self) -> list[Employee]: ...

    async def load_shifts(self) -> list[Shift]: ...

    async def load_rules(self) -> list[ValidationRule]: ...

    async def load_approved_day_offs(self, month: int, year: int) -> list[Preference]: ...

    async def load_schedule(self, month: int, year: int) -> list[ScheduleEntry]: ...


@dataclass
class InMemoryDataSource:
    """Serves a fixed snapshot; preferences are joined onto employees on load."""

    employees: list[Employee] = field(default_factory=list)
    shifts: list[Shift] = field(default_factory=list)
    rules: list[ValidationRule] = field(default_factory=list)
    preferences: list[Preference] = field(default_factory=list)
    schedules: dict[tuple[int, int], list[ScheduleEntry]] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: SchedulingPayload | Mapping[str, Any]) -> "InMemoryDataSource":
        if not isinstance(payload, SchedulingPayload):
            payload = SchedulingPayload.model_validate(payload)

        employees = [
            Employee(
                id=item.id,
                name=item.name,
                role_id=item.role_id,
                role_name=item.role_name,
                exclude_from_hours=item.exclude_from_hours,
                availability=[Availability(date=window.date, is_available=window.is_available) for window in item.availability],
                target_monthly_shifts=item.target_monthly_shifts,
            )
            for item in payload.employees
        ]
        shifts = [Shift(**item.model_dump()) for item in payload.shifts]
        preferences = [Preference(**item.model_dump()) for item in payload.preferences]
        schedules = {
            (schedule.year, schedule.month): [ScheduleEntry(**entry.model_dump()) for entry in schedule.entries]
            for schedule in payload.schedules
        }
        if payload.rules is None:
            rules = load_default_rules()
        else:
            rules = [rule.model_copy(deep=True) for rule in payload.rules]
        return cls(
            employees=employees,
            shifts=shifts,
            rules=rules,
            preferences=preferences,
            schedules=schedules,
        )

    async def load_employees(self) -> list[Employee]:
        by_employee: dict[str, list[Preference]] = {}
        for preference in self.preferences:
            by_employee.setdefault(preference.employee_id, []).append(preference)
        return [
            replace(employee, preferences=list(employee.preferences) + by_employee.get(employee.id, []))
            for employee in self.employees
        ]

    async def load_shifts(self) -> list[Shift]:
        return list(self.shifts)

    async def load_rules(self) -> list[ValidationRule]:
        return order_rules(self.rules)

    async def load_approved_day_offs(self, month: int, year: int) -> list[Preference]:
        return [
            preference
            for preference in self.preferences
            if preference.preference_type == "day_off" and preference.is_approved and preference.in_month(year, month)
        ]

    async def load_schedule(self, month: int, year: int) -> list[ScheduleEntry]:
        return list(self.schedules.get((year, month), []))

    def store_schedule(self, month: int, year: int, entries: list[ScheduleEntry]) -> None:
        self.schedules[(year, month)] = list(entries)
