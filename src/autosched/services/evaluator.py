"""Rule evaluation over a month schedule."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Sequence

from autosched.services.domain import (
    Employee,
    RuleViolation,
    ScheduleEntry,
    SchedulingContext,
    Shift,
    parse_time,
    week_start,
)
from autosched.services.rules import RuleType, ValidationRule

logger = logging.getLogger(__name__)


@dataclass
class ScheduleIndex:
    """Lookups built once per evaluation pass."""

    assignments: set[tuple[str, int, str]] = field(default_factory=set)
    cell_employees: dict[tuple[int, str], list[str]] = field(default_factory=dict)
    employee_entries: dict[str, list[ScheduleEntry]] = field(default_factory=dict)

    @classmethod
    def build(cls, entries: Iterable[ScheduleEntry], day_off_shift_id: str) -> "ScheduleIndex":
        index = cls()
        for entry in entries:
            index.assignments.add((entry.employee_id, entry.day, entry.shift_id))
            if entry.shift_id == day_off_shift_id:
                continue
            index.cell_employees.setdefault((entry.day, entry.shift_id), []).append(entry.employee_id)
            index.employee_entries.setdefault(entry.employee_id, []).append(entry)
        for working in index.employee_entries.values():
            working.sort(key=lambda entry: entry.day)
        return index

    def headcount(self, day: int, shift_id: str) -> int:
        return len(self.cell_employees.get((day, shift_id), ()))

    def working_entries(self, employee_id: str) -> list[ScheduleEntry]:
        return self.employee_entries.get(employee_id, [])

    def has(self, employee_id: str, day: int, shift_id: str) -> bool:
        return (employee_id, day, shift_id) in self.assignments


RuleEvaluator = Callable[[ValidationRule, SchedulingContext, ScheduleIndex], list[RuleViolation]]

RULE_EVALUATORS: dict[RuleType, RuleEvaluator] = {}


def _evaluator(rule_type: RuleType) -> Callable[[RuleEvaluator], RuleEvaluator]:
    def register(func: RuleEvaluator) -> RuleEvaluator:
        RULE_EVALUATORS[rule_type] = func
        return func

    return register


def evaluate_rules(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    rules: Sequence[ValidationRule] | None = None,
) -> list[RuleViolation]:
    """Evaluate every enabled rule against ``entries`` and concatenate the violations."""

    index = ScheduleIndex.build(entries, context.day_off_shift_id)
    violations: list[RuleViolation] = []
    for rule in context.rules if rules is None else rules:
        if not rule.enabled:
            continue
        rule_type = rule.known_type
        evaluator = RULE_EVALUATORS.get(rule_type) if rule_type is not None else None
        if evaluator is None:
            logger.warning("Unknown rule type %r, skipping", rule.rule_type)
            continue
        violations.extend(evaluator(rule, context, index))
    return violations


def split_by_severity(violations: Iterable[RuleViolation]) -> tuple[list[RuleViolation], list[RuleViolation]]:
    errors: list[RuleViolation] = []
    warnings: list[RuleViolation] = []
    for violation in violations:
        (errors if violation.severity == "error" else warnings).append(violation)
    return errors, warnings


def _violation(rule: ValidationRule, message: str, **scope) -> RuleViolation:
    return RuleViolation(
        rule_type=rule.rule_type,
        severity=rule.enforcement_type,
        message=message,
        priority=rule.priority,
        **scope,
    )


def _scoped_employees(rule: ValidationRule, context: SchedulingContext) -> list[Employee]:
    return [employee for employee in context.employees if rule.applies_to(employee.id, employee.role_name)]


def _weekly_buckets(
    context: SchedulingContext, entries: Iterable[ScheduleEntry]
) -> dict[date, list[ScheduleEntry]]:
    weeks: dict[date, list[ScheduleEntry]] = {}
    for entry in entries:
        weeks.setdefault(week_start(context.date_for(entry.day)), []).append(entry)
    return weeks


@_evaluator(RuleType.MAX_CONSECUTIVE_WORK_DAYS)
def _max_consecutive_work_days(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    max_days = int(rule.setting("max_days", 5))
    violations: list[RuleViolation] = []

    for employee in _scoped_employees(rule, context):
        streak = 0
        last_day = 0
        for entry in index.working_entries(employee.id):
            streak = streak + 1 if entry.day == last_day + 1 else 1
            if streak > max_days:
                violations.append(
                    _violation(
                        rule,
                        f"{employee.name} works more than {max_days} days in a row (day {entry.day})",
                        employee_id=employee.id,
                        day=entry.day,
                    )
                )
            last_day = entry.day
    return violations


def _shift_grid(context: SchedulingContext):
    for day in context.month_days():
        for shift in context.work_shifts:
            yield day, shift


@_evaluator(RuleType.MIN_EMPLOYEES_PER_SHIFT)
def _min_employees_per_shift(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    minimum = int(rule.setting("min", 1))
    violations: list[RuleViolation] = []
    for day, shift in _shift_grid(context):
        count = index.headcount(day, shift.id)
        if count < minimum:
            violations.append(
                _violation(
                    rule,
                    f'Shift "{shift.name}" on day {day} has only {count} employee(s), '
                    f"at least {minimum} required",
                    day=day,
                    shift_id=shift.id,
                )
            )
    return violations


@_evaluator(RuleType.MAX_EMPLOYEES_PER_SHIFT)
def _max_employees_per_shift(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    maximum = int(rule.setting("max", 10))
    violations: list[RuleViolation] = []
    for day, shift in _shift_grid(context):
        count = index.headcount(day, shift.id)
        if count > maximum:
            violations.append(
                _violation(
                    rule,
                    f'Shift "{shift.name}" on day {day} has {count} employee(s), at most {maximum} allowed',
                    day=day,
                    shift_id=shift.id,
                )
            )
    return violations


@_evaluator(RuleType.MAX_HOURS_PER_WEEK)
def _max_hours_per_week(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    max_hours = float(rule.setting("max_hours", 40))
    violations: list[RuleViolation] = []

    for employee in _scoped_employees(rule, context):
        weeks = _weekly_buckets(context, index.working_entries(employee.id))
        for week, week_entries in weeks.items():
            hours = sum(context.shift_hours(entry.shift_id) for entry in week_entries)
            if hours > max_hours:
                violations.append(
                    _violation(
                        rule,
                        f"{employee.name} works {hours:g} hours in the week starting {week.isoformat()}, "
                        f"maximum allowed is {max_hours:g}",
                        employee_id=employee.id,
                    )
                )
    return violations


@_evaluator(RuleType.APPROVED_DAY_OFF_REQUESTS)
def _approved_day_off_requests(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    violations: list[RuleViolation] = []
    for employee, preference in context.day_off_requests():
        if not rule.applies_to(employee.id, employee.role_name):
            continue
        day = preference.target_date.day
        if not index.has(employee.id, day, context.day_off_shift_id):
            violations.append(
                _violation(
                    rule,
                    f"{employee.name} must have a day off on day {day} (approved request)",
                    employee_id=employee.id,
                    day=day,
                )
            )
    return violations


def rest_hours(current: Shift | None, following: Shift | None) -> float | None:
    """Hours between ``current`` ending and ``following`` starting on the next day.

    ``None`` when either shift is unknown or has no clock times.
    """

    if not current or not following or not current.end_time or not following.start_time:
        return None
    end = parse_time(current.end_time)
    start = parse_time(following.start_time)
    return start - end if end < start else (24 - end) + start


@_evaluator(RuleType.MIN_REST_BETWEEN_SHIFTS)
def _min_rest_between_shifts(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    min_rest = float(rule.setting("hours", 12))
    violations: list[RuleViolation] = []

    for employee in _scoped_employees(rule, context):
        working = index.working_entries(employee.id)
        for current, following in zip(working, working[1:]):
            if current.day + 1 != following.day:
                continue
            rest = rest_hours(
                context.shift_lookup.get(current.shift_id),
                context.shift_lookup.get(following.shift_id),
            )
            if rest is not None and rest < min_rest:
                violations.append(
                    _violation(
                        rule,
                        f"{employee.name} has only {rest:g}h of rest before day {following.day}, "
                        f"minimum is {min_rest:g}h",
                        employee_id=employee.id,
                        day=following.day,
                    )
                )
    return violations


@_evaluator(RuleType.REQUIRED_ROLES_PER_SHIFT)
def _required_roles_per_shift(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    role = rule.config.get("role")
    min_count = int(rule.setting("min_count", 1))
    if not role:
        return []

    violations: list[RuleViolation] = []
    for day, shift in _shift_grid(context):
        with_role = 0
        for employee_id in index.cell_employees.get((day, shift.id), ()):
            employee = context.employee_lookup.get(employee_id)
            if employee is not None and employee.role_name == role:
                with_role += 1
        if with_role < min_count:
            violations.append(
                _violation(
                    rule,
                    f'Shift "{shift.name}" on day {day} requires at least {min_count} '
                    f'employee(s) with role "{role}"',
                    day=day,
                    shift_id=shift.id,
                )
            )
    return violations


@_evaluator(RuleType.MAX_SHIFTS_PER_WEEK)
def _max_shifts_per_week(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    maximum = int(rule.setting("max", 5))
    violations: list[RuleViolation] = []

    for employee in _scoped_employees(rule, context):
        weeks = _weekly_buckets(context, index.working_entries(employee.id))
        for week, week_entries in weeks.items():
            if len(week_entries) > maximum:
                violations.append(
                    _violation(
                        rule,
                        f"{employee.name} works {len(week_entries)} shifts in the week starting "
                        f"{week.isoformat()}, maximum allowed is {maximum}",
                        employee_id=employee.id,
                    )
                )
    return violations


@_evaluator(RuleType.MAX_HOURS_PER_MONTH)
def _max_hours_per_month(
    rule: ValidationRule, context: SchedulingContext, index: ScheduleIndex
) -> list[RuleViolation]:
    max_hours = float(rule.setting("max_hours", 160))
    violations: list[RuleViolation] = []

    for employee in _scoped_employees(rule, context):
        total = sum(context.shift_hours(entry.shift_id) for entry in index.working_entries(employee.id))
        if total > max_hours:
            violations.append(
                _violation(
                    rule,
                    f"{employee.name} works {total:g} hours this month, maximum allowed is {max_hours:g}",
                    employee_id=employee.id,
                )
            )
    return violations


def violation_counts(violations: Sequence[RuleViolation]) -> dict[str, int]:
    counts: dict[str, int] = defaultdict(int)
    for violation in violations:
        counts[violation.rule_type] += 1
    return dict(counts)
