"""Schedule quality metrics."""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from autosched.services.domain import RuleViolation, ScheduleEntry, ScheduleMetrics, SchedulingContext
from autosched.services.evaluator import evaluate_rules, split_by_severity


def coverage_percentage(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> float:
    required, filled = coverage_slots(context, entries)
    if required <= 0:
        return 100.0
    return min(100.0, filled / required * 100)


def coverage_slots(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> tuple[int, int]:
    """Required minimum-staff slots and actual assignments in the month x shift grid."""

    cell_counts = Counter((entry.day, entry.shift_id) for entry in entries)
    required = 0
    filled = 0
    for day in context.month_days():
        for shift in context.work_shifts:
            required += shift.min_staff
            filled += cell_counts.get((day, shift.id), 0)
    return required, filled


def shift_counts(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> dict[str, int]:
    counts = {employee.id: 0 for employee in context.employees}
    for entry in entries:
        if entry.shift_id != context.day_off_shift_id and entry.employee_id in counts:
            counts[entry.employee_id] += 1
    return counts


def shift_count_variance(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> float:
    counts = list(shift_counts(context, entries).values())
    if not counts:
        return 0.0
    mean = sum(counts) / len(counts)
    return sum((count - mean) ** 2 for count in counts) / len(counts)


def balance_score(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> float:
    return max(0.0, 100 - shift_count_variance(context, entries) * 2)


def satisfied_day_off_requests(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> tuple[int, int]:
    assigned = {(entry.employee_id, entry.day, entry.shift_id) for entry in entries}
    requests = context.day_off_requests()
    satisfied = sum(
        1
        for employee, preference in requests
        if (employee.id, preference.target_date.day, context.day_off_shift_id) in assigned
    )
    return satisfied, len(requests)


def preference_satisfaction_rate(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> float:
    satisfied, total = satisfied_day_off_requests(context, entries)
    if total == 0:
        return 100.0
    return satisfied / total * 100


def reported_hours(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> float:
    """Scheduled hours, leaving out employees excluded from hours reporting."""

    excluded = {employee.id for employee in context.employees if employee.exclude_from_hours}
    return sum(
        context.shift_hours(entry.shift_id)
        for entry in entries
        if entry.shift_id != context.day_off_shift_id and entry.employee_id not in excluded
    )


def calculate_metrics(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    violations: Sequence[RuleViolation] | None = None,
) -> ScheduleMetrics:
    if violations is None:
        violations = evaluate_rules(context, entries)
    errors, warnings = split_by_severity(violations)

    return ScheduleMetrics(
        total_shifts=sum(1 for entry in entries if entry.shift_id != context.day_off_shift_id),
        coverage_percentage=coverage_percentage(context, entries),
        balance_score=balance_score(context, entries),
        preference_satisfaction_rate=preference_satisfaction_rate(context, entries),
        violation_count=len(violations),
        error_count=len(errors),
        warning_count=len(warnings),
        total_hours=reported_hours(context, entries),
    )
