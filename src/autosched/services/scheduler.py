from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from autosched.services.domain import (
    Employee,
    Preference,
    ScheduleEntry,
    SchedulingContext,
    SchedulingPolicy,
    Shift,
)
from autosched.services.rules import RuleType, find_rule

logger = logging.getLogger(__name__)

BASE_SCORE = 10.0
PREFERRED_SHIFT_BONUS = 20.0
AVOIDED_SHIFT_PENALTY = 50.0
WORKLOAD_DEVIATION_WEIGHT = 2.0
REQUIRED_ROLE_BONUS = 15.0
CONSECUTIVE_DAY_PENALTY = 10.0


@dataclass
class ScheduleState:
    """Incrementally maintained lookups over a schedule under construction."""

    day_off_shift_id: str
    entries: list[ScheduleEntry] = field(default_factory=list)
    by_employee_day: dict[tuple[str, int], str] = field(default_factory=dict)
    cell_counts: dict[tuple[int, str], int] = field(default_factory=dict)
    shift_totals: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[ScheduleEntry], day_off_shift_id: str) -> "ScheduleState":
        state = cls(day_off_shift_id=day_off_shift_id)
        for entry in entries:
            state.add(entry)
        return state

    def add(self, entry: ScheduleEntry) -> None:
        self.entries.append(entry)
        self.by_employee_day[(entry.employee_id, entry.day)] = entry.shift_id
        if entry.shift_id == self.day_off_shift_id:
            return
        key = (entry.day, entry.shift_id)
        self.cell_counts[key] = self.cell_counts.get(key, 0) + 1
        self.shift_totals[entry.employee_id] = self.shift_totals.get(entry.employee_id, 0) + 1

    def has_entry(self, employee_id: str, day: int) -> bool:
        return (employee_id, day) in self.by_employee_day

    def headcount(self, day: int, shift_id: str) -> int:
        return self.cell_counts.get((day, shift_id), 0)

    def works_on(self, employee_id: str, day: int) -> bool:
        shift_id = self.by_employee_day.get((employee_id, day))
        return shift_id is not None and shift_id != self.day_off_shift_id

    def consecutive_days(self, employee_id: str, day: int) -> int:
        """Worked days in the run ending the day before ``day``."""

        streak = 0
        previous = day - 1
        while previous >= 1 and self.works_on(employee_id, previous):
            streak += 1
            previous -= 1
        return streak


def apply_hard_constraints(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    day_offs: Iterable[Preference],
) -> list[ScheduleEntry]:
    """Pin approved in-month day-off requests, replacing any entry on the same day."""

    placed: dict[tuple[str, int], ScheduleEntry] = {}
    for entry in entries:
        placed[(entry.employee_id, entry.day)] = entry

    requests = [
        preference
        for preference in day_offs
        if preference.preference_type == "day_off"
        and preference.is_approved
        and preference.in_month(context.year, context.month)
    ]
    if requests and not context.has_day_off_shift:
        logger.warning(
            "Day-off shift %r is not configured; %d approved day-off request(s) not pinned",
            context.day_off_shift_id,
            len(requests),
        )
        return list(placed.values())

    for preference in requests:
        day = preference.target_date.day
        placed[(preference.employee_id, day)] = ScheduleEntry(
            employee_id=preference.employee_id,
            day=day,
            shift_id=context.day_off_shift_id,
        )
    return list(placed.values())


def consecutive_day_cutoff(context: SchedulingContext) -> int:
    """Worked-day streak at which a candidate leaves the pool.

    Follows the enabled ``max_consecutive_work_days`` rule so generation and
    validation agree; the policy default applies when no such rule is enabled.
    """

    rule = find_rule(context.rules, RuleType.MAX_CONSECUTIVE_WORK_DAYS)
    if rule is None:
        return context.policy.max_consecutive_days
    return int(rule.setting("max_days", context.policy.max_consecutive_days))


def candidate_score(
    employee: Employee,
    day: int,
    shift: Shift,
    state: ScheduleState,
    policy: SchedulingPolicy,
) -> float:
    """Desirability of giving ``shift`` on ``day`` to ``employee``. Higher is better."""

    score = BASE_SCORE

    if employee.shift_preference("preferred_shift", shift.id):
        score += PREFERRED_SHIFT_BONUS
    if employee.shift_preference("avoid_shift", shift.id):
        score -= AVOIDED_SHIFT_PENALTY

    assigned = state.shift_totals.get(employee.id, 0)
    score -= abs(assigned - policy.target_for(employee)) * WORKLOAD_DEVIATION_WEIGHT

    if employee.role_name and employee.role_name in shift.required_roles:
        score += REQUIRED_ROLE_BONUS

    consecutive = state.consecutive_days(employee.id, day)
    if consecutive >= policy.consecutive_penalty_start:
        score -= (consecutive - policy.consecutive_penalty_start + 1) * CONSECUTIVE_DAY_PENALTY

    return score


def is_candidate(
    employee: Employee,
    day: int,
    context: SchedulingContext,
    state: ScheduleState,
    cutoff: int,
) -> bool:
    if employee.exclude_from_hours:
        return False
    if state.has_entry(employee.id, day):
        return False
    if not employee.is_available(context.date_for(day)):
        return False
    return state.consecutive_days(employee.id, day) < cutoff


def rank_candidates(
    context: SchedulingContext,
    state: ScheduleState,
    day: int,
    shift: Shift,
    cutoff: int,
) -> list[Employee]:
    """Eligible employees, best first. Ties keep the input employee order."""

    pool = [employee for employee in context.employees if is_candidate(employee, day, context, state, cutoff)]
    scored = [(candidate_score(employee, day, shift, state, context.policy), employee) for employee in pool]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [employee for _score, employee in scored]


def greedy_schedule(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> list[ScheduleEntry]:
    """
    Walk working days in order and fill each shift up to its minimum staff with
    the best-scoring free employees. Slots without candidates stay short.
    """

    state = ScheduleState.from_entries(entries, context.day_off_shift_id)
    cutoff = consecutive_day_cutoff(context)
    shortfall = 0

    for day in context.working_days():
        for shift in context.work_shifts:
            if shift.min_staff <= 0:
                continue
            staff_needed = max(0, shift.min_staff - state.headcount(day, shift.id))
            if not staff_needed:
                continue

            candidates = rank_candidates(context, state, day, shift, cutoff)
            for employee in candidates[:staff_needed]:
                state.add(ScheduleEntry(employee_id=employee.id, day=day, shift_id=shift.id))
            shortfall += max(0, staff_needed - len(candidates))

    if shortfall:
        logger.info("Greedy pass left %d slot(s) unfilled for %d-%02d", shortfall, context.year, context.month)
    return state.entries
