"""Local search over a finished schedule.

Every search walks a stream of candidate schedules produced by a move
generator and keeps a candidate when its objective tuple improves. The plain
search swaps shift ids between same-day entries and accepts strict improvements
of the whole-schedule score. The focused searches pair a focus score with the
whole-schedule score and refuse anything that lowers the latter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from time import perf_counter
from typing import Callable, Iterator, Literal, Sequence

from autosched.services.domain import ScheduleChange, ScheduleEntry, SchedulingContext
from autosched.services.evaluator import ScheduleIndex, evaluate_rules
from autosched.services.metrics import satisfied_day_off_requests, shift_count_variance, shift_counts
from autosched.services.scheduler import ScheduleState, consecutive_day_cutoff, is_candidate, rank_candidates

logger = logging.getLogger(__name__)

OptimizationFocus = Literal["coverage", "balance", "preferences"]
FOCUS_AREAS: tuple[str, ...] = ("coverage", "balance", "preferences")

VIOLATION_WEIGHT = 100
PREFERENCE_WEIGHT = 10

Objective = Callable[[SchedulingContext, list[ScheduleEntry]], tuple[float, ...]]
MoveGenerator = Callable[[SchedulingContext, list[ScheduleEntry]], Iterator[list[ScheduleEntry]]]


class UnknownOptimizationError(ValueError):
    def __init__(self, optimization_type: str):
        super().__init__(f"Unknown optimization type: {optimization_type!r}")
        self.optimization_type = optimization_type


@dataclass
class SearchOutcome:
    entries: list[ScheduleEntry]
    initial_score: float
    final_score: float
    iterations: int = 0
    accepted_moves: int = 0
    timed_out: bool = False

    @property
    def improved(self) -> bool:
        return self.accepted_moves > 0


class _Deadline:
    def __init__(self, timeout_ms: int | None):
        self._expires_at = None if timeout_ms is None else perf_counter() + timeout_ms / 1000

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and perf_counter() >= self._expires_at


def satisfied_shift_preferences(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> int:
    """Honoured in-month ``preferred_shift`` and ``avoid_shift`` preferences."""

    index = ScheduleIndex.build(entries, context.day_off_shift_id)
    satisfied = 0
    for employee, preference in context.shift_preferences():
        assigned = index.has(employee.id, preference.target_date.day, preference.target_shift_id)
        if preference.preference_type == "preferred_shift" and assigned:
            satisfied += 1
        elif preference.preference_type == "avoid_shift" and not assigned:
            satisfied += 1
    return satisfied


def schedule_score(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> float:
    """Whole-schedule score; higher is better."""

    violations = evaluate_rules(context, entries)
    return (
        -VIOLATION_WEIGHT * len(violations)
        + PREFERENCE_WEIGHT * satisfied_shift_preferences(context, entries)
    )


def filled_slots(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> int:
    """Assignments counted towards minimum staff, capped per (day, shift) cell."""

    index = ScheduleIndex.build(entries, context.day_off_shift_id)
    return sum(
        min(index.headcount(day, shift.id), shift.min_staff)
        for day in context.month_days()
        for shift in context.work_shifts
    )


def focus_score(context: SchedulingContext, entries: Sequence[ScheduleEntry], focus: str) -> float:
    if focus == "coverage":
        return filled_slots(context, entries)
    if focus == "balance":
        return -shift_count_variance(context, entries)
    if focus == "preferences":
        satisfied_day_offs, _total = satisfied_day_off_requests(context, entries)
        return satisfied_shift_preferences(context, entries) + satisfied_day_offs
    raise UnknownOptimizationError(focus)


def _same_day_pairs(entries: Sequence[ScheduleEntry]) -> Iterator[tuple[int, int]]:
    # Same order as a full double loop over positions, minus the cross-day pairs.
    positions: dict[int, list[int]] = {}
    for position, entry in enumerate(entries):
        positions.setdefault(entry.day, []).append(position)
    for first, entry in enumerate(entries):
        for second in positions[entry.day]:
            if second > first:
                yield first, second


def _pinned_day_offs(context: SchedulingContext) -> set[tuple[str, int]]:
    pinned = {(employee.id, preference.target_date.day) for employee, preference in context.day_off_requests()}
    pinned.update(
        (preference.employee_id, preference.target_date.day)
        for preference in context.approved_day_offs
        if preference.in_month(context.year, context.month)
    )
    return pinned


def _swap_moves(context: SchedulingContext, working: list[ScheduleEntry]) -> Iterator[list[ScheduleEntry]]:
    pinned = _pinned_day_offs(context)

    def is_pinned(entry: ScheduleEntry) -> bool:
        return entry.shift_id == context.day_off_shift_id and (entry.employee_id, entry.day) in pinned

    for first, second in _same_day_pairs(list(working)):
        left, right = working[first], working[second]
        if left.shift_id == right.shift_id or is_pinned(left) or is_pinned(right):
            continue
        trial = list(working)
        trial[first] = replace(left, shift_id=right.shift_id)
        trial[second] = replace(right, shift_id=left.shift_id)
        yield trial


def _fill_moves(context: SchedulingContext, working: list[ScheduleEntry]) -> Iterator[list[ScheduleEntry]]:
    cutoff = consecutive_day_cutoff(context)
    for day in context.working_days():
        for shift in context.work_shifts:
            state = ScheduleState.from_entries(working, context.day_off_shift_id)
            while state.headcount(day, shift.id) < shift.min_staff:
                size = len(working)
                for employee in rank_candidates(context, state, day, shift, cutoff):
                    yield working + [ScheduleEntry(employee_id=employee.id, day=day, shift_id=shift.id)]
                    if len(working) != size:
                        break
                else:
                    break
                state = ScheduleState.from_entries(working, context.day_off_shift_id)


def _transfer_moves(context: SchedulingContext, working: list[ScheduleEntry]) -> Iterator[list[ScheduleEntry]]:
    cutoff = consecutive_day_cutoff(context)
    for position in range(len(working)):
        entry = working[position]
        if entry.shift_id == context.day_off_shift_id or entry.shift_id not in context.shift_lookup:
            continue
        counts = shift_counts(context, working)
        if not counts:
            return
        mean = sum(counts.values()) / len(counts)
        if counts.get(entry.employee_id, 0) <= mean:
            continue

        state = ScheduleState.from_entries(working, context.day_off_shift_id)
        for employee in context.employees:
            if counts[employee.id] >= mean or not is_candidate(employee, entry.day, context, state, cutoff):
                continue
            trial = list(working)
            trial[position] = replace(entry, employee_id=employee.id)
            yield trial
            if working[position] is not entry:
                break


FOCUS_MOVES: dict[str, MoveGenerator] = {
    "coverage": _fill_moves,
    "balance": _transfer_moves,
    "preferences": _swap_moves,
}


def _accepts(current: tuple[float, ...], candidate: tuple[float, ...]) -> bool:
    # The last component is always the whole-schedule score and may never drop.
    return candidate[-1] >= current[-1] and candidate > current


def _search(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    moves: MoveGenerator,
    objective: Objective,
    max_iterations: int | None,
    timeout_ms: int | None,
    label: str,
) -> SearchOutcome:
    if max_iterations is None:
        max_iterations = context.policy.local_search_max_iterations
    deadline = _Deadline(timeout_ms)

    working = list(entries)
    current = objective(context, working)
    outcome = SearchOutcome(entries=working, initial_score=current[-1], final_score=current[-1])

    for _ in range(max_iterations):
        if deadline.expired:
            outcome.timed_out = True
            break
        outcome.iterations += 1
        improved = False
        for trial in moves(context, working):
            if deadline.expired:
                outcome.timed_out = True
                break
            candidate = objective(context, trial)
            if _accepts(current, candidate):
                # Move generators read ``working`` and see the accepted change.
                working[:] = trial
                current = candidate
                improved = True
                outcome.accepted_moves += 1
        logger.debug("%s pass %d: objective %s", label, outcome.iterations, current)
        if outcome.timed_out or not improved:
            break

    outcome.final_score = current[-1]
    if outcome.timed_out:
        logger.info("%s stopped on timeout after %d pass(es)", label, outcome.iterations)
    return outcome


def local_search(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    max_iterations: int | None = None,
    timeout_ms: int | None = None,
) -> SearchOutcome:
    """Swap shifts between same-day entries while the whole-schedule score strictly improves."""

    return _search(
        context,
        entries,
        _swap_moves,
        lambda ctx, trial: (schedule_score(ctx, trial),),
        max_iterations,
        timeout_ms,
        "local search",
    )


def focused_search(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    focus: str,
    max_iterations: int | None = None,
    timeout_ms: int | None = None,
) -> SearchOutcome:
    moves = FOCUS_MOVES.get(focus)
    if moves is None:
        raise UnknownOptimizationError(focus)
    return _search(
        context,
        entries,
        moves,
        lambda ctx, trial: (focus_score(ctx, trial, focus), schedule_score(ctx, trial)),
        max_iterations,
        timeout_ms,
        f"{focus} search",
    )


def schedule_changes(before: Sequence[ScheduleEntry], after: Sequence[ScheduleEntry]) -> list[ScheduleChange]:
    previous = {(entry.employee_id, entry.day): entry.shift_id for entry in before}
    current = {(entry.employee_id, entry.day): entry.shift_id for entry in after}
    changes: list[ScheduleChange] = []
    for employee_id, day in sorted(previous.keys() | current.keys(), key=lambda key: (key[1], key[0])):
        before_shift = previous.get((employee_id, day))
        after_shift = current.get((employee_id, day))
        if before_shift != after_shift:
            changes.append(ScheduleChange(employee_id, day, before_shift, after_shift))
    return changes
