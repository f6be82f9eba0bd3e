import logging
from datetime import date

from autosched.services.domain import Availability, ScheduleEntry, SchedulingPolicy
from autosched.services.scheduler import (
    ScheduleState,
    apply_hard_constraints,
    candidate_score,
    consecutive_day_cutoff,
    greedy_schedule,
    rank_candidates,
)

from .factories import (
    DAY_OFF,
    SUNDAYS,
    build_context,
    build_employee,
    build_preference,
    build_rule,
    build_shift,
    entries_for,
)


def _longest_run(entries: list[ScheduleEntry], employee_id: str) -> int:
    days = sorted(entry.day for entry in entries if entry.employee_id == employee_id and entry.shift_id != DAY_OFF)
    longest = run = 0
    previous = None
    for day in days:
        run = run + 1 if previous is not None and day == previous + 1 else 1
        longest = max(longest, run)
        previous = day
    return longest


def test_hard_constraints_pin_approved_day_off() -> None:
    context = build_context()

    entries = apply_hard_constraints(context, [], [build_preference()])

    assert entries == [ScheduleEntry(employee_id="e1", day=15, shift_id=DAY_OFF)]


def test_hard_constraints_replace_existing_entry_for_the_day() -> None:
    context = build_context()
    existing = entries_for("e1", [14, 15, 15])

    entries = apply_hard_constraints(context, existing, [build_preference()])

    assert entries == [ScheduleEntry("e1", 14, "day"), ScheduleEntry("e1", 15, DAY_OFF)]


def test_hard_constraints_ignore_pending_and_other_months() -> None:
    context = build_context()
    requests = [
        build_preference(status="pending"),
        build_preference(target_date=date(2025, 4, 15)),
        build_preference(preference_type="preferred_shift", target_shift_id="day"),
    ]

    assert apply_hard_constraints(context, [], requests) == []


def test_hard_constraints_skip_without_day_off_shift(caplog) -> None:
    context = build_context(shifts=[build_shift()])

    with caplog.at_level(logging.WARNING, logger="autosched.services.scheduler"):
        entries = apply_hard_constraints(context, [], [build_preference()])

    assert entries == []
    assert "not configured" in caplog.text


def test_consecutive_cutoff_follows_rule() -> None:
    assert consecutive_day_cutoff(build_context()) == 5
    assert consecutive_day_cutoff(build_context(policy=SchedulingPolicy(max_consecutive_days=6))) == 6

    rule = build_rule("max_consecutive_work_days", config={"max_days": 3})
    assert consecutive_day_cutoff(build_context(rules=[rule])) == 3

    disabled = build_rule("max_consecutive_work_days", config={"max_days": 3}, enabled=False)
    assert consecutive_day_cutoff(build_context(rules=[disabled])) == 5


def test_candidate_score_components() -> None:
    policy = SchedulingPolicy()
    shift = build_shift()
    plain = build_employee()
    state = ScheduleState.from_entries([], DAY_OFF)

    # Base 10 minus 2 * |0 - 20|.
    assert candidate_score(plain, 3, shift, state, policy) == -30

    preferred = build_employee(
        preferences=[build_preference(preference_type="preferred_shift", target_shift_id="day", status="pending")]
    )
    assert candidate_score(preferred, 3, shift, state, policy) == -10

    avoiding = build_employee(preferences=[build_preference(preference_type="avoid_shift", target_shift_id="day")])
    assert candidate_score(avoiding, 3, shift, state, policy) == -80

    rejected = build_employee(
        preferences=[build_preference(preference_type="avoid_shift", target_shift_id="day", status="rejected")]
    )
    assert candidate_score(rejected, 3, shift, state, policy) == -30

    role_shift = build_shift(required_roles=["cook"])
    assert candidate_score(plain, 3, role_shift, state, policy) == -15

    contracted = build_employee(target_monthly_shifts=4)
    assert candidate_score(contracted, 3, shift, state, policy) == 2


def test_candidate_score_penalises_long_runs() -> None:
    policy = SchedulingPolicy()
    shift = build_shift()
    employee = build_employee()
    state = ScheduleState.from_entries(entries_for("e1", [3, 4, 5, 6]), DAY_OFF)

    # Four worked days: workload term is -2 * 16 and the run costs 10 * (4 - 3).
    assert candidate_score(employee, 7, shift, state, policy) == 10 - 32 - 10
    assert candidate_score(employee, 8, shift, state, policy) == 10 - 32


def test_rank_candidates_keeps_input_order_on_ties() -> None:
    employees = [build_employee(id="b"), build_employee(id="a"), build_employee(id="c")]
    context = build_context(employees=employees)
    state = ScheduleState.from_entries([], DAY_OFF)

    ranked = rank_candidates(context, state, 3, build_shift(), cutoff=5)

    assert [employee.id for employee in ranked] == ["b", "a", "c"]


def test_greedy_fills_working_days_only() -> None:
    context = build_context(employees=[build_employee(id="e1"), build_employee(id="e2")])

    entries = greedy_schedule(context, [])

    days = sorted(entry.day for entry in entries)
    assert days == [day for day in range(1, 32) if day not in SUNDAYS]
    assert all(entry.shift_id == "day" for entry in entries)


def test_greedy_does_not_extend_run_past_cutoff() -> None:
    context = build_context()
    prior = entries_for("e1", [3, 4, 5, 6])

    entries = greedy_schedule(context, prior)

    worked = {entry.day for entry in entries}
    assert 7 in worked
    assert 8 not in worked
    assert _longest_run(entries, "e1") <= 5


def test_greedy_respects_day_offs_availability_and_exclusions() -> None:
    employees = [
        build_employee(id="e1", availability=[Availability(date=date(2025, 3, 4), is_available=False)]),
        build_employee(id="manager", exclude_from_hours=True),
    ]
    context = build_context(employees=employees)
    pinned = apply_hard_constraints(context, [], [build_preference()])

    entries = greedy_schedule(context, pinned)

    by_day = {}
    for entry in entries:
        assert (entry.employee_id, entry.day) not in by_day
        by_day[(entry.employee_id, entry.day)] = entry.shift_id
    assert by_day[("e1", 15)] == DAY_OFF
    assert ("e1", 4) not in by_day
    assert not any(employee_id == "manager" for employee_id, _day in by_day)


def test_greedy_leaves_short_slots_short() -> None:
    context = build_context(shifts=[build_shift(min_staff=3), build_shift(id="idle", name="Idle", min_staff=0)])

    entries = greedy_schedule(context, [])

    assert {entry.shift_id for entry in entries} == {"day"}
    assert all(sum(1 for other in entries if other.day == entry.day) == 1 for entry in entries)
