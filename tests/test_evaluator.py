import logging

from autosched.services.domain import ScheduleEntry
from autosched.services.evaluator import evaluate_rules, split_by_severity

from .factories import (
    DAY_OFF,
    build_context,
    build_employee,
    build_preference,
    build_rule,
    build_shift,
    entries_for,
)


def _two_per_day_except(day_short: int) -> list[ScheduleEntry]:
    entries = entries_for("e1", range(1, 32))
    entries += entries_for("e2", (day for day in range(1, 32) if day != day_short))
    return entries


def test_min_employees_per_shift_flags_single_short_cell() -> None:
    rule = build_rule("min_employees_per_shift", config={"min": 2}, enforcement_type="error", priority=1)
    context = build_context(
        employees=[build_employee(id="e1"), build_employee(id="e2", name="Second")],
        rules=[rule],
    )

    violations = evaluate_rules(context, _two_per_day_except(3))

    assert len(violations) == 1
    violation = violations[0]
    assert violation.rule_type == "min_employees_per_shift"
    assert violation.severity == "error"
    assert violation.priority == 1
    assert violation.day == 3
    assert violation.shift_id == "day"
    assert violation.message == 'Shift "Day" on day 3 has only 1 employee(s), at least 2 required'


def test_max_hours_per_week_flags_48_hour_week() -> None:
    rule = build_rule("max_hours_per_week", config={"max_hours": 40})
    context = build_context(rules=[rule])
    # Monday 3rd to Saturday 8th, inside the week starting Sunday the 2nd.
    entries = entries_for("e1", range(3, 9))

    violations = evaluate_rules(context, entries)

    assert len(violations) == 1
    assert violations[0].employee_id == "e1"
    assert "48" in violations[0].message
    assert "40" in violations[0].message
    assert "2025-03-02" in violations[0].message


def test_numeric_settings_given_as_strings() -> None:
    rules = [
        build_rule("max_hours_per_week", config={"max_hours": "40"}, id=1),
        build_rule("min_employees_per_shift", config={"min": "2"}, id=2),
    ]
    context = build_context(employees=[build_employee(id="e1"), build_employee(id="e2", name="Second")], rules=rules)
    entries = entries_for("e1", range(3, 9)) + entries_for("e2", range(3, 8))

    violations = evaluate_rules(context, entries)

    weekly = [violation for violation in violations if violation.rule_type == "max_hours_per_week"]
    assert [violation.employee_id for violation in weekly] == ["e1"]
    assert weekly[0].message.endswith("maximum allowed is 40")
    short_days = sorted(violation.day for violation in violations if violation.rule_type == "min_employees_per_shift")
    assert short_days == [1, 2] + list(range(8, 32))


def test_weekly_rules_split_weeks_on_sunday() -> None:
    rule = build_rule("max_shifts_per_week", config={"max": 5})
    context = build_context(rules=[rule])
    # Saturday 1st belongs to the previous week, so Sunday 2nd to Friday 7th is six shifts.
    entries = entries_for("e1", range(1, 8))

    violations = evaluate_rules(context, entries)

    assert len(violations) == 1
    assert "2025-03-02" in violations[0].message


def test_approved_day_off_requests() -> None:
    rule = build_rule("approved_day_off_requests", enforcement_type="error")
    employee = build_employee(
        preferences=[
            build_preference(),
            build_preference(target_date=build_preference().target_date.replace(day=20), status="pending"),
        ]
    )
    context = build_context(employees=[employee], rules=[rule])

    worked = evaluate_rules(context, entries_for("e1", [15]))
    rested = evaluate_rules(context, entries_for("e1", [15], shift_id=DAY_OFF))

    assert [(violation.employee_id, violation.day) for violation in worked] == [("e1", 15)]
    assert worked[0].severity == "error"
    assert rested == []


def test_max_consecutive_work_days_flags_each_day_beyond_limit() -> None:
    rule = build_rule("max_consecutive_work_days", config={"max_days": 5})
    context = build_context(rules=[rule])
    entries = entries_for("e1", range(3, 10)) + entries_for("e1", [11, 12])

    violations = evaluate_rules(context, entries)

    assert [violation.day for violation in violations] == [8, 9]


def test_day_off_entries_break_consecutive_runs() -> None:
    rule = build_rule("max_consecutive_work_days", config={"max_days": 3})
    context = build_context(rules=[rule])
    entries = entries_for("e1", [3, 4, 5]) + entries_for("e1", [6], shift_id=DAY_OFF) + entries_for("e1", [7, 8])

    assert evaluate_rules(context, entries) == []


def test_max_employees_per_shift() -> None:
    rule = build_rule("max_employees_per_shift", config={"max": 2})
    employees = [build_employee(id=f"e{index}") for index in range(1, 4)]
    context = build_context(employees=employees, rules=[rule])
    entries = [ScheduleEntry(employee.id, 4, "day") for employee in employees]

    violations = evaluate_rules(context, entries)

    assert [(violation.day, violation.shift_id) for violation in violations] == [(4, "day")]


def test_min_rest_between_shifts_across_midnight() -> None:
    rule = build_rule("min_rest_between_shifts", config={"hours": 12})
    night = build_shift(id="night", name="Night", start_time="22:00", end_time="06:00")
    context = build_context(shifts=[build_shift(), night], rules=[rule])
    entries = [ScheduleEntry("e1", 3, "night"), ScheduleEntry("e1", 4, "day"), ScheduleEntry("e1", 5, "day")]

    violations = evaluate_rules(context, entries)

    assert len(violations) == 1
    assert violations[0].day == 4
    assert "2h" in violations[0].message


def test_required_roles_per_shift() -> None:
    rule = build_rule("required_roles_per_shift", config={"role": "chef", "min_count": 1})
    employees = [build_employee(id="e1", role_name="chef"), build_employee(id="e2", role_name="cook")]
    context = build_context(employees=employees, rules=[rule])
    entries = [ScheduleEntry("e1", 3, "day"), ScheduleEntry("e2", 4, "day")]

    flagged_days = {violation.day for violation in evaluate_rules(context, entries)}

    assert 3 not in flagged_days
    assert 4 in flagged_days
    assert len(flagged_days) == 30


def test_required_roles_without_role_is_ignored() -> None:
    context = build_context(rules=[build_rule("required_roles_per_shift", config={"min_count": 1})])

    assert evaluate_rules(context, []) == []


def test_max_hours_per_month() -> None:
    rule = build_rule("max_hours_per_month", config={"max_hours": 160})
    context = build_context(rules=[rule])

    assert evaluate_rules(context, entries_for("e1", range(1, 21))) == []
    violations = evaluate_rules(context, entries_for("e1", range(1, 22)))
    assert len(violations) == 1
    assert "168" in violations[0].message


def test_employee_scoping_limits_employee_rules_only() -> None:
    employees = [build_employee(id="e1"), build_employee(id="e2")]
    hours = build_rule("max_hours_per_week", config={"max_hours": 40}, applies_to_employees=["e2"])
    staffing = build_rule("max_employees_per_shift", config={"max": 1}, applies_to_employees=["e2"])
    context = build_context(employees=employees, rules=[hours, staffing])
    entries = entries_for("e1", range(3, 9)) + entries_for("e2", [3])

    violations = evaluate_rules(context, entries)

    assert [(violation.rule_type, violation.day) for violation in violations] == [("max_employees_per_shift", 3)]


def test_unknown_and_disabled_rules_are_skipped(caplog) -> None:
    rules = [
        build_rule("max_coffee_breaks"),
        build_rule("max_hours_per_week", config={"max_hours": 8}, enabled=False),
    ]
    context = build_context(rules=rules)

    with caplog.at_level(logging.WARNING, logger="autosched.services.evaluator"):
        violations = evaluate_rules(context, entries_for("e1", range(3, 9)))

    assert violations == []
    assert "max_coffee_breaks" in caplog.text


def test_evaluation_is_deterministic() -> None:
    rules = [
        build_rule("min_employees_per_shift", config={"min": 2}, enforcement_type="error"),
        build_rule("max_consecutive_work_days", config={"max_days": 2}),
        build_rule("max_hours_per_week", config={"max_hours": 16}),
    ]
    context = build_context(employees=[build_employee(id="e1"), build_employee(id="e2")], rules=rules)
    entries = entries_for("e1", range(1, 12)) + entries_for("e2", range(5, 20))

    first = evaluate_rules(context, entries)
    second = evaluate_rules(context, entries)

    assert first == second
    errors, warnings = split_by_severity(first)
    assert errors and warnings
    assert all(violation.severity == "error" for violation in errors)
