from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from time import perf_counter
from typing import Callable, Dict, List, Sequence, Tuple

from ortools.sat.python import cp_model

from autosched.services.domain import Employee, ScheduleEntry, SchedulingContext, week_start
from autosched.services.evaluator import rest_hours
from autosched.services.rules import RuleType, ValidationRule, order_rules
from autosched.services.scheduler import consecutive_day_cutoff, greedy_schedule

logger = logging.getLogger(__name__)

HOURS_SCALE = 4  # quarter-hour precision


@dataclass
class OptimizerConfig:
    error_penalty: int = 1000
    warning_penalty: int = 100
    staff_deficit_penalty: int = 1000
    overstaff_penalty: int = 5
    preferred_shift_bonus: int = 20
    avoided_shift_penalty: int = 50
    required_role_bonus: int = 15
    workload_penalty: int = 2
    peak_load_penalty: int = 3

    def rule_penalty(self, rule: ValidationRule) -> int:
        return self.error_penalty if rule.enforcement_type == "error" else self.warning_penalty


def _scaled(hours: float) -> int:
    return int(round(hours * HOURS_SCALE))


def _is_constant(expression) -> bool:
    return isinstance(expression, int)


class _ScheduleModel:
    """CP-SAT model of one month: ``x[employee, day, shift]`` on top of the pre-seeded entries."""

    def __init__(self, context: SchedulingContext, entries: Sequence[ScheduleEntry], config: OptimizerConfig):
        self.context = context
        self.config = config
        self.model = cp_model.CpModel()
        self.days = context.working_days()
        self.shifts = context.work_shifts
        self.candidates = [employee for employee in context.employees if not employee.exclude_from_hours]

        self.taken: set[Tuple[str, int]] = set()
        self.fixed: Dict[Tuple[str, int], str] = {}
        for entry in entries:
            self.taken.add((entry.employee_id, entry.day))
            if entry.shift_id != context.day_off_shift_id and entry.shift_id in context.shift_lookup:
                self.fixed[(entry.employee_id, entry.day)] = entry.shift_id
        self.fixed_counts = Counter((day, shift_id) for (_employee_id, day), shift_id in self.fixed.items())

        self.shift_vars: Dict[Tuple[str, int, str], cp_model.IntVar] = {}
        self.objective_terms: List[cp_model.LinearExpr] = []
        self.max_daily_units = max((_scaled(shift.hours) for shift in self.shifts), default=0)

    @property
    def is_empty(self) -> bool:
        return not self.shift_vars

    # Variables

    def build_variables(self) -> None:
        for employee in self.candidates:
            for day in self.days:
                if (employee.id, day) in self.taken:
                    continue
                if not employee.is_available(self.context.date_for(day)):
                    continue
                vars_for_day = []
                for shift in self.shifts:
                    var = self.model.NewBoolVar(f"x_{employee.id}_d{day}_{shift.id}")
                    self.shift_vars[(employee.id, day, shift.id)] = var
                    vars_for_day.append(var)
                self.model.AddAtMostOne(vars_for_day)

    def assigned(self, employee_id: str, day: int, shift_id: str):
        var = self.shift_vars.get((employee_id, day, shift_id))
        if var is not None:
            return var
        return 1 if self.fixed.get((employee_id, day)) == shift_id else 0

    def worked(self, employee_id: str, day: int):
        if (employee_id, day) in self.fixed:
            return 1
        return sum(
            self.shift_vars[key]
            for key in ((employee_id, day, shift.id) for shift in self.shifts)
            if key in self.shift_vars
        )

    def hours(self, employee_id: str, day: int):
        fixed_shift = self.fixed.get((employee_id, day))
        if fixed_shift is not None:
            return _scaled(self.context.shift_hours(fixed_shift))
        return sum(
            _scaled(shift.hours) * self.shift_vars[(employee_id, day, shift.id)]
            for shift in self.shifts
            if (employee_id, day, shift.id) in self.shift_vars
        )

    def headcount(self, day: int, shift_id: str):
        variables = sum(
            self.shift_vars[(employee.id, day, shift_id)]
            for employee in self.candidates
            if (employee.id, day, shift_id) in self.shift_vars
        )
        return variables + self.fixed_counts.get((day, shift_id), 0)

    def penalise(self, variable, weight: int) -> None:
        self.objective_terms.append(variable * weight)

    # Staffing and soft signals

    def add_staffing(self) -> None:
        for day in self.days:
            for shift in self.shifts:
                count = self.headcount(day, shift.id)
                if _is_constant(count):
                    continue
                self.model.Add(count <= max(shift.max_staff, self.fixed_counts.get((day, shift.id), 0)))
                if shift.min_staff > 0:
                    deficit = self.model.NewIntVar(0, shift.min_staff, f"staff_deficit_d{day}_{shift.id}")
                    self.model.Add(count + deficit >= shift.min_staff)
                    self.penalise(deficit, self.config.staff_deficit_penalty)
                extra = self.model.NewIntVar(0, len(self.candidates), f"staff_extra_d{day}_{shift.id}")
                self.model.Add(extra >= count - shift.min_staff)
                self.penalise(extra, self.config.overstaff_penalty)

    def add_soft_signals(self) -> None:
        policy = self.context.policy
        month_days = list(self.context.month_days())
        peak_load = self.model.NewIntVar(0, len(month_days), "peak_load")

        for employee in self.candidates:
            for shift in self.shifts:
                weight = 0
                if employee.shift_preference("preferred_shift", shift.id):
                    weight -= self.config.preferred_shift_bonus
                if employee.shift_preference("avoid_shift", shift.id):
                    weight += self.config.avoided_shift_penalty
                if employee.role_name and employee.role_name in shift.required_roles:
                    weight -= self.config.required_role_bonus
                if not weight:
                    continue
                for day in self.days:
                    var = self.shift_vars.get((employee.id, day, shift.id))
                    if var is not None:
                        self.penalise(var, weight)

            total = sum(self.worked(employee.id, day) for day in month_days)
            if _is_constant(total):
                continue
            target = policy.target_for(employee)
            deviation = self.model.NewIntVar(0, len(month_days) + abs(target), f"load_dev_{employee.id}")
            self.model.Add(deviation >= total - target)
            self.model.Add(deviation >= target - total)
            self.penalise(deviation, self.config.workload_penalty)
            self.model.Add(peak_load >= total)

        self.penalise(peak_load, self.config.peak_load_penalty)

    # Rules

    def add_rules(self) -> None:
        handlers: Dict[RuleType, Callable[[ValidationRule], None]] = {
            RuleType.MIN_EMPLOYEES_PER_SHIFT: self._min_employees,
            RuleType.MAX_EMPLOYEES_PER_SHIFT: self._max_employees,
            RuleType.MAX_CONSECUTIVE_WORK_DAYS: self._max_consecutive,
            RuleType.MAX_HOURS_PER_WEEK: self._max_hours_per_week,
            RuleType.MAX_SHIFTS_PER_WEEK: self._max_shifts_per_week,
            RuleType.MAX_HOURS_PER_MONTH: self._max_hours_per_month,
            RuleType.APPROVED_DAY_OFF_REQUESTS: self._approved_day_off,
            RuleType.MIN_REST_BETWEEN_SHIFTS: self._min_rest,
            RuleType.REQUIRED_ROLES_PER_SHIFT: self._required_roles,
        }
        rules = order_rules(self.context.rules)
        for rule in rules:
            rule_type = rule.known_type
            if rule_type is None:
                continue
            handlers[rule_type](rule)

        if not any(rule.known_type is RuleType.MAX_CONSECUTIVE_WORK_DAYS for rule in rules):
            self._consecutive_windows(self.candidates, consecutive_day_cutoff(self.context), self.config.warning_penalty)

    def _scoped(self, rule: ValidationRule) -> list[Employee]:
        return [employee for employee in self.candidates if rule.applies_to(employee.id, employee.role_name)]

    def _min_employees(self, rule: ValidationRule) -> None:
        minimum = int(rule.setting("min", 1))
        for day in self.days:
            for shift in self.shifts:
                count = self.headcount(day, shift.id)
                if _is_constant(count):
                    continue
                slack = self.model.NewIntVar(0, minimum, f"min_slack_d{day}_{shift.id}")
                self.model.Add(count + slack >= minimum)
                self.penalise(slack, self.config.rule_penalty(rule))

    def _max_employees(self, rule: ValidationRule) -> None:
        maximum = int(rule.setting("max", 10))
        for day in self.days:
            for shift in self.shifts:
                count = self.headcount(day, shift.id)
                if _is_constant(count):
                    continue
                slack = self.model.NewIntVar(0, len(self.candidates), f"max_slack_d{day}_{shift.id}")
                self.model.Add(count - slack <= maximum)
                self.penalise(slack, self.config.rule_penalty(rule))

    def _max_consecutive(self, rule: ValidationRule) -> None:
        limit = int(rule.setting("max_days", self.context.policy.max_consecutive_days))
        self._consecutive_windows(self._scoped(rule), limit, self.config.rule_penalty(rule))

    def _consecutive_windows(self, employees: Sequence[Employee], limit: int, penalty: int) -> None:
        days_in_month = self.context.days_in_month
        if limit <= 0:
            return
        for employee in employees:
            for start in range(1, days_in_month - limit + 1):
                window = sum(self.worked(employee.id, day) for day in range(start, start + limit + 1))
                if _is_constant(window):
                    continue
                excess = self.model.NewIntVar(0, limit + 1, f"consec_excess_{employee.id}_d{start}")
                self.model.Add(window <= limit + excess)
                self.penalise(excess, penalty)

    def _weeks(self) -> Dict[date, List[int]]:
        weeks: Dict[date, List[int]] = {}
        for day in self.context.month_days():
            weeks.setdefault(week_start(self.context.date_for(day)), []).append(day)
        return weeks

    def _cap(self, expression, limit: int, upper_bound: int, name: str, penalty: int) -> None:
        if _is_constant(expression):
            return
        over = self.model.NewBoolVar(name)
        self.model.Add(expression <= limit + upper_bound * over)
        self.penalise(over, penalty)

    def _max_hours_per_week(self, rule: ValidationRule) -> None:
        limit = _scaled(float(rule.setting("max_hours", 40)))
        for employee in self._scoped(rule):
            for week, days in self._weeks().items():
                expression = sum(self.hours(employee.id, day) for day in days)
                upper = len(days) * self.max_daily_units
                self._cap(expression, limit, upper, f"week_hours_{employee.id}_{week}", self.config.rule_penalty(rule))

    def _max_shifts_per_week(self, rule: ValidationRule) -> None:
        limit = int(rule.setting("max", 5))
        for employee in self._scoped(rule):
            for week, days in self._weeks().items():
                expression = sum(self.worked(employee.id, day) for day in days)
                self._cap(expression, limit, len(days), f"week_shifts_{employee.id}_{week}", self.config.rule_penalty(rule))

    def _max_hours_per_month(self, rule: ValidationRule) -> None:
        limit = _scaled(float(rule.setting("max_hours", 160)))
        month_days = list(self.context.month_days())
        for employee in self._scoped(rule):
            expression = sum(self.hours(employee.id, day) for day in month_days)
            upper = len(month_days) * self.max_daily_units
            self._cap(expression, limit, upper, f"month_hours_{employee.id}", self.config.rule_penalty(rule))

    def _approved_day_off(self, rule: ValidationRule) -> None:
        # Requests already pinned by the hard-constraint pass have no variables left.
        for employee, preference in self.context.day_off_requests():
            if not rule.applies_to(employee.id, employee.role_name):
                continue
            day = preference.target_date.day
            variables = [
                self.shift_vars[(employee.id, day, shift.id)]
                for shift in self.shifts
                if (employee.id, day, shift.id) in self.shift_vars
            ]
            if not variables:
                continue
            missed = self.model.NewBoolVar(f"day_off_missed_{employee.id}_d{day}")
            self.model.Add(sum(variables) <= missed)
            self.penalise(missed, self.config.rule_penalty(rule))

    def _min_rest(self, rule: ValidationRule) -> None:
        min_rest = float(rule.setting("hours", 12))
        short_pairs = []
        for current in self.shifts:
            for following in self.shifts:
                rest = rest_hours(current, following)
                if rest is not None and rest < min_rest:
                    short_pairs.append((current.id, following.id))
        if not short_pairs:
            return

        for employee in self._scoped(rule):
            for day in range(1, self.context.days_in_month):
                for current_id, following_id in short_pairs:
                    first = self.assigned(employee.id, day, current_id)
                    second = self.assigned(employee.id, day + 1, following_id)
                    if _is_constant(first) and _is_constant(second):
                        continue
                    slack = self.model.NewBoolVar(f"rest_{employee.id}_d{day}_{current_id}_{following_id}")
                    self.model.Add(first + second <= 1 + slack)
                    self.penalise(slack, self.config.rule_penalty(rule))

    def _required_roles(self, rule: ValidationRule) -> None:
        role = rule.config.get("role")
        if not role:
            return
        min_count = int(rule.setting("min_count", 1))
        members = [employee for employee in self.candidates if employee.role_name == role]
        fixed_members = Counter(
            (day, shift_id)
            for (employee_id, day), shift_id in self.fixed.items()
            if getattr(self.context.employee_lookup.get(employee_id), "role_name", None) == role
        )
        for day in self.days:
            for shift in self.shifts:
                variables = sum(
                    self.shift_vars[(employee.id, day, shift.id)]
                    for employee in members
                    if (employee.id, day, shift.id) in self.shift_vars
                )
                if _is_constant(variables):
                    continue
                count = variables + fixed_members.get((day, shift.id), 0)
                slack = self.model.NewIntVar(0, min_count, f"role_slack_{role}_d{day}_{shift.id}")
                self.model.Add(count + slack >= min_count)
                self.penalise(slack, self.config.rule_penalty(rule))

    # Solution

    def extract(self, solver: cp_model.CpSolver) -> list[ScheduleEntry]:
        assignments: list[ScheduleEntry] = []
        for day in self.days:
            for shift in self.shifts:
                for employee in self.candidates:
                    var = self.shift_vars.get((employee.id, day, shift.id))
                    if var is not None and solver.Value(var):
                        assignments.append(ScheduleEntry(employee_id=employee.id, day=day, shift_id=shift.id))
        return assignments


def constraint_schedule(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    config: OptimizerConfig | None = None,
    time_limit_seconds: float | None = None,
) -> list[ScheduleEntry]:
    """
    Assign the remaining (employee, working day) cells with CP-SAT.

    Every enabled rule is modelled with a slack variable penalised by its
    severity, so the model stays feasible whatever the staffing situation.
    Falls back to the greedy strategy when the solver returns no solution.
    """

    if config is None:
        config = OptimizerConfig()
    start = perf_counter()

    schedule_model = _ScheduleModel(context, entries, config)
    schedule_model.build_variables()
    if schedule_model.is_empty:
        logger.info("Constraint search has no free cells for %d-%02d", context.year, context.month)
        return list(entries)

    schedule_model.add_staffing()
    schedule_model.add_rules()
    schedule_model.add_soft_signals()

    model = schedule_model.model
    if schedule_model.objective_terms:
        model.Minimize(cp_model.LinearExpr.Sum(schedule_model.objective_terms))
    else:
        model.Minimize(0)

    solver = cp_model.CpSolver()
    if time_limit_seconds is None:
        time_limit_seconds = context.policy.constraint_time_limit_seconds
    solver.parameters.max_time_in_seconds = max(time_limit_seconds, 0.01)
    solver.parameters.num_workers = context.policy.constraint_num_workers

    status = solver.Solve(model)
    duration_ms = int((perf_counter() - start) * 1000)

    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        logger.warning(
            "Constraint search ended with status %s after %d ms, falling back to greedy",
            solver.StatusName(status),
            duration_ms,
        )
        return greedy_schedule(context, entries)

    logger.info(
        "Constraint search finished with status %s (objective %s) in %d ms",
        solver.StatusName(status),
        solver.ObjectiveValue(),
        duration_ms,
    )
    return list(entries) + schedule_model.extract(solver)
