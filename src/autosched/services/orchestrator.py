"""Entry points tying data loading, generation, validation and optimization together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Mapping, Sequence

from autosched.core.config import Settings, get_settings
from autosched.schemas.planning import GenerationOptions, OptimizationConstraints
from autosched.services.data_source import ScheduleDataSource
from autosched.services.domain import (
    RuleViolation,
    ScheduleChange,
    ScheduleEntry,
    ScheduleMetrics,
    SchedulingContext,
    SchedulingPolicy,
)
from autosched.services.evaluator import evaluate_rules, split_by_severity, violation_counts
from autosched.services.local_search import (
    FOCUS_AREAS,
    SearchOutcome,
    UnknownOptimizationError,
    focus_score,
    focused_search,
    local_search,
    schedule_changes,
)
from autosched.services.metrics import calculate_metrics
from autosched.services.scheduler import apply_hard_constraints, greedy_schedule
from autosched.services.scheduler_optimizer import constraint_schedule

logger = logging.getLogger(__name__)


@dataclass
class OptimizationResult:
    type: str
    before: ScheduleMetrics
    after: ScheduleMetrics
    score: float
    changes: list[ScheduleChange] = field(default_factory=list)


@dataclass
class ScheduleResult:
    success: bool
    schedule: list[ScheduleEntry]
    violations: list[RuleViolation]
    metrics: ScheduleMetrics
    algorithm: str
    optimizations: list[OptimizationResult] = field(default_factory=list)
    duration_ms: int = 0
    generation_id: str | None = None

    @property
    def errors(self) -> list[RuleViolation]:
        return split_by_severity(self.violations)[0]

    @property
    def warnings(self) -> list[RuleViolation]:
        return split_by_severity(self.violations)[1]


@dataclass
class ValidationResult:
    is_valid: bool
    violations: list[RuleViolation]
    metrics: ScheduleMetrics

    @property
    def errors(self) -> list[RuleViolation]:
        return split_by_severity(self.violations)[0]

    @property
    def warnings(self) -> list[RuleViolation]:
        return split_by_severity(self.violations)[1]

    @property
    def error_count(self) -> int:
        return len(self.errors)


@dataclass
class AppliedOptimization:
    improvements: OptimizationResult
    schedule: list[ScheduleEntry]
    new_violations: list[RuleViolation]
    metrics: ScheduleMetrics


def _remaining_ms(started_at: float, timeout_ms: int | None) -> int | None:
    if timeout_ms is None:
        return None
    return max(0, timeout_ms - int((perf_counter() - started_at) * 1000))


def run_strategy(
    context: SchedulingContext,
    entries: Sequence[ScheduleEntry],
    algorithm: str,
    max_iterations: int | None = None,
    timeout_ms: int | None = None,
) -> list[ScheduleEntry]:
    """Fill the month with the chosen strategy, starting from the pinned ``entries``."""

    if algorithm == "greedy":
        return greedy_schedule(context, entries)
    if algorithm == "constraint":
        time_limit = context.policy.constraint_time_limit_seconds
        if timeout_ms is not None:
            time_limit = min(time_limit, timeout_ms / 1000)
        return constraint_schedule(context, entries, time_limit_seconds=time_limit)
    if algorithm == "hybrid":
        started_at = perf_counter()
        initial = greedy_schedule(context, entries)
        return local_search(
            context,
            initial,
            max_iterations=max_iterations,
            timeout_ms=_remaining_ms(started_at, timeout_ms),
        ).entries
    raise ValueError(f"Unknown scheduling algorithm: {algorithm!r}")


def _optimization_result(
    context: SchedulingContext,
    focus: str,
    before: Sequence[ScheduleEntry],
    outcome: SearchOutcome,
) -> OptimizationResult:
    return OptimizationResult(
        type=focus,
        before=calculate_metrics(context, before),
        after=calculate_metrics(context, outcome.entries),
        score=focus_score(context, outcome.entries, focus) - focus_score(context, before, focus),
        changes=schedule_changes(before, outcome.entries),
    )


def build_schedule(
    context: SchedulingContext,
    algorithm: str,
    options: GenerationOptions | None = None,
) -> ScheduleResult:
    """Generate a month schedule for an already loaded ``context``."""

    options = options or GenerationOptions()
    started_at = perf_counter()

    pinned = apply_hard_constraints(context, [], context.approved_day_offs)
    entries = run_strategy(
        context,
        pinned,
        algorithm,
        max_iterations=options.max_iterations,
        timeout_ms=options.timeout_ms,
    )

    optimizations: list[OptimizationResult] = []
    remaining = _remaining_ms(started_at, options.timeout_ms)
    if options.optimization_focus:
        outcome = focused_search(
            context,
            entries,
            options.optimization_focus,
            max_iterations=options.max_iterations,
            timeout_ms=remaining,
        )
        optimizations.append(_optimization_result(context, options.optimization_focus, entries, outcome))
    else:
        outcome = local_search(context, entries, max_iterations=options.max_iterations, timeout_ms=remaining)
    entries = outcome.entries

    violations = evaluate_rules(context, entries)
    metrics = calculate_metrics(context, entries, violations)
    duration_ms = int((perf_counter() - started_at) * 1000)

    logger.info(
        "Generated %d-%02d with %s in %d ms: %d shift(s), %d error(s), %d warning(s)",
        context.year,
        context.month,
        algorithm,
        duration_ms,
        metrics.total_shifts,
        metrics.error_count,
        metrics.warning_count,
    )
    if violations:
        logger.debug("Violations by rule type: %s", violation_counts(violations))

    return ScheduleResult(
        success=metrics.error_count == 0,
        schedule=entries,
        violations=violations,
        metrics=metrics,
        algorithm=algorithm,
        optimizations=optimizations,
        duration_ms=duration_ms,
        generation_id=options.generation_id,
    )


def validate_entries(context: SchedulingContext, entries: Sequence[ScheduleEntry]) -> ValidationResult:
    violations = evaluate_rules(context, entries)
    metrics = calculate_metrics(context, entries, violations)
    return ValidationResult(is_valid=metrics.error_count == 0, violations=violations, metrics=metrics)


class AutoScheduler:
    """Async facade over the scheduling engine.

    All persistence goes through ``data_source``; results are returned, never
    stored. Callers serialize runs for the same month.
    """

    def __init__(self, data_source: ScheduleDataSource, settings: Settings | None = None):
        self.data_source = data_source
        self.settings = settings or get_settings()
        self.policy = SchedulingPolicy.from_settings(self.settings)

    async def load_context(self, month: int, year: int) -> SchedulingContext:
        # Repeats the context check so bad input fails before any data-source call.
        if not 1 <= month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {month}")
        employees = await self.data_source.load_employees()
        shifts = await self.data_source.load_shifts()
        rules = await self.data_source.load_rules()
        day_offs = await self.data_source.load_approved_day_offs(month, year)
        return SchedulingContext(
            month=month,
            year=year,
            employees=employees,
            shifts=shifts,
            rules=rules,
            approved_day_offs=day_offs,
            policy=self.policy,
        )

    async def generate_schedule(
        self,
        month: int,
        year: int,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> ScheduleResult:
        if options is None:
            options = GenerationOptions()
        elif not isinstance(options, GenerationOptions):
            options = GenerationOptions.model_validate(options)

        context = await self.load_context(month, year)
        algorithm = options.algorithm or self.settings.default_algorithm
        return build_schedule(context, algorithm, options)

    async def validate_schedule(self, month: int, year: int) -> ValidationResult:
        context = await self.load_context(month, year)
        entries = await self.data_source.load_schedule(month, year)
        result = validate_entries(context, entries)
        logger.info(
            "Validated %d-%02d: %d error(s), %d warning(s)",
            year,
            month,
            result.error_count,
            len(result.warnings),
        )
        return result

    async def suggest_improvements(
        self,
        month: int,
        year: int,
        focus_areas: Sequence[str] | None = None,
    ) -> list[OptimizationResult]:
        """Run each focus search on a copy of the stored schedule; nothing is applied."""

        context = await self.load_context(month, year)
        entries = await self.data_source.load_schedule(month, year)

        suggestions: list[OptimizationResult] = []
        for focus in focus_areas or FOCUS_AREAS:
            if focus not in FOCUS_AREAS:
                logger.warning("Unknown focus area %r, skipping", focus)
                continue
            outcome = focused_search(context, entries, focus)
            if not outcome.improved:
                logger.debug("No %s improvement found for %d-%02d", focus, year, month)
                continue
            suggestions.append(_optimization_result(context, focus, entries, outcome))
        return suggestions

    async def apply_optimization(
        self,
        month: int,
        year: int,
        optimization_type: str,
        constraints: OptimizationConstraints | Mapping[str, Any] | None = None,
    ) -> AppliedOptimization:
        if optimization_type not in FOCUS_AREAS:
            raise UnknownOptimizationError(optimization_type)
        if constraints is None:
            constraints = OptimizationConstraints()
        elif not isinstance(constraints, OptimizationConstraints):
            constraints = OptimizationConstraints.model_validate(constraints)

        context = await self.load_context(month, year)
        entries = await self.data_source.load_schedule(month, year)
        outcome = focused_search(
            context,
            entries,
            optimization_type,
            max_iterations=constraints.max_iterations,
            timeout_ms=constraints.timeout_ms,
        )
        violations = evaluate_rules(context, outcome.entries)
        logger.info(
            "Applied %s optimization to %d-%02d: %d move(s) accepted",
            optimization_type,
            year,
            month,
            outcome.accepted_moves,
        )
        return AppliedOptimization(
            improvements=_optimization_result(context, optimization_type, entries, outcome),
            schedule=outcome.entries,
            new_violations=violations,
            metrics=calculate_metrics(context, outcome.entries, violations),
        )
