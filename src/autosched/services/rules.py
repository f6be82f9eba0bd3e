"""Validation rule representations and the bundled default rule set."""

from __future__ import annotations

import json
from enum import Enum
from functools import lru_cache
from importlib import resources
from typing import Any, Literal

from pydantic import BaseModel, Field


class RuleType(str, Enum):
    MAX_CONSECUTIVE_WORK_DAYS = "max_consecutive_work_days"
    MIN_EMPLOYEES_PER_SHIFT = "min_employees_per_shift"
    MAX_EMPLOYEES_PER_SHIFT = "max_employees_per_shift"
    MAX_HOURS_PER_WEEK = "max_hours_per_week"
    APPROVED_DAY_OFF_REQUESTS = "approved_day_off_requests"
    MIN_REST_BETWEEN_SHIFTS = "min_rest_between_shifts"
    REQUIRED_ROLES_PER_SHIFT = "required_roles_per_shift"
    MAX_SHIFTS_PER_WEEK = "max_shifts_per_week"
    MAX_HOURS_PER_MONTH = "max_hours_per_month"


Severity = Literal["error", "warning"]


class ValidationRule(BaseModel):
    """A configured rule.

    ``rule_type`` stays a plain string so rule sets written by newer versions
    still load; types this engine does not know are skipped at evaluation time.
    """

    id: int | None = None
    rule_type: str
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)
    enforcement_type: Severity = "warning"
    priority: int = 100
    applies_to_roles: list[str] = Field(default_factory=list)
    applies_to_employees: list[str] = Field(default_factory=list)
    description: str | None = None

    @property
    def known_type(self) -> RuleType | None:
        try:
            return RuleType(self.rule_type)
        except ValueError:
            return None

    def setting(self, key: str, default: Any) -> Any:
        # Falsy values (0, "", None) fall back to the default.
        return self.config.get(key) or default

    def applies_to(self, employee_id: str, role_name: str | None) -> bool:
        if self.applies_to_employees and employee_id not in self.applies_to_employees:
            return False
        if self.applies_to_roles and role_name not in self.applies_to_roles:
            return False
        return True


def order_rules(rules: list[ValidationRule]) -> list[ValidationRule]:
    """Enabled rules sorted by priority; ties keep their input order."""

    return sorted((rule for rule in rules if rule.enabled), key=lambda rule: rule.priority)


def find_rule(rules: list[ValidationRule], rule_type: RuleType) -> ValidationRule | None:
    for rule in order_rules(rules):
        if rule.rule_type == rule_type.value:
            return rule
    return None


def _load_rules_from_json() -> list[ValidationRule]:
    with resources.files("autosched.services.data").joinpath("default_rules.json").open(
        "r", encoding="utf-8"
    ) as handle:
        payload = json.load(handle)
    return [ValidationRule.model_validate(item) for item in payload["rules"]]


@lru_cache(maxsize=1)
def _default_rules() -> tuple[ValidationRule, ...]:
    return tuple(_load_rules_from_json())


def load_default_rules() -> list[ValidationRule]:
    """Return copies of the default rule set bundled with the package."""

    return [rule.model_copy(deep=True) for rule in _default_rules()]
