import logging

import pytest
from pydantic import ValidationError

from autosched.core import logging as autosched_logging
from autosched.core.config import Settings, get_settings
from autosched.services.domain import SchedulingPolicy

from .factories import build_context, build_employee


def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.day_off_shift_id == "Выходной"
    assert settings.working_weekdays == [0, 1, 2, 3, 4, 5]
    assert settings.target_monthly_shifts == 20
    assert settings.max_consecutive_days == 5
    assert settings.default_algorithm == "hybrid"


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("AUTOSCHED_TARGET_MONTHLY_SHIFTS", "18")
    monkeypatch.setenv("AUTOSCHED_WORKING_WEEKDAYS", "[0, 1, 2, 3, 4]")
    monkeypatch.setenv("AUTOSCHED_DEFAULT_ALGORITHM", "greedy")

    settings = get_settings()

    assert settings.target_monthly_shifts == 18
    assert settings.working_weekdays == [0, 1, 2, 3, 4]
    assert settings.default_algorithm == "greedy"
    assert get_settings() is settings


def test_invalid_weekday_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(working_weekdays=[0, 7])


def test_policy_from_settings() -> None:
    settings = Settings(working_weekdays=[0, 1, 2, 3, 4, 5, 6], target_monthly_shifts_by_role={"chef": 16})

    policy = SchedulingPolicy.from_settings(settings)
    context = build_context(policy=policy)

    assert len(context.working_days()) == 31
    assert policy.target_for(build_employee()) == 20
    assert policy.target_for(build_employee(role_name="chef")) == 16
    assert policy.target_for(build_employee(role_name="chef", target_monthly_shifts=12)) == 12


def test_context_rejects_invalid_month() -> None:
    with pytest.raises(ValueError):
        build_context(month=0)


def test_configure_logging_uses_settings_level(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setenv("AUTOSCHED_LOG_LEVEL", "DEBUG")

    autosched_logging.configure_logging()
    autosched_logging.configure_logging("WARNING")

    assert [call["level"] for call in calls] == ["DEBUG", "WARNING"]
    assert calls[0]["format"] == autosched_logging.LOG_FORMAT
