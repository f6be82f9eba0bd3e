from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="AUTOSCHED_", case_sensitive=False)

    environment: Literal["development", "staging", "production"] = "development"
    project_name: str = "AutoSched"
    version: str = "0.1.0"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    day_off_shift_id: str = "Выходной"
    # Python weekday numbers (Monday = 0). Sunday is not a working day by default.
    working_weekdays: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5])

    target_monthly_shifts: int = 20
    target_monthly_shifts_by_role: dict[str, int] = Field(default_factory=dict)
    max_consecutive_days: int = 5
    consecutive_penalty_start: int = 4

    default_algorithm: Literal["greedy", "constraint", "hybrid"] = "hybrid"
    local_search_max_iterations: int = 100
    constraint_time_limit_seconds: float = 10.0
    constraint_num_workers: int = 8

    @field_validator("working_weekdays")
    @classmethod
    def validate_weekdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("working_weekdays entries must be between 0 (Monday) and 6 (Sunday)")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
