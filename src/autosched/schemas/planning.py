from typing import Literal

from pydantic import BaseModel, Field

Algorithm = Literal["greedy", "constraint", "hybrid"]
OptimizationType = Literal["coverage", "balance", "preferences"]


class GenerationOptions(BaseModel):
    """Knobs a caller may pass to a generation run."""

    algorithm: Algorithm | None = None  # None selects the configured default
    optimization_focus: OptimizationType | None = None
    max_iterations: int | None = Field(default=None, gt=0)
    timeout_ms: int | None = Field(default=None, gt=0)
    generation_id: str | None = None


class OptimizationConstraints(BaseModel):
    max_iterations: int | None = Field(default=None, gt=0)
    timeout_ms: int | None = Field(default=None, gt=0)
