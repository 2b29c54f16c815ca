"""
Feedback Optimization Models

Records produced by the execute -> validate -> repair loop. One
``OptimizationResult`` per user turn, one ``OptimizationStep`` per
iteration.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ErrorType(StrEnum):
    """Closed taxonomy of execution errors."""

    COLUMN_NOT_FOUND = "column_not_found"
    TABLE_NOT_FOUND = "table_not_found"
    SYNTAX_ERROR = "syntax_error"
    TYPE_MISMATCH = "type_mismatch"
    AGGREGATION_ERROR = "aggregation_error"
    JOIN_ERROR = "join_error"
    UNKNOWN = "unknown"
    SYSTEM_ERROR = "system_error"


class StepType(StrEnum):
    """What an iteration ended up doing."""

    VALIDATED = "validated"
    RESULT_REFINEMENT = "result_refinement"
    ERROR_REPAIR = "error_repair"
    ABORTED = "aborted"


class ExecutionOutcome(BaseModel):
    """How running the iteration's input SQL went."""

    success: bool
    error_message: str | None = None
    row_count: int = 0
    duration_ms: float = 0.0


class ValidationResult(BaseModel):
    """Sanity check of a successful result set."""

    is_valid: bool = True
    issues: list[str] = Field(default_factory=list)


class ErrorAnalysis(BaseModel):
    """Classified execution error with its remediation hint."""

    error_type: ErrorType
    error_message: str
    suggested_fix: str

    def as_repair_hint(self) -> str:
        return f"{self.error_type}: {self.error_message}\nSuggestion: {self.suggested_fix}"


class OptimizationStep(BaseModel):
    """A single iteration of the feedback loop."""

    iteration: int = Field(..., ge=1)
    input_sql: str
    optimized_sql: str | None = None
    step_type: StepType | None = None
    execution: ExecutionOutcome | None = None
    validation: ValidationResult | None = None
    error_analysis: ErrorAnalysis | None = None
    feedback: str | None = None


class OptimizationResult(BaseModel):
    """Outcome of a whole optimization run."""

    original_sql: str
    final_sql: str | None = None
    success: bool = False
    steps: list[OptimizationStep] = Field(default_factory=list)
    error_message: str | None = None
    rows: list[dict[str, Any]] = Field(
        default_factory=list, description="Rows of the accepted execution"
    )
