"""
Result Validation

Heuristic sanity checks on a successful result set, driven by cues in the
user's question:

- size: "top N" questions return at most ``top_result_limit`` rows, "all"
  questions at least one, anything else between 1 and ``max_result_rows``
- type consistency: every column keeps the first row's value type
  (numeric values may widen between int, float and Decimal)
- business order: "highest" results are non-increasing, "lowest" results
  non-decreasing, "recent" results newest first
- null handling: "not null" questions return no null cells
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from sqlcopilot.config import OptimizerSettings
from sqlcopilot.models.optimization import ValidationResult
from sqlcopilot.utils.keywords import KeywordSet

Row = dict[str, Any]


@dataclass(frozen=True)
class ValidationCues:
    """Question cues that switch validation rules on."""

    top: KeywordSet = KeywordSet(("top", "limit", "前", "最多"))
    all: KeywordSet = KeywordSet(("all", "所有", "全部"))
    highest: KeywordSet = KeywordSet(("highest", "max", "最高", "最大"))
    lowest: KeywordSet = KeywordSet(("lowest", "min", "最低", "最小"))
    recent: KeywordSet = KeywordSet(("recent", "最近"))
    not_null: KeywordSet = KeywordSet(("not null", "non-null", "非空"))


DEFAULT_CUES = ValidationCues()


def is_numeric(value: Any) -> bool:
    return isinstance(value, int | float | Decimal) and not isinstance(value, bool)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return None


def _columns_where(rows: list[Row], predicate: Callable[[Any], bool]) -> list[str]:
    return [column for column, value in rows[0].items() if predicate(value)]


def _is_monotonic(values: list[Any], descending: bool) -> bool:
    pairs = zip(values, values[1:])
    if descending:
        return all(current >= following for current, following in pairs)
    return all(current <= following for current, following in pairs)


def check_descending_order(rows: list[Row]) -> bool:
    """Every numeric column is non-increasing across rows (nulls skipped)."""
    return _check_numeric_order(rows, descending=True)


def check_ascending_order(rows: list[Row]) -> bool:
    """Every numeric column is non-decreasing across rows (nulls skipped)."""
    return _check_numeric_order(rows, descending=False)


def _check_numeric_order(rows: list[Row], descending: bool) -> bool:
    if len(rows) <= 1:
        return True
    for column in _columns_where(rows, is_numeric):
        values = [row[column] for row in rows if is_numeric(row.get(column))]
        if not _is_monotonic(values, descending):
            return False
    return True


def check_recent_time_order(rows: list[Row]) -> bool:
    """Every date/datetime column is newest first."""
    if len(rows) <= 1:
        return True
    for column in _columns_where(rows, lambda value: _as_datetime(value) is not None):
        values = [_as_datetime(row.get(column)) for row in rows]
        if not _is_monotonic([value for value in values if value is not None], descending=True):
            return False
    return True


def check_type_consistency(rows: list[Row]) -> bool:
    if len(rows) <= 1:
        return True
    first = rows[0]
    for row in rows[1:]:
        for column, expected in first.items():
            actual = row.get(column)
            if expected is None or actual is None or type(expected) is type(actual):
                continue
            if is_numeric(expected) and is_numeric(actual):
                continue
            return False
    return True


class ResultValidator:
    """
    Validates a result set against the question that produced it.

    Usage:
        validator = ResultValidator()
        validation = validator.validate(rows, "top 5 products by highest revenue")
        if not validation.is_valid:
            feedback = validator.build_feedback(validation, question)
    """

    def __init__(
        self,
        config: OptimizerSettings | None = None,
        cues: ValidationCues = DEFAULT_CUES,
    ):
        self.config = config or OptimizerSettings()
        self.cues = cues

    def validate(self, rows: list[Row], question: str) -> ValidationResult:
        issues: list[str] = []

        if not self.check_result_size(rows, question):
            issues.append(f"Result size ({len(rows)}) does not look plausible for the question")
        if rows and not check_type_consistency(rows):
            issues.append("Column values have inconsistent data types across rows")
        if not self.check_business_order(rows, question):
            issues.append("Row order does not match the ordering the question asks for")
        if not self.check_null_handling(rows, question):
            issues.append("Result contains null values although non-null values were requested")

        return ValidationResult(is_valid=not issues, issues=issues)

    def check_result_size(self, rows: list[Row], question: str) -> bool:
        size = len(rows)
        if self.cues.top.matches(question):
            return size <= self.config.top_result_limit
        if self.cues.all.matches(question):
            return size >= 1
        return 0 < size <= self.config.max_result_rows

    def check_business_order(self, rows: list[Row], question: str) -> bool:
        if self.cues.highest.matches(question):
            return check_descending_order(rows)
        if self.cues.lowest.matches(question):
            return check_ascending_order(rows)
        if self.cues.recent.matches(question):
            return check_recent_time_order(rows)
        return True

    def check_null_handling(self, rows: list[Row], question: str) -> bool:
        if not self.cues.not_null.matches(question):
            return True
        return all(value is not None for row in rows for value in row.values())

    @staticmethod
    def build_feedback(validation: ValidationResult, question: str) -> str:
        """Refinement instruction listing the validation issues."""
        lines = ["Validating the query result found these issues:"]
        lines.extend(f"- {issue}" for issue in validation.issues)
        lines.append("")
        lines.append(f"Original question: {question}")
        lines.append("Adjust the SQL so the result matches what the user asked for.")
        return "\n".join(lines)
