"""
Refinement Module

Execute -> validate -> repair loop for generated SQL.
"""

from sqlcopilot.refinement.errors import analyze_error, classify_error, suggested_fix
from sqlcopilot.refinement.optimizer import FeedbackOptimizer, clean_sql
from sqlcopilot.refinement.validation import (
    ResultValidator,
    ValidationCues,
    check_ascending_order,
    check_descending_order,
    check_recent_time_order,
    check_type_consistency,
)

__all__ = [
    "FeedbackOptimizer",
    "ResultValidator",
    "ValidationCues",
    "analyze_error",
    "check_ascending_order",
    "check_descending_order",
    "check_recent_time_order",
    "check_type_consistency",
    "classify_error",
    "clean_sql",
    "suggested_fix",
]
