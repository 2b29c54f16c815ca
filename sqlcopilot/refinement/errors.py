"""
Execution Error Classification

Maps a database error message onto the closed ``ErrorType`` taxonomy by
case-insensitive substring rules (first match wins) and attaches the
remediation hint used to prime the repair request.
"""

from sqlcopilot.models.optimization import ErrorAnalysis, ErrorType

_MISSING = ("not found", "doesn't exist", "does not exist")


def classify_error(error_message: str) -> ErrorType:
    """Classify an execution error message."""
    error = error_message.lower()

    if "column" in error and any(marker in error for marker in _MISSING):
        return ErrorType.COLUMN_NOT_FOUND
    if ("table" in error or "relation" in error) and any(marker in error for marker in _MISSING):
        return ErrorType.TABLE_NOT_FOUND
    if "syntax" in error or "near" in error:
        return ErrorType.SYNTAX_ERROR
    if "type" in error and "mismatch" in error:
        return ErrorType.TYPE_MISMATCH
    if "aggregate" in error or "group by" in error:
        return ErrorType.AGGREGATION_ERROR
    if "join" in error or "foreign key" in error:
        return ErrorType.JOIN_ERROR
    return ErrorType.UNKNOWN


def suggested_fix(error_type: ErrorType) -> str:
    """The remediation hint for an error type."""
    match error_type:
        case ErrorType.COLUMN_NOT_FOUND:
            return "Check the column name spelling and confirm the column exists in that table"
        case ErrorType.TABLE_NOT_FOUND:
            return "Check the table name spelling and confirm the table exists in the database"
        case ErrorType.SYNTAX_ERROR:
            return "Check the SQL syntax, especially keywords and punctuation"
        case ErrorType.TYPE_MISMATCH:
            return "Check data type conversions so compared values have the same type"
        case ErrorType.AGGREGATION_ERROR:
            return "Make sure every non-aggregated column is listed in GROUP BY"
        case ErrorType.JOIN_ERROR:
            return "Check the JOIN conditions: the join columns must exist and have matching types"
        case ErrorType.SYSTEM_ERROR:
            return "An internal error interrupted optimization; retry the request"
        case ErrorType.UNKNOWN:
            return "Review the SQL statement's syntax and logic carefully"


def analyze_error(error_message: str) -> ErrorAnalysis:
    error_type = classify_error(error_message)
    return ErrorAnalysis(
        error_type=error_type,
        error_message=error_message,
        suggested_fix=suggested_fix(error_type),
    )
