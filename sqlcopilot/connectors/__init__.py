"""
Query Executors

Run generated SQL against target databases.
"""

from sqlcopilot.connectors.base import BaseQueryExecutor, ExecutionResult, ExecutorError
from sqlcopilot.connectors.postgres import PostgresQueryExecutor

__all__ = [
    "BaseQueryExecutor",
    "ExecutionResult",
    "ExecutorError",
    "PostgresQueryExecutor",
]
