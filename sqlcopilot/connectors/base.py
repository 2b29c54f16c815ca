"""
Base Query Executor

Abstract interface for running generated SQL against a target database.
Execution failures are returned as data on ``ExecutionResult.error`` so
the feedback loop can classify and repair them; exceptions are reserved
for problems with the executor itself.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ExecutionResult(BaseModel):
    """Rows returned by a query, or the database's error message."""

    rows: list[dict[str, Any]] = Field(default_factory=list, description="Result rows")
    error: str | None = Field(None, description="Database error message, if execution failed")
    execution_time_ms: float = Field(default=0.0, description="Wall-clock execution time")

    @property
    def success(self) -> bool:
        return not self.error

    @property
    def columns(self) -> list[str]:
        return list(self.rows[0].keys()) if self.rows else []


class ExecutorError(Exception):
    """Raised when an executor cannot reach or configure a connection."""

    pass


class BaseQueryExecutor(ABC):
    """Runs SQL for a connection id."""

    @abstractmethod
    async def execute_query(self, connection_id: str, sql: str) -> ExecutionResult:
        """
        Execute SQL on the database behind ``connection_id``.

        Returns:
            ExecutionResult with rows, or with ``error`` set on failure
        """
        pass  # pragma: no cover - abstract method

    async def close(self) -> None:
        """Release pooled connections."""
        return None

    async def __aenter__(self) -> "BaseQueryExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
