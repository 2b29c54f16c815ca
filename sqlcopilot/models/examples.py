"""
Question/SQL example models.

Solved questions kept per connection and retrieved as few-shot examples
for SQL generation.
"""

from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, Field


class ExampleSource(StrEnum):
    """Where an example came from."""

    MANUAL = "manual"
    CORRECTION = "correction"


class QAExample(BaseModel):
    """A question paired with the SQL that answers it."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    connection_id: str
    question: str
    sql_query: str
    description: str | None = None
    category: str | None = None
    is_enabled: bool = True
    source: ExampleSource = ExampleSource.MANUAL
    original_incorrect_sql: str | None = Field(
        None, description="Draft SQL that a correction replaced"
    )
    usage_count: int = Field(default=0, ge=0)
    last_used_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def item_id(example_id: str) -> str:
        """Vector store id of an example."""
        return f"qa_example_{example_id}"
