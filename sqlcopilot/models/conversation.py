"""Conversation context models."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class FollowupQueryType(StrEnum):
    """How a new question relates to the previous one."""

    NEW_QUERY = "new_query"
    FILTER_REFINEMENT = "filter_refinement"
    AGGREGATION_CHANGE = "aggregation_change"
    COLUMN_EXPANSION = "column_expansion"
    SORTING_CHANGE = "sorting_change"
    PRONOUN_REFERENCE = "pronoun_reference"
    COMPARISON = "comparison"


class ConversationTurn(BaseModel):
    """One question/answer exchange. Immutable once recorded."""

    user_message: str
    assistant_message: str = ""
    generated_sql: str = ""
    result_summary: str = ""
    extracted_entities: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True)


class ConversationContext(BaseModel):
    """Per-connection multi-turn state."""

    connection_id: str
    history: list[ConversationTurn] = Field(default_factory=list)
    referenced_entities: set[str] = Field(default_factory=set)
    active_filters: dict[str, str] = Field(default_factory=dict)

    @property
    def last_turn(self) -> ConversationTurn | None:
        return self.history[-1] if self.history else None
