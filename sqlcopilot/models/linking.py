"""Schema linking result models."""

from enum import StrEnum

from pydantic import BaseModel, Field

from sqlcopilot.models.schema import TableInfo


class MatchType(StrEnum):
    """How a table was selected."""

    DIRECT = "Direct Semantic Match"
    OUTBOUND_FOREIGN_KEY = "Outbound Foreign Key"
    INBOUND_FOREIGN_KEY = "Inbound Foreign Key"
    JUNCTION_TABLE = "Junction Table"
    FALLBACK = "Full Schema Fallback"


class SchemaMatchDetail(BaseModel):
    """Why a table ended up in the linked schema."""

    table_name: str
    match_type: MatchType
    relevance_score: float = Field(
        default=0.0, description="Best vector score seen (0 if expanded)"
    )
    matched_text: str = Field(default="", description="Question the table was matched against")
    match_reason: str = Field(default="", description="Human-readable explanation")


class SchemaLinkingResult(BaseModel):
    """Outcome of linking a question to the trained schema."""

    success: bool
    error_message: str | None = None
    tables: list[TableInfo] = Field(default_factory=list)
    schema_text: str = Field(default="", description="Indented JSON of the returned tables")
    match_details: list[SchemaMatchDetail] = Field(default_factory=list)
    used_fallback: bool = Field(
        default=False, description="True when the whole schema was returned"
    )
    searched_thresholds: list[float] = Field(
        default_factory=list, description="Thresholds queried during the descent, in order"
    )

    @property
    def table_names(self) -> list[str]:
        return [table.table_name for table in self.tables]
