"""
Schema Models

Pydantic models for trained table metadata and the retrieval units
(schema embeddings) stored in the vector store.

Field names are snake_case. Validation also accepts the PascalCase keys
used by previously stored schema JSON (``TableName``, ``IsEnable``, ...).
"""

from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


class ColumnInfo(BaseModel):
    """A column of a trained table."""

    column_name: str = Field(
        ..., validation_alias=AliasChoices("column_name", "ColumnName"), description="Column name"
    )
    data_type: str = Field(
        default="",
        validation_alias=AliasChoices("data_type", "DataType"),
        description="Declared data type",
    )
    is_nullable: bool = Field(
        default=True, validation_alias=AliasChoices("is_nullable", "IsNullable")
    )
    is_primary_key: bool = Field(
        default=False, validation_alias=AliasChoices("is_primary_key", "IsPrimaryKey")
    )
    description: str | None = Field(
        None, validation_alias=AliasChoices("description", "Description")
    )
    is_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("is_enabled", "IsEnable", "IsEnabled"),
        description="Disabled columns are excluded from retrieval text",
    )

    model_config = ConfigDict(populate_by_name=True)


class ForeignKeyInfo(BaseModel):
    """A foreign key declared on a table."""

    foreign_key_name: str = Field(
        default="",
        validation_alias=AliasChoices("foreign_key_name", "ForeignKeyName"),
        description="Constraint name",
    )
    column_name: str = Field(
        ..., validation_alias=AliasChoices("column_name", "ColumnName"), description="Source column"
    )
    referenced_table_name: str = Field(
        ...,
        validation_alias=AliasChoices("referenced_table_name", "ReferencedTableName"),
    )
    referenced_column_name: str = Field(
        default="",
        validation_alias=AliasChoices("referenced_column_name", "ReferencedColumnName"),
    )
    relationship: str | None = Field(
        None,
        validation_alias=AliasChoices("relationship", "Relationship"),
        description="Human-readable relationship sentence",
    )

    model_config = ConfigDict(populate_by_name=True)


class TableInfo(BaseModel):
    """
    A trained table.

    Identity is the table name compared case-insensitively within a
    connection.
    """

    table_name: str = Field(
        ..., validation_alias=AliasChoices("table_name", "TableName"), description="Table name"
    )
    description: str | None = Field(
        None, validation_alias=AliasChoices("description", "Description")
    )
    columns: list[ColumnInfo] = Field(
        default_factory=list, validation_alias=AliasChoices("columns", "Columns")
    )
    foreign_keys: list[ForeignKeyInfo] = Field(
        default_factory=list, validation_alias=AliasChoices("foreign_keys", "ForeignKeys")
    )

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key(self) -> str:
        """Case-insensitive identity of the table."""
        return self.table_name.lower()

    def enabled_columns(self) -> list[ColumnInfo]:
        return [column for column in self.columns if column.is_enabled]

    def without_disabled_columns(self) -> "TableInfo":
        """Return a copy that only carries enabled columns."""
        return self.model_copy(update={"columns": self.enabled_columns()}, deep=True)

    def references(self, table_name: str) -> bool:
        """Whether any foreign key of this table points at ``table_name``."""
        target = table_name.lower()
        return any(fk.referenced_table_name.lower() == target for fk in self.foreign_keys)


TableList = TypeAdapter(list[TableInfo])


def find_table(tables: list[TableInfo], table_name: str) -> TableInfo | None:
    """Look a table up by case-insensitive name."""
    target = table_name.lower()
    for table in tables:
        if table.key == target:
            return table
    return None


class EmbeddingType(StrEnum):
    """Granularity of a retrieval unit."""

    TABLE = "Table"
    COLUMN = "Column"
    RELATION = "Relation"


class SchemaEmbedding(BaseModel):
    """
    One retrievable unit stored in the vector store.

    The JSON form of this record is the text saved with the vector, so a
    search hit can be parsed back into a table identity.
    """

    connection_id: str = Field(
        ..., validation_alias=AliasChoices("connection_id", "ConnectionId")
    )
    table_name: str = Field(..., validation_alias=AliasChoices("table_name", "TableName"))
    column_name: str | None = Field(
        None, validation_alias=AliasChoices("column_name", "ColumnName")
    )
    description: str = Field(
        ..., validation_alias=AliasChoices("description", "Description")
    )
    embedding_type: EmbeddingType = Field(
        default=EmbeddingType.TABLE,
        validation_alias=AliasChoices("embedding_type", "EmbeddingType"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @staticmethod
    def item_id(connection_id: str, table_name: str) -> str:
        """Vector store id of a table-level embedding."""
        return f"{connection_id}_{table_name}"
