"""
Schema Training

Turns trained tables into table-level ``SchemaEmbedding`` records in the
vector store and keeps the stored schema in sync. Retraining a table
always deletes its previous embedding first.
"""

import logging

from sqlcopilot.knowledge.schema_store import BaseSchemaStore
from sqlcopilot.knowledge.vectors import BaseVectorStore
from sqlcopilot.models.schema import EmbeddingType, SchemaEmbedding, TableInfo

logger = logging.getLogger(__name__)


def describe_table(table: TableInfo) -> str:
    """Retrieval text for a table: name, description, enabled columns and foreign keys."""
    lines = [
        f"Table: {table.table_name}",
        f"Description: {table.description or 'No description'}",
        "Columns:",
    ]
    for column in table.enabled_columns():
        lines.append(
            f"  - {column.column_name} ({column.data_type or 'unknown'})"
            f"{', primary key' if column.is_primary_key else ''}"
            f"{', nullable' if column.is_nullable else ', not null'}"
            f": {column.description or 'No description'}"
        )
    if table.foreign_keys:
        lines.append("Foreign keys:")
        for fk in table.foreign_keys:
            relationship = f" ({fk.relationship})" if fk.relationship else ""
            lines.append(
                f"  - {fk.column_name} -> "
                f"{fk.referenced_table_name}.{fk.referenced_column_name}{relationship}"
            )
    return "\n".join(lines)


class SchemaTrainer:
    """
    Creates, replaces and deletes schema embeddings for a connection.

    Usage:
        trainer = SchemaTrainer(vector_store, schema_store)
        await trainer.train_tables("shop", tables)
        await trainer.remove_tables("shop", ["audit_log"])
        await trainer.reset_connection("shop")
    """

    def __init__(self, vector_store: BaseVectorStore, schema_store: BaseSchemaStore):
        self.vector_store = vector_store
        self.schema_store = schema_store

    async def train_tables(
        self,
        connection_id: str,
        tables: list[TableInfo],
        table_names: list[str] | None = None,
    ) -> int:
        """
        Train (or retrain) tables for a connection.

        Args:
            connection_id: Connection the tables belong to
            tables: Table metadata to train from
            table_names: Optional subset to train (case-insensitive); all when None

        Returns:
            Number of tables trained

        Raises:
            VectorStoreError: If an embedding cannot be written
            SchemaStoreError: If the stored schema cannot be updated
        """
        selected = tables
        if table_names is not None:
            wanted = {name.lower() for name in table_names}
            selected = [table for table in tables if table.key in wanted]
            missing = wanted - {table.key for table in selected}
            if missing:
                logger.warning(
                    f"Ignoring unknown tables for {connection_id}: {sorted(missing)}",
                    extra={"connection_id": connection_id},
                )

        if not selected:
            logger.warning(f"No tables to train for {connection_id}")
            return 0

        for table in selected:
            item_id = SchemaEmbedding.item_id(connection_id, table.table_name)
            await self.vector_store.delete(connection_id, [item_id])

            embedding = SchemaEmbedding(
                connection_id=connection_id,
                table_name=table.table_name,
                description=describe_table(table),
                embedding_type=EmbeddingType.TABLE,
            )
            await self.vector_store.save(connection_id, item_id, embedding.model_dump_json())
            logger.debug(f"Trained {item_id}")

        stored = await self.schema_store.get_by_connection_id(connection_id) or []
        replaced = {table.key for table in selected}
        merged = [table for table in stored if table.key not in replaced] + list(selected)
        await self.schema_store.upsert(connection_id, merged)

        logger.info(
            f"Trained {len(selected)} tables for {connection_id}",
            extra={"connection_id": connection_id, "tables": [t.table_name for t in selected]},
        )
        return len(selected)

    async def remove_tables(self, connection_id: str, table_names: list[str]) -> int:
        """Delete embeddings for tables and drop them from the stored schema."""
        stored = await self.schema_store.get_by_connection_id(connection_id) or []
        targets = {name.lower() for name in table_names}
        removed = [table for table in stored if table.key in targets]

        names = {*table_names, *(table.table_name for table in removed)}
        item_ids = [SchemaEmbedding.item_id(connection_id, name) for name in sorted(names)]
        await self.vector_store.delete(connection_id, item_ids)

        if removed:
            remaining = [table for table in stored if table.key not in targets]
            await self.schema_store.upsert(connection_id, remaining)

        logger.info(f"Removed {len(removed)} tables from {connection_id}")
        return len(removed)

    async def reset_connection(self, connection_id: str) -> None:
        """Delete every embedding and the stored schema of a connection."""
        await self.vector_store.delete_collection(connection_id)
        await self.schema_store.delete(connection_id)
        logger.info(f"Reset training data for {connection_id}")
