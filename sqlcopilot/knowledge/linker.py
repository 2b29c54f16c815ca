"""
Schema Linker

Narrows a connection's trained schema to the tables a question needs:

1. Dynamic-threshold vector search. Start at ``relevance_threshold`` and
   step down by ``threshold_step`` until at least ``min_tables_required``
   tables resolve or ``threshold_floor`` is reached.
2. Foreign-key expansion of the matched tables (outbound references,
   inbound references, then junction tables), capped at
   ``max_related_tables`` additions.
3. Fallback to the whole schema when nothing matched at any threshold.
"""

import logging

from pydantic import ValidationError

from sqlcopilot.config import LinkingSettings
from sqlcopilot.knowledge.graph import SchemaGraph, SchemaGraphBuilder
from sqlcopilot.knowledge.schema_store import BaseSchemaStore, SchemaStoreError
from sqlcopilot.knowledge.vectors import BaseVectorStore, VectorHit, VectorStoreError
from sqlcopilot.models.linking import MatchType, SchemaLinkingResult, SchemaMatchDetail
from sqlcopilot.models.schema import (
    EmbeddingType,
    SchemaEmbedding,
    TableInfo,
    TableList,
    find_table,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RELATED_TABLES = 10


def _expand_related(
    source: list[TableInfo],
    all_tables: list[TableInfo],
    max_related: int,
) -> list[tuple[TableInfo, MatchType]]:
    included = {table.key for table in source}
    added: list[tuple[TableInfo, MatchType]] = []

    def add(table: TableInfo, match_type: MatchType) -> None:
        included.add(table.key)
        added.append((table, match_type))

    def full() -> bool:
        return len(added) >= max_related

    # Outbound: tables the matched tables point at
    for table in source:
        for fk in table.foreign_keys:
            if full():
                break
            target = find_table(all_tables, fk.referenced_table_name)
            if target is not None and target.key not in included:
                add(target, MatchType.OUTBOUND_FOREIGN_KEY)

    # Inbound: tables pointing at the matched tables
    for table in source:
        for candidate in all_tables:
            if full():
                break
            if candidate.key not in included and candidate.references(table.table_name):
                add(candidate, MatchType.INBOUND_FOREIGN_KEY)

    # Junction: bridges between two or more tables already selected
    for candidate in all_tables:
        if full():
            break
        if candidate.key in included:
            continue
        referenced = {fk.referenced_table_name.lower() for fk in candidate.foreign_keys}
        if len(referenced & included) >= 2:
            add(candidate, MatchType.JUNCTION_TABLE)

    return added


def infer_related_tables(
    source: list[TableInfo],
    all_tables: list[TableInfo],
    max_related: int = DEFAULT_MAX_RELATED_TABLES,
) -> list[TableInfo]:
    """
    Expand ``source`` along foreign keys.

    Returns the source tables followed by at most ``max_related`` related
    tables, in pass order (outbound, inbound, junction) and schema order
    within a pass.
    """
    return list(source) + [table for table, _ in _expand_related(source, all_tables, max_related)]


class SchemaLinker:
    """
    Selects the relevant part of a trained schema for a question.

    Usage:
        linker = SchemaLinker(vector_store, schema_store)
        result = await linker.get_relevant_schema("shop", "top customers by revenue")
        print(result.table_names, result.used_fallback)
    """

    def __init__(
        self,
        vector_store: BaseVectorStore,
        schema_store: BaseSchemaStore,
        config: LinkingSettings | None = None,
        graph_builder: SchemaGraphBuilder | None = None,
    ):
        self.vector_store = vector_store
        self.schema_store = schema_store
        self.config = config or LinkingSettings()
        self.graph_builder = graph_builder or SchemaGraphBuilder()

    async def get_relevant_schema(
        self,
        connection_id: str,
        question: str,
        relevance_threshold: float | None = None,
        max_tables: int | None = None,
    ) -> SchemaLinkingResult:
        """
        Link a question to the tables it needs.

        Never raises for store failures: they come back as ``success=False``
        with the error message. A ``max_tables`` below 1 raises ValueError.
        """
        threshold = (
            self.config.relevance_threshold if relevance_threshold is None else relevance_threshold
        )
        limit = self.config.max_tables if max_tables is None else max_tables
        if limit < 1:
            raise ValueError(f"max_tables must be at least 1, got {limit}")

        try:
            schema = await self.schema_store.get_by_connection_id(connection_id)
        except SchemaStoreError as e:
            logger.error(f"Schema lookup failed for {connection_id}: {e}")
            return SchemaLinkingResult(success=False, error_message=str(e))

        if not schema:
            return SchemaLinkingResult(success=False, error_message="Schema not found")

        try:
            matched, scores, searched = await self._search_tables(
                connection_id, question, schema, threshold, limit
            )
        except VectorStoreError as e:
            logger.error(
                f"Vector search failed for {connection_id}: {e}",
                extra={"connection_id": connection_id},
            )
            return SchemaLinkingResult(success=False, error_message=str(e))

        if not matched:
            logger.warning(
                f"No table matched for {connection_id} down to threshold "
                f"{self.config.threshold_floor}; returning full schema",
                extra={"connection_id": connection_id, "searched_thresholds": searched},
            )
            return SchemaLinkingResult(
                success=True,
                tables=[table.model_copy(deep=True) for table in schema],
                schema_text=TableList.dump_json(schema, indent=2).decode(),
                match_details=[
                    SchemaMatchDetail(
                        table_name=table.table_name,
                        match_type=MatchType.FALLBACK,
                        matched_text=question,
                        match_reason="No table matched at any threshold",
                    )
                    for table in schema
                ],
                used_fallback=True,
                searched_thresholds=searched,
            )

        related = _expand_related(matched, schema, self.config.max_related_tables)

        details = [
            SchemaMatchDetail(
                table_name=table.table_name,
                match_type=MatchType.DIRECT,
                relevance_score=scores[table.key],
                matched_text=question,
                match_reason=f"Semantic similarity {scores[table.key]:.2f}",
            )
            for table in matched
        ]
        details.extend(
            SchemaMatchDetail(
                table_name=table.table_name,
                match_type=match_type,
                matched_text=question,
                match_reason=self._expansion_reason(table, match_type, matched),
            )
            for table, match_type in related
        )

        tables = [
            table.without_disabled_columns()
            for table in matched + [table for table, _ in related]
        ]

        logger.info(
            f"Linked {len(tables)} tables for {connection_id} "
            f"({len(matched)} matched, {len(related)} related)",
            extra={"connection_id": connection_id, "searched_thresholds": searched},
        )

        return SchemaLinkingResult(
            success=True,
            tables=tables,
            schema_text=TableList.dump_json(tables, indent=2).decode(),
            match_details=details,
            searched_thresholds=searched,
        )

    async def build_schema_graph(self, connection_id: str) -> SchemaGraph | None:
        """Graph of the connection's trained schema, or None if it has none."""
        schema = await self.schema_store.get_by_connection_id(connection_id)
        if not schema:
            return None
        return self.graph_builder.build(schema)

    async def _search_tables(
        self,
        connection_id: str,
        question: str,
        schema: list[TableInfo],
        threshold: float,
        limit: int,
    ) -> tuple[list[TableInfo], dict[str, float], list[float]]:
        matched: dict[str, TableInfo] = {}
        scores: dict[str, float] = {}
        searched: list[float] = []

        # Rounded so the descent lands exactly on 0.7, 0.6, 0.5, 0.4
        threshold = round(threshold, 10)
        while threshold >= self.config.threshold_floor and (
            len(matched) < self.config.min_tables_required
        ):
            searched.append(threshold)
            async for hit in self.vector_store.search(connection_id, question, limit, threshold):
                table = self._resolve_hit(hit, schema)
                if table is None:
                    continue
                scores[table.key] = max(scores.get(table.key, 0.0), hit.score)
                if table.key not in matched and len(matched) < limit:
                    matched[table.key] = table

            logger.debug(
                f"Threshold {threshold}: {len(matched)} tables resolved",
                extra={"connection_id": connection_id},
            )
            threshold = round(threshold - self.config.threshold_step, 10)

        return list(matched.values()), scores, searched

    def _resolve_hit(self, hit: VectorHit, schema: list[TableInfo]) -> TableInfo | None:
        try:
            embedding = SchemaEmbedding.model_validate_json(hit.text)
        except ValidationError as e:
            logger.warning(
                f"Skipping unparseable embedding {hit.item_id}: {e.error_count()} errors"
            )
            return None

        if embedding.embedding_type != EmbeddingType.TABLE:
            return None

        table = find_table(schema, embedding.table_name)
        if table is None:
            logger.debug(
                f"Embedding {hit.item_id} refers to untrained table {embedding.table_name}"
            )
        return table

    @staticmethod
    def _expansion_reason(
        table: TableInfo, match_type: MatchType, matched: list[TableInfo]
    ) -> str:
        match match_type:
            case MatchType.OUTBOUND_FOREIGN_KEY:
                sources = [t.table_name for t in matched if t.references(table.table_name)]
                return f"Referenced by {', '.join(sources)}"
            case MatchType.INBOUND_FOREIGN_KEY:
                sources = [t.table_name for t in matched if table.references(t.table_name)]
                return f"References {', '.join(sources)}"
            case MatchType.JUNCTION_TABLE:
                targets = sorted({fk.referenced_table_name for fk in table.foreign_keys})
                return f"Bridges {', '.join(targets)}"
            case _:
                return ""
