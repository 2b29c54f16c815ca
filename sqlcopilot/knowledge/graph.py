"""
Schema Graph

NetworkX-based graph of a connection's trained schema: table nodes,
column nodes (``table.column``), ``contains`` edges from each table to its
columns and ``foreign_key`` edges from a referencing column to the column it
references. Nodes carry inferred table and column types. The graph backs
diagnostics, visualisation and join-path lookup; retrieval does not need it.
"""

import logging
from enum import StrEnum
from typing import Any

import networkx as nx
from networkx.readwrite import json_graph

from sqlcopilot.models.schema import ColumnInfo, TableInfo

logger = logging.getLogger(__name__)


class NodeType(StrEnum):
    """Types of nodes in the schema graph."""

    TABLE = "table"
    COLUMN = "column"


class EdgeType(StrEnum):
    """Types of edges in the schema graph."""

    CONTAINS = "contains"  # Table -> Column
    FOREIGN_KEY = "foreign_key"  # Column -> referenced Column


class SchemaGraphError(Exception):
    """Raised when schema graph operations fail."""

    pass


def infer_table_type(table: TableInfo) -> str:
    """Classify a table by name and shape. First matching rule wins."""
    name = table.table_name.lower()
    if "log" in name or "audit" in name:
        return "log_table"
    if "config" in name or "setting" in name:
        return "config_table"
    if len(table.foreign_keys) >= 2 and len(table.columns) <= 5:
        return "junction_table"
    if len(table.columns) > 20:
        return "fact_table"
    return "dimension_table"


def infer_semantic_type(column: ColumnInfo) -> str:
    """Tag a column with its likely role. First matching rule wins."""
    name = column.column_name.lower()
    data_type = column.data_type.lower()
    if "id" in name and column.is_primary_key:
        return "primary_key"
    if "id" in name:
        return "foreign_key_candidate"
    if "name" in name or "title" in name:
        return "name_field"
    if "date" in name or "time" in name or "date" in data_type:
        return "temporal_field"
    if any(token in name for token in ("amount", "price", "cost")):
        return "monetary_field"
    if any(token in name for token in ("count", "number", "qty")):
        return "numeric_field"
    return "general_field"


def column_node_id(table_name: str, column_name: str) -> str:
    return f"{table_name}.{column_name}"


class SchemaGraph:
    """
    Typed graph over a schema.

    Usage:
        graph = SchemaGraphBuilder().build(tables)
        graph.find_join_path("order_items", "customers")
        # ['order_items', 'orders', 'customers']
        graph.get_stats()
        graph.to_dict()  # node-link JSON
    """

    def __init__(self, graph: nx.DiGraph | None = None):
        self.graph = graph if graph is not None else nx.DiGraph()

    def table_names(self) -> list[str]:
        return [
            node
            for node, data in self.graph.nodes(data=True)
            if data.get("node_type") == NodeType.TABLE
        ]

    def get_node(self, node_id: str) -> dict[str, Any] | None:
        if node_id not in self.graph:
            return None
        return dict(self.graph.nodes[node_id])

    def _resolve_table(self, table_name: str) -> str:
        target = table_name.lower()
        for node in self.table_names():
            if node.lower() == target:
                return node
        raise SchemaGraphError(f"Table '{table_name}' not found in graph")

    def _table_graph(self) -> nx.Graph:
        """Undirected table-level projection of the foreign-key edges."""
        tables = nx.Graph()
        tables.add_nodes_from(self.table_names())
        for source, target, data in self.graph.edges(data=True):
            if data.get("edge_type") != EdgeType.FOREIGN_KEY:
                continue
            source_table = self.graph.nodes[source]["table_name"]
            target_table = self.graph.nodes[target]["table_name"]
            if source_table != target_table:
                tables.add_edge(source_table, target_table)
        return tables

    def find_join_path(self, source_table: str, target_table: str) -> list[str] | None:
        """
        Shortest chain of tables linking two tables through foreign keys,
        ignoring edge direction.

        Returns:
            Table names from source to target, or None if they are not connected

        Raises:
            SchemaGraphError: If either table is not in the graph
        """
        source = self._resolve_table(source_table)
        target = self._resolve_table(target_table)
        try:
            path = nx.shortest_path(self._table_graph(), source, target)
        except nx.NetworkXNoPath:
            logger.debug(f"No join path from '{source}' to '{target}'")
            return None
        return list(path)

    def get_stats(self) -> dict[str, Any]:
        node_type_counts: dict[str, int] = {}
        table_type_counts: dict[str, int] = {}
        for _node, data in self.graph.nodes(data=True):
            node_type = data.get("node_type", "unknown")
            node_type_counts[node_type] = node_type_counts.get(node_type, 0) + 1
            if node_type == NodeType.TABLE:
                table_type = data.get("table_type", "unknown")
                table_type_counts[table_type] = table_type_counts.get(table_type, 0) + 1

        edge_type_counts: dict[str, int] = {}
        for _source, _target, data in self.graph.edges(data=True):
            edge_type = data.get("edge_type", "unknown")
            edge_type_counts[edge_type] = edge_type_counts.get(edge_type, 0) + 1

        return {
            "total_nodes": self.graph.number_of_nodes(),
            "total_edges": self.graph.number_of_edges(),
            "node_types": node_type_counts,
            "edge_types": edge_type_counts,
            "table_types": table_type_counts,
        }

    def to_dict(self) -> dict[str, Any]:
        """Node-link representation suitable for JSON visualisation."""
        return json_graph.node_link_data(self.graph, edges="links")


class SchemaGraphBuilder:
    """Builds a SchemaGraph from a flat table list."""

    def build(self, tables: list[TableInfo]) -> SchemaGraph:
        graph = nx.DiGraph()

        for table in tables:
            graph.add_node(
                table.table_name,
                node_type=NodeType.TABLE,
                name=table.table_name,
                description=table.description or "",
                column_count=len(table.columns),
                foreign_key_count=len(table.foreign_keys),
                has_primary_key=any(column.is_primary_key for column in table.columns),
                table_type=infer_table_type(table),
            )
            for column in table.columns:
                column_id = column_node_id(table.table_name, column.column_name)
                graph.add_node(
                    column_id,
                    node_type=NodeType.COLUMN,
                    name=column.column_name,
                    table_name=table.table_name,
                    data_type=column.data_type,
                    is_primary_key=column.is_primary_key,
                    is_nullable=column.is_nullable,
                    description=column.description or "",
                    semantic_type=infer_semantic_type(column),
                )
                graph.add_edge(table.table_name, column_id, edge_type=EdgeType.CONTAINS)

        columns_by_key = {
            node.lower(): node
            for node, data in graph.nodes(data=True)
            if data.get("node_type") == NodeType.COLUMN
        }
        skipped = 0
        for table in tables:
            for fk in table.foreign_keys:
                source = columns_by_key.get(
                    column_node_id(table.table_name, fk.column_name).lower()
                )
                target = columns_by_key.get(
                    column_node_id(fk.referenced_table_name, fk.referenced_column_name).lower()
                )
                if source is None or target is None:
                    skipped += 1
                    continue
                graph.add_edge(
                    source,
                    target,
                    edge_type=EdgeType.FOREIGN_KEY,
                    constraint_name=fk.foreign_key_name,
                )

        if skipped:
            logger.warning(f"Skipped {skipped} foreign keys with unknown endpoints")

        logger.debug(
            f"Built schema graph: {graph.number_of_nodes()} nodes, "
            f"{graph.number_of_edges()} edges"
        )
        return SchemaGraph(graph)
