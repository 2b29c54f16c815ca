"""
Knowledge Module

Schema storage, training, graph analysis and schema linking.

Components:
    - BaseVectorStore / ChromaVectorStore: schema embeddings and similarity search
    - BaseSchemaStore / JsonFileSchemaStore: trained schema per connection
    - SchemaTrainer: keeps embeddings and stored schema in sync
    - SchemaGraph / SchemaGraphBuilder: typed table/column graph
    - SchemaLinker: question -> relevant tables
    - ExampleStore: question/SQL few-shot examples and recorded corrections
"""

from sqlcopilot.knowledge.examples import ExampleStore
from sqlcopilot.knowledge.graph import (
    SchemaGraph,
    SchemaGraphBuilder,
    SchemaGraphError,
    infer_semantic_type,
    infer_table_type,
)
from sqlcopilot.knowledge.linker import SchemaLinker, infer_related_tables
from sqlcopilot.knowledge.schema_store import BaseSchemaStore, JsonFileSchemaStore, SchemaStoreError
from sqlcopilot.knowledge.training import SchemaTrainer, describe_table
from sqlcopilot.knowledge.vectors import (
    BaseVectorStore,
    ChromaVectorStore,
    VectorHit,
    VectorStoreError,
)

__all__ = [
    "BaseSchemaStore",
    "BaseVectorStore",
    "ChromaVectorStore",
    "ExampleStore",
    "JsonFileSchemaStore",
    "SchemaGraph",
    "SchemaGraphBuilder",
    "SchemaGraphError",
    "SchemaLinker",
    "SchemaStoreError",
    "SchemaTrainer",
    "VectorHit",
    "VectorStoreError",
    "describe_table",
    "infer_related_tables",
    "infer_semantic_type",
    "infer_table_type",
]
