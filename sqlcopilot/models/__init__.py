"""
SQL Copilot Models Module

Pydantic models shared across the engine.

Available Models:
    Schema Models:
        - TableInfo, ColumnInfo, ForeignKeyInfo: Trained table metadata
        - SchemaEmbedding, EmbeddingType: Retrieval units in the vector store

    Linking Models:
        - SchemaLinkingResult: Tables selected for a question
        - SchemaMatchDetail: Why a table was selected

    Optimization Models:
        - OptimizationResult, OptimizationStep: Feedback loop records
        - ExecutionOutcome, ValidationResult, ErrorAnalysis
        - ErrorType, StepType

    Conversation Models:
        - ConversationContext, ConversationTurn, FollowupQueryType

    Example Models:
        - QAExample, ExampleSource: Solved questions used as few-shot examples
"""

from sqlcopilot.models.conversation import (
    ConversationContext,
    ConversationTurn,
    FollowupQueryType,
)
from sqlcopilot.models.examples import ExampleSource, QAExample
from sqlcopilot.models.linking import MatchType, SchemaLinkingResult, SchemaMatchDetail
from sqlcopilot.models.optimization import (
    ErrorAnalysis,
    ErrorType,
    ExecutionOutcome,
    OptimizationResult,
    OptimizationStep,
    StepType,
    ValidationResult,
)
from sqlcopilot.models.schema import (
    ColumnInfo,
    EmbeddingType,
    ForeignKeyInfo,
    SchemaEmbedding,
    TableInfo,
    TableList,
    find_table,
)

__all__ = [
    # Schema
    "ColumnInfo",
    "EmbeddingType",
    "ForeignKeyInfo",
    "SchemaEmbedding",
    "TableInfo",
    "TableList",
    "find_table",
    # Linking
    "MatchType",
    "SchemaLinkingResult",
    "SchemaMatchDetail",
    # Optimization
    "ErrorAnalysis",
    "ErrorType",
    "ExecutionOutcome",
    "OptimizationResult",
    "OptimizationStep",
    "StepType",
    "ValidationResult",
    # Conversation
    "ConversationContext",
    "ConversationTurn",
    "FollowupQueryType",
    # Examples
    "ExampleSource",
    "QAExample",
]
