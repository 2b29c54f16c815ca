"""
Pytest configuration and shared fixtures.

This module provides fixtures and in-memory collaborators used across all
tests.
"""

import logging
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlcopilot.connectors.base import BaseQueryExecutor, ExecutionResult
from sqlcopilot.knowledge.schema_store import BaseSchemaStore
from sqlcopilot.knowledge.vectors import BaseVectorStore, VectorHit
from sqlcopilot.llm.completion import TextCompleter
from sqlcopilot.models.schema import ColumnInfo, ForeignKeyInfo, TableInfo

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires API keys and external services)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(
        reason="Integration tests disabled (use --run-integration to enable)."
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Logging and Environment
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture debug logs for every test."""
    caplog.set_level(logging.DEBUG)
    yield


@pytest.fixture(autouse=True)
def mock_openai_api_key(monkeypatch):
    """
    Provide an OpenAI API key so settings validate.

    Runs automatically for all tests and clears the settings cache around
    each test.
    """
    from sqlcopilot.config import clear_settings_cache

    clear_settings_cache()
    test_key = "sk-test-key-1234567890-abcdefghijklmnop"  # 20+ chars
    monkeypatch.setenv("LLM_OPENAI_API_KEY", test_key)
    yield test_key
    clear_settings_cache()


# ============================================================================
# In-memory Collaborators
# ============================================================================


class FakeVectorStore(BaseVectorStore):
    """
    Dictionary-backed vector store.

    Relevance comes from ``scores`` (item id -> score); items without a
    score are never returned.
    """

    def __init__(self):
        self.items: dict[str, dict[str, str]] = {}
        self.scores: dict[str, float] = {}
        self.search_calls: list[tuple[str, str, int, float]] = []
        self.deleted: list[str] = []
        self.deleted_collections: list[str] = []
        self.fail_search = False

    async def save(self, collection: str, item_id: str, text: str) -> None:
        self.items.setdefault(collection, {})[item_id] = text

    async def search(self, collection, query, limit, min_relevance_score):
        from sqlcopilot.knowledge.vectors import VectorStoreError

        self.search_calls.append((collection, query, limit, min_relevance_score))
        if self.fail_search:
            raise VectorStoreError("vector store unavailable")

        hits = [
            VectorHit(item_id=item_id, text=text, score=self.scores[item_id])
            for item_id, text in self.items.get(collection, {}).items()
            if self.scores.get(item_id, -1.0) >= min_relevance_score
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        for hit in hits[:limit]:
            yield hit

    async def delete(self, collection: str, item_ids: list[str]) -> int:
        for item_id in item_ids:
            self.deleted.append(item_id)
            self.items.get(collection, {}).pop(item_id, None)
        return len(item_ids)

    async def delete_collection(self, collection: str) -> None:
        self.deleted_collections.append(collection)
        self.items.pop(collection, None)


class FakeSchemaStore(BaseSchemaStore):
    """Dictionary-backed schema store."""

    def __init__(self, schemas: dict[str, list[TableInfo]] | None = None):
        self.schemas = dict(schemas or {})

    async def get_by_connection_id(self, connection_id: str) -> list[TableInfo] | None:
        tables = self.schemas.get(connection_id)
        return list(tables) if tables is not None else None

    async def upsert(self, connection_id: str, tables: list[TableInfo]) -> None:
        self.schemas[connection_id] = list(tables)

    async def delete(self, connection_id: str) -> bool:
        return self.schemas.pop(connection_id, None) is not None


class FakeExecutor(BaseQueryExecutor):
    """
    Executor answering from a SQL -> ExecutionResult map.

    Unmapped SQL returns ``default``.
    """

    def __init__(self, results: dict[str, ExecutionResult] | None = None, default=None):
        self.results = dict(results or {})
        self.default = default or ExecutionResult(error="relation does not exist")
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def execute_query(self, connection_id: str, sql: str) -> ExecutionResult:
        self.calls.append((connection_id, sql))
        return self.results.get(sql, self.default)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def fake_example_vector_store() -> FakeVectorStore:
    """Separate store for question/SQL examples."""
    return FakeVectorStore()


@pytest.fixture
def fake_schema_store() -> FakeSchemaStore:
    return FakeSchemaStore()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def mock_completer():
    """
    Mock TextCompleter.

    Usage:
        def test_repair(mock_completer):
            mock_completer.complete.return_value = "SELECT 1"
    """
    completer = MagicMock(spec=TextCompleter)
    completer.complete = AsyncMock(return_value="SELECT 1")
    completer.close = AsyncMock()
    return completer


# ============================================================================
# Common Test Data
# ============================================================================


def _column(name: str, data_type: str, **kwargs: Any) -> ColumnInfo:
    return ColumnInfo(column_name=name, data_type=data_type, **kwargs)


def _fk(column: str, table: str, referenced_column: str = "id") -> ForeignKeyInfo:
    return ForeignKeyInfo(
        foreign_key_name=f"fk_{column}",
        column_name=column,
        referenced_table_name=table,
        referenced_column_name=referenced_column,
    )


@pytest.fixture
def sample_tables() -> list[TableInfo]:
    """Small shop schema: customers <- orders <- order_items -> products, plus audit_log."""
    return [
        TableInfo(
            table_name="customers",
            description="Registered customers",
            columns=[
                _column("id", "integer", is_primary_key=True, is_nullable=False),
                _column("name", "varchar", description="Full name"),
                _column("email", "varchar"),
                _column("password_hash", "varchar", is_enabled=False),
            ],
        ),
        TableInfo(
            table_name="orders",
            description="Customer orders",
            columns=[
                _column("id", "integer", is_primary_key=True, is_nullable=False),
                _column("customer_id", "integer", is_nullable=False),
                _column("order_date", "date"),
                _column("total_amount", "numeric"),
            ],
            foreign_keys=[_fk("customer_id", "customers")],
        ),
        TableInfo(
            table_name="products",
            description="Product catalogue",
            columns=[
                _column("id", "integer", is_primary_key=True, is_nullable=False),
                _column("name", "varchar"),
                _column("price", "numeric"),
            ],
        ),
        TableInfo(
            table_name="order_items",
            description="Order lines",
            columns=[
                _column("id", "integer", is_primary_key=True, is_nullable=False),
                _column("order_id", "integer"),
                _column("product_id", "integer"),
                _column("quantity", "integer"),
            ],
            foreign_keys=[_fk("order_id", "orders"), _fk("product_id", "products")],
        ),
        TableInfo(
            table_name="audit_log",
            description="Change history",
            columns=[
                _column("id", "integer", is_primary_key=True, is_nullable=False),
                _column("action", "varchar"),
                _column("created_at", "timestamp"),
            ],
        ),
    ]


@pytest.fixture
def sample_rows() -> list[dict[str, Any]]:
    return [
        {"name": "Acme Corp", "total": 300},
        {"name": "Globex", "total": 200},
    ]
