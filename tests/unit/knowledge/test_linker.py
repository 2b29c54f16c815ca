"""
Tests for the schema linker.

Covers the dynamic-threshold descent, foreign-key expansion, the
full-schema fallback and failure reporting.
"""

import json

import pytest

from sqlcopilot.config import LinkingSettings
from sqlcopilot.knowledge.linker import SchemaLinker, infer_related_tables
from sqlcopilot.knowledge.schema_store import SchemaStoreError
from sqlcopilot.knowledge.training import describe_table
from sqlcopilot.models.linking import MatchType
from sqlcopilot.models.schema import ForeignKeyInfo, SchemaEmbedding, TableInfo


@pytest.fixture
def trained_linker(fake_vector_store, fake_schema_store, sample_tables):
    fake_schema_store.schemas["shop"] = list(sample_tables)
    fake_vector_store.items["shop"] = {
        SchemaEmbedding.item_id("shop", table.table_name): SchemaEmbedding(
            connection_id="shop",
            table_name=table.table_name,
            description=describe_table(table),
        ).model_dump_json()
        for table in sample_tables
    }
    return SchemaLinker(fake_vector_store, fake_schema_store, LinkingSettings())


def _fk_table(name: str, *references: str) -> TableInfo:
    return TableInfo(
        table_name=name,
        foreign_keys=[
            ForeignKeyInfo(column_name=f"{target}_id", referenced_table_name=target)
            for target in references
        ],
    )


class TestRelatedTableInference:
    """Test foreign-key expansion passes."""

    def test_outbound_then_inbound(self, sample_tables):
        orders = [t for t in sample_tables if t.table_name == "orders"]

        related = infer_related_tables(orders, sample_tables)

        assert [t.table_name for t in related] == ["orders", "customers", "order_items"]

    def test_junction_pass_bridges_selected_tables(self):
        stores = _fk_table("stores")
        products = _fk_table("products")
        sales = _fk_table("sales", "stores", "products")
        inventory = _fk_table("inventory", "stores", "products")
        regions = _fk_table("regions")
        schema = [stores, products, sales, inventory, regions]

        related = infer_related_tables([sales], schema)

        assert [t.table_name for t in related] == ["sales", "stores", "products", "inventory"]

    def test_cap_limits_additions(self, sample_tables):
        orders = [t for t in sample_tables if t.table_name == "orders"]

        related = infer_related_tables(orders, sample_tables, max_related=1)

        assert [t.table_name for t in related] == ["orders", "customers"]

    def test_zero_cap_returns_source(self, sample_tables):
        related = infer_related_tables(sample_tables[:1], sample_tables, max_related=0)

        assert related == sample_tables[:1]

    def test_references_are_case_insensitive(self):
        orders = _fk_table("orders", "CUSTOMERS")
        customers = _fk_table("Customers")

        related = infer_related_tables([orders], [orders, customers])

        assert [t.table_name for t in related] == ["orders", "Customers"]

    def test_no_duplicates(self, sample_tables):
        related = infer_related_tables(sample_tables, sample_tables)

        assert len(related) == len(sample_tables)


class TestThresholdDescent:
    """Test the dynamic relevance threshold."""

    @pytest.mark.asyncio
    async def test_direct_match_at_first_threshold(self, trained_linker, fake_vector_store):
        fake_vector_store.scores["shop_orders"] = 0.92

        result = await trained_linker.get_relevant_schema("shop", "total order value")

        assert result.success
        assert not result.used_fallback
        assert result.searched_thresholds == [0.7]
        assert result.table_names == ["orders", "customers", "order_items"]

        direct = result.match_details[0]
        assert direct.table_name == "orders"
        assert direct.match_type == MatchType.DIRECT
        assert direct.relevance_score == pytest.approx(0.92)
        assert direct.matched_text == "total order value"
        assert [d.match_type for d in result.match_details[1:]] == [
            MatchType.OUTBOUND_FOREIGN_KEY,
            MatchType.INBOUND_FOREIGN_KEY,
        ]

    @pytest.mark.asyncio
    async def test_descends_until_a_table_matches(self, trained_linker, fake_vector_store):
        fake_vector_store.scores["shop_products"] = 0.45

        result = await trained_linker.get_relevant_schema("shop", "cheap items")

        assert result.searched_thresholds == [0.7, 0.6, 0.5, 0.4]
        assert result.table_names[0] == "products"
        assert [call[3] for call in fake_vector_store.search_calls] == [0.7, 0.6, 0.5, 0.4]

    @pytest.mark.asyncio
    async def test_search_uses_max_tables_limit(self, trained_linker, fake_vector_store):
        fake_vector_store.scores["shop_orders"] = 0.9

        await trained_linker.get_relevant_schema("shop", "orders", max_tables=2)

        assert fake_vector_store.search_calls[0] == ("shop", "orders", 2, 0.7)

    @pytest.mark.asyncio
    async def test_zero_max_tables_is_rejected(self, trained_linker, fake_vector_store):
        with pytest.raises(ValueError, match="max_tables must be at least 1"):
            await trained_linker.get_relevant_schema("shop", "orders", max_tables=0)

        assert fake_vector_store.search_calls == []

    @pytest.mark.asyncio
    async def test_explicit_threshold(self, trained_linker, fake_vector_store):
        fake_vector_store.scores["shop_orders"] = 0.55

        result = await trained_linker.get_relevant_schema("shop", "orders", relevance_threshold=0.5)

        assert result.searched_thresholds == [0.5]
        assert result.table_names[0] == "orders"

    @pytest.mark.asyncio
    async def test_disabled_columns_are_stripped(self, trained_linker, fake_vector_store):
        fake_vector_store.scores["shop_customers"] = 0.9

        result = await trained_linker.get_relevant_schema("shop", "customer emails")

        customers = result.tables[0]
        assert [c.column_name for c in customers.columns] == ["id", "name", "email"]
        assert "password_hash" not in result.schema_text
        assert json.loads(result.schema_text)[0]["table_name"] == "customers"

    @pytest.mark.asyncio
    async def test_non_table_and_unparseable_hits_are_skipped(
        self, trained_linker, fake_vector_store
    ):
        column_embedding = SchemaEmbedding(
            connection_id="shop",
            table_name="orders",
            column_name="total_amount",
            description="Order total",
            embedding_type="Column",
        )
        await fake_vector_store.save(
            "shop", "shop_orders_total", column_embedding.model_dump_json()
        )
        await fake_vector_store.save("shop", "garbage", "not json")
        fake_vector_store.scores.update({"shop_orders_total": 0.95, "garbage": 0.95})
        fake_vector_store.scores["shop_products"] = 0.8

        result = await trained_linker.get_relevant_schema("shop", "order totals")

        assert result.table_names[0] == "products"
        assert result.searched_thresholds == [0.7]


class TestFallbackAndFailures:
    """Test fallback and error reporting."""

    @pytest.mark.asyncio
    async def test_falls_back_to_full_schema(self, trained_linker, sample_tables):
        result = await trained_linker.get_relevant_schema("shop", "weather forecast")

        assert result.success
        assert result.used_fallback
        assert result.searched_thresholds == [0.7, 0.6, 0.5, 0.4]
        assert result.table_names == [t.table_name for t in sample_tables]
        assert {d.match_type for d in result.match_details} == {MatchType.FALLBACK}
        # Fallback keeps disabled columns
        assert len(result.tables[0].columns) == 4

    @pytest.mark.asyncio
    async def test_schema_not_found(self, fake_vector_store, fake_schema_store):
        linker = SchemaLinker(fake_vector_store, fake_schema_store)

        result = await linker.get_relevant_schema("unknown", "anything")

        assert not result.success
        assert result.error_message == "Schema not found"
        assert fake_vector_store.search_calls == []

    @pytest.mark.asyncio
    async def test_vector_store_failure(self, trained_linker, fake_vector_store):
        fake_vector_store.fail_search = True

        result = await trained_linker.get_relevant_schema("shop", "orders")

        assert not result.success
        assert "vector store unavailable" in result.error_message

    @pytest.mark.asyncio
    async def test_schema_store_failure(self, fake_vector_store, fake_schema_store, monkeypatch):
        async def broken(connection_id):
            raise SchemaStoreError("disk on fire")

        monkeypatch.setattr(fake_schema_store, "get_by_connection_id", broken)
        linker = SchemaLinker(fake_vector_store, fake_schema_store)

        result = await linker.get_relevant_schema("shop", "orders")

        assert not result.success
        assert result.error_message == "disk on fire"


class TestBuildSchemaGraph:
    """Test graph construction through the linker."""

    @pytest.mark.asyncio
    async def test_build_schema_graph(self, trained_linker):
        graph = await trained_linker.build_schema_graph("shop")

        assert sorted(graph.table_names()) == [
            "audit_log",
            "customers",
            "order_items",
            "orders",
            "products",
        ]

    @pytest.mark.asyncio
    async def test_build_schema_graph_unknown_connection(self, trained_linker):
        assert await trained_linker.build_schema_graph("unknown") is None
