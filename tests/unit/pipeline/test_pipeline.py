"""
Tests for the Text2SQL pipeline.

Runs the full graph against in-memory stores, a mocked completer and a
fake executor.
"""

import pytest

from sqlcopilot.config import ExampleSettings
from sqlcopilot.connectors.base import ExecutionResult
from sqlcopilot.knowledge.examples import ExampleStore
from sqlcopilot.knowledge.vectors import VectorStoreError
from sqlcopilot.llm.completion import CompletionError
from sqlcopilot.models.conversation import FollowupQueryType
from sqlcopilot.models.examples import ExampleSource, QAExample
from sqlcopilot.models.schema import SchemaEmbedding
from sqlcopilot.pipeline import Text2SQLPipeline

TOP_SPENDERS_SQL = "SELECT name, total FROM customers ORDER BY total DESC"
BY_NAME_SQL = "SELECT name, total FROM customers ORDER BY name"
BROKEN_SQL = "SELECT nme, total FROM customers"


@pytest.fixture
def pipeline(fake_vector_store, fake_schema_store, fake_executor, mock_completer):
    return Text2SQLPipeline(
        vector_store=fake_vector_store,
        schema_store=fake_schema_store,
        executor=fake_executor,
        completer=mock_completer,
    )


async def _train(pipeline, fake_vector_store, tables):
    await pipeline.trainer.train_tables("shop", tables)
    fake_vector_store.scores[SchemaEmbedding.item_id("shop", "customers")] = 0.9


class TestAsk:
    """Test single questions end to end."""

    @pytest.mark.asyncio
    async def test_successful_question(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables,
        sample_rows,
    ):
        await _train(pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.return_value = f"```sql\n{TOP_SPENDERS_SQL}\n```"

        result = await pipeline.ask("shop", "Which customers spent the most?")

        assert result.success
        assert result.error is None
        assert result.sql == TOP_SPENDERS_SQL
        assert result.rows == sample_rows
        assert result.answer == "The query returned 2 records, 2 fields."
        assert result.query_type == FollowupQueryType.NEW_QUERY
        assert result.linking.table_names == ["customers", "orders"]
        assert fake_executor.calls == [("shop", TOP_SPENDERS_SQL)]

        kwargs = mock_completer.complete.call_args.kwargs
        assert mock_completer.complete.call_args.args == ("sql/generate_sql.md",)
        assert kwargs["user_message"] == "Which customers spent the most?"
        assert kwargs["history"] == []
        assert kwargs["examples"] == []
        assert "password_hash" not in kwargs["schema_info"]

    @pytest.mark.asyncio
    async def test_turn_is_recorded(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables,
        sample_rows,
    ):
        await _train(pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.return_value = TOP_SPENDERS_SQL

        await pipeline.ask("shop", "Which customers spent the most?")

        context = await pipeline.conversations.get_context("shop")
        assert len(context.history) == 1
        assert context.last_turn.generated_sql == TOP_SPENDERS_SQL
        assert context.last_turn.result_summary == "2 records, 2 fields"

    @pytest.mark.asyncio
    async def test_followup_uses_previous_turn(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables,
        sample_rows,
    ):
        await _train(pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        fake_executor.results[BY_NAME_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.side_effect = [TOP_SPENDERS_SQL, BY_NAME_SQL]

        await pipeline.ask("shop", "Which customers spent the most?")
        result = await pipeline.ask("shop", "sort them by name")

        assert result.query_type == FollowupQueryType.SORTING_CHANGE
        assert result.resolved_question == (
            "Previous query: Which customers spent the most?\n"
            "Keep its content and conditions, then: sort them by name"
        )
        assert result.sql == BY_NAME_SQL

        history = mock_completer.complete.call_args.kwargs["history"]
        assert [turn.generated_sql for turn in history] == [TOP_SPENDERS_SQL]

    @pytest.mark.asyncio
    async def test_unmatched_question_uses_full_schema(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables,
        sample_rows,
    ):
        await pipeline.trainer.train_tables("shop", sample_tables)
        fake_executor.results["SELECT 1"] = ExecutionResult(rows=sample_rows)

        result = await pipeline.ask("shop", "anything interesting?")

        assert result.success
        assert result.linking.used_fallback
        assert len(result.linking.tables) == len(sample_tables)


class TestFailures:
    """Test early exits and failed optimization."""

    @pytest.mark.asyncio
    async def test_untrained_connection(self, pipeline, fake_executor, mock_completer):
        result = await pipeline.ask("warehouse", "How many orders?")

        assert not result.success
        assert result.error == "Schema linking failed: Schema not found"
        assert result.optimization is None
        mock_completer.complete.assert_not_called()
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_vector_store_failure(
        self, pipeline, fake_vector_store, mock_completer, sample_tables
    ):
        await pipeline.trainer.train_tables("shop", sample_tables)
        fake_vector_store.fail_search = True

        result = await pipeline.ask("shop", "How many orders?")

        assert result.error == "Schema linking failed: vector store unavailable"
        mock_completer.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_generation_failure(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables
    ):
        await _train(pipeline, fake_vector_store, sample_tables)
        mock_completer.complete.side_effect = CompletionError("provider down")

        result = await pipeline.ask("shop", "Which customers spent the most?")

        assert result.error == "SQL generation failed: provider down"
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_empty_draft(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables
    ):
        await _train(pipeline, fake_vector_store, sample_tables)
        mock_completer.complete.return_value = "```sql\n```"

        result = await pipeline.ask("shop", "Which customers spent the most?")

        assert result.error == "SQL generation returned no statement"
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_unrepairable_query(
        self, pipeline, fake_vector_store, fake_executor, mock_completer, sample_tables
    ):
        await _train(pipeline, fake_vector_store, sample_tables)
        mock_completer.complete.return_value = "SELECT * FROM missing_table"

        result = await pipeline.ask("shop", "Which customers spent the most?")

        assert not result.success
        assert result.error is None
        assert len(fake_executor.calls) == 3
        assert result.answer == (
            "No validated query could be produced: No valid result after 3 iteration(s)"
        )

        context = await pipeline.conversations.get_context("shop")
        assert context.last_turn.generated_sql == "SELECT * FROM missing_table"


@pytest.fixture
def example_pipeline(
    fake_vector_store, fake_schema_store, fake_executor, mock_completer, fake_example_vector_store
):
    return Text2SQLPipeline(
        vector_store=fake_vector_store,
        schema_store=fake_schema_store,
        executor=fake_executor,
        completer=mock_completer,
        example_store=ExampleStore(fake_example_vector_store),
    )


class TestExamples:
    """Test few-shot retrieval and correction recording."""

    @pytest.mark.asyncio
    async def test_examples_are_passed_to_generation(
        self, example_pipeline, fake_vector_store, fake_example_vector_store, fake_executor,
        mock_completer, sample_tables, sample_rows,
    ):
        await _train(example_pipeline, fake_vector_store, sample_tables)
        example = QAExample(
            connection_id="shop", question="Top customers by spend", sql_query=TOP_SPENDERS_SQL
        )
        await example_pipeline.example_store.add_example(example)
        fake_example_vector_store.scores[QAExample.item_id(example.id)] = 0.9
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.return_value = TOP_SPENDERS_SQL

        result = await example_pipeline.ask("shop", "Which customers spent the most?")

        passed = mock_completer.complete.call_args.kwargs["examples"]
        assert [e.id for e in passed] == [example.id]
        assert [e.id for e in result.examples] == [example.id]
        assert fake_example_vector_store.search_calls[0][:2] == (
            "shop",
            "Which customers spent the most?",
        )

    @pytest.mark.asyncio
    async def test_examples_can_be_disabled(
        self, fake_vector_store, fake_schema_store, fake_executor, mock_completer,
        fake_example_vector_store, sample_tables,
    ):
        pipeline = Text2SQLPipeline(
            vector_store=fake_vector_store,
            schema_store=fake_schema_store,
            executor=fake_executor,
            completer=mock_completer,
            example_store=ExampleStore(fake_example_vector_store, ExampleSettings(enabled=False)),
        )
        await _train(pipeline, fake_vector_store, sample_tables)

        await pipeline.ask("shop", "Which customers spent the most?")

        assert fake_example_vector_store.search_calls == []
        assert mock_completer.complete.call_args_list[0].kwargs["examples"] == []

    @pytest.mark.asyncio
    async def test_repaired_query_is_recorded_as_correction(
        self, example_pipeline, fake_vector_store, fake_example_vector_store, fake_executor,
        mock_completer, sample_tables, sample_rows,
    ):
        await _train(example_pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.side_effect = [BROKEN_SQL, TOP_SPENDERS_SQL]

        result = await example_pipeline.ask("shop", "Which customers spent the most?")

        assert result.success
        assert result.sql == TOP_SPENDERS_SQL
        [text] = fake_example_vector_store.items["shop"].values()
        recorded = QAExample.model_validate_json(text)
        assert recorded.source == ExampleSource.CORRECTION
        assert recorded.question == "Which customers spent the most?"
        assert recorded.sql_query == TOP_SPENDERS_SQL
        assert recorded.original_incorrect_sql == BROKEN_SQL

    @pytest.mark.asyncio
    async def test_validated_first_draft_is_not_recorded(
        self, example_pipeline, fake_vector_store, fake_example_vector_store, fake_executor,
        mock_completer, sample_tables, sample_rows,
    ):
        await _train(example_pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.return_value = TOP_SPENDERS_SQL

        await example_pipeline.ask("shop", "Which customers spent the most?")

        assert fake_example_vector_store.items == {}

    @pytest.mark.asyncio
    async def test_recording_can_be_disabled(
        self, fake_vector_store, fake_schema_store, fake_executor, mock_completer,
        fake_example_vector_store, sample_tables, sample_rows,
    ):
        pipeline = Text2SQLPipeline(
            vector_store=fake_vector_store,
            schema_store=fake_schema_store,
            executor=fake_executor,
            completer=mock_completer,
            example_store=ExampleStore(
                fake_example_vector_store, ExampleSettings(record_corrections=False)
            ),
        )
        await _train(pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.side_effect = [BROKEN_SQL, TOP_SPENDERS_SQL]

        result = await pipeline.ask("shop", "Which customers spent the most?")

        assert result.success
        assert fake_example_vector_store.items == {}

    @pytest.mark.asyncio
    async def test_recording_failure_keeps_the_answer(
        self, example_pipeline, fake_vector_store, fake_example_vector_store, fake_executor,
        mock_completer, sample_tables, sample_rows, monkeypatch,
    ):
        await _train(example_pipeline, fake_vector_store, sample_tables)
        fake_executor.results[TOP_SPENDERS_SQL] = ExecutionResult(rows=sample_rows)
        mock_completer.complete.side_effect = [BROKEN_SQL, TOP_SPENDERS_SQL]

        async def failing_save(collection, item_id, text):
            raise VectorStoreError("read-only")

        monkeypatch.setattr(fake_example_vector_store, "save", failing_save)

        result = await example_pipeline.ask("shop", "Which customers spent the most?")

        assert result.success
        assert result.answer == "The query returned 2 records, 2 fields."

    @pytest.mark.asyncio
    async def test_record_correction(self, example_pipeline, fake_example_vector_store):
        example = await example_pipeline.record_correction(
            "shop", "Top customers", TOP_SPENDERS_SQL, incorrect_sql=BROKEN_SQL
        )

        assert example.source == ExampleSource.CORRECTION
        assert QAExample.item_id(example.id) in fake_example_vector_store.items["shop"]

    @pytest.mark.asyncio
    async def test_record_correction_without_example_store(self, pipeline):
        with pytest.raises(ValueError, match="No example store"):
            await pipeline.record_correction("shop", "Top customers", TOP_SPENDERS_SQL)


@pytest.mark.asyncio
async def test_close(pipeline, fake_executor, mock_completer):
    await pipeline.close()

    assert fake_executor.closed
    mock_completer.close.assert_awaited_once()
