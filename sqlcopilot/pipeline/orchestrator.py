"""
Text-to-SQL Pipeline

LangGraph state machine wiring the engine together:

    resolve_context -> link_schema -> generate_sql -> optimize_sql -> record_turn

- resolve_context: classify the follow-up and rewrite it into a standalone question
- link_schema: narrow the trained schema to the relevant tables
- generate_sql: draft SQL with the ``sql/generate_sql.md`` prompt and similar solved
  questions as few-shot examples
- optimize_sql: execute, validate and repair the draft
- record_turn: answer the user, store the turn in the conversation context and keep
  repaired queries as correction examples

Linking and drafting failures end the run early with ``error`` set.
"""

import logging
import time
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from sqlcopilot.config import (
    ConversationSettings,
    LinkingSettings,
    OptimizerSettings,
    Settings,
    get_settings,
)
from sqlcopilot.connectors.base import BaseQueryExecutor
from sqlcopilot.connectors.postgres import PostgresQueryExecutor
from sqlcopilot.conversations.state import ConversationStateManager, summarize_result
from sqlcopilot.knowledge.examples import ExampleStore
from sqlcopilot.knowledge.linker import SchemaLinker
from sqlcopilot.knowledge.schema_store import BaseSchemaStore, JsonFileSchemaStore
from sqlcopilot.knowledge.training import SchemaTrainer
from sqlcopilot.knowledge.vectors import BaseVectorStore, ChromaVectorStore, VectorStoreError
from sqlcopilot.llm.completion import CompletionError, PromptCompleter, TextCompleter
from sqlcopilot.llm.factory import LLMProviderFactory
from sqlcopilot.models.conversation import FollowupQueryType
from sqlcopilot.models.examples import QAExample
from sqlcopilot.models.linking import SchemaLinkingResult
from sqlcopilot.models.optimization import OptimizationResult
from sqlcopilot.refinement.optimizer import FeedbackOptimizer, clean_sql

logger = logging.getLogger(__name__)

GENERATE_TEMPLATE = "sql/generate_sql.md"
PROMPT_HISTORY_TURNS = 3


class PipelineState(TypedDict, total=False):
    """State carried through the pipeline graph."""

    connection_id: str
    question: str
    query_type: FollowupQueryType
    resolved_question: str
    linking: SchemaLinkingResult | None
    examples: list[QAExample]
    draft_sql: str | None
    optimization: OptimizationResult | None
    answer: str | None
    error: str | None
    timings: dict[str, float]


class PipelineResult(BaseModel):
    """Outcome of one question."""

    question: str
    resolved_question: str
    query_type: FollowupQueryType = FollowupQueryType.NEW_QUERY
    linking: SchemaLinkingResult | None = None
    examples: list[QAExample] = Field(default_factory=list)
    optimization: OptimizationResult | None = None
    rows: list[dict[str, Any]] = Field(default_factory=list)
    answer: str | None = None
    error: str | None = None

    @property
    def sql(self) -> str | None:
        return self.optimization.final_sql if self.optimization else None

    @property
    def success(self) -> bool:
        return self.error is None and self.optimization is not None and self.optimization.success


class Text2SQLPipeline:
    """
    Answers questions about a trained connection.

    Usage:
        pipeline = Text2SQLPipeline.from_settings()
        result = await pipeline.ask("shop", "Which customers spent the most last month?")
        print(result.sql, result.answer)
        await pipeline.close()
    """

    def __init__(
        self,
        vector_store: BaseVectorStore,
        schema_store: BaseSchemaStore,
        executor: BaseQueryExecutor,
        completer: TextCompleter,
        linking_config: LinkingSettings | None = None,
        optimizer_config: OptimizerSettings | None = None,
        conversation_config: ConversationSettings | None = None,
        example_store: ExampleStore | None = None,
    ):
        self.executor = executor
        self.completer = completer
        self.linker = SchemaLinker(vector_store, schema_store, linking_config)
        self.optimizer = FeedbackOptimizer(executor, completer, optimizer_config)
        self.conversations = ConversationStateManager(conversation_config)
        self.trainer = SchemaTrainer(vector_store, schema_store)
        self.example_store = example_store
        self.graph = self._build_graph()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Text2SQLPipeline":
        """Wire the Chroma, JSON-file, PostgreSQL and LLM adapters from settings."""
        settings = settings or get_settings()
        provider = LLMProviderFactory.create_default_provider(settings.llm)
        return cls(
            vector_store=ChromaVectorStore(
                persist_directory=settings.chroma.persist_dir,
                openai_api_key=settings.llm.openai_api_key,
                embedding_model=settings.chroma.embedding_model,
                collection_prefix=settings.chroma.collection_prefix,
            ),
            schema_store=JsonFileSchemaStore(settings.schema_store.directory),
            executor=PostgresQueryExecutor(
                settings.database.connections,
                pool_size=settings.database.pool_size,
                statement_timeout=settings.database.statement_timeout,
            ),
            completer=PromptCompleter(provider),
            linking_config=settings.linking,
            optimizer_config=settings.optimizer,
            conversation_config=settings.conversation,
            example_store=ExampleStore(
                ChromaVectorStore(
                    persist_directory=settings.chroma.persist_dir,
                    openai_api_key=settings.llm.openai_api_key,
                    embedding_model=settings.chroma.embedding_model,
                    collection_prefix=settings.examples.collection_prefix,
                ),
                settings.examples,
            ),
        )

    def _build_graph(self):
        workflow = StateGraph(PipelineState)

        workflow.add_node("resolve_context", self._run_context)
        workflow.add_node("link_schema", self._run_linking)
        workflow.add_node("generate_sql", self._run_sql)
        workflow.add_node("optimize_sql", self._run_optimizer)
        workflow.add_node("record_turn", self._run_record)

        workflow.set_entry_point("resolve_context")
        workflow.add_edge("resolve_context", "link_schema")
        workflow.add_conditional_edges(
            "link_schema", self._should_continue, {"continue": "generate_sql", "end": END}
        )
        workflow.add_conditional_edges(
            "generate_sql", self._should_continue, {"continue": "optimize_sql", "end": END}
        )
        workflow.add_edge("optimize_sql", "record_turn")
        workflow.add_edge("record_turn", END)

        return workflow.compile()

    async def ask(self, connection_id: str, question: str) -> PipelineResult:
        """Run one question through the pipeline."""
        initial_state: PipelineState = {
            "connection_id": connection_id,
            "question": question,
            "query_type": FollowupQueryType.NEW_QUERY,
            "resolved_question": question,
            "linking": None,
            "examples": [],
            "draft_sql": None,
            "optimization": None,
            "answer": None,
            "error": None,
            "timings": {},
        }

        logger.info(
            f"Starting pipeline for question: {question[:100]}",
            extra={"connection_id": connection_id},
        )
        start_time = time.perf_counter()
        state = await self.graph.ainvoke(initial_state)
        logger.info(
            f"Pipeline complete in {(time.perf_counter() - start_time) * 1000:.1f}ms",
            extra={"connection_id": connection_id, "timings": state.get("timings", {})},
        )

        optimization = state.get("optimization")
        return PipelineResult(
            question=question,
            resolved_question=state.get("resolved_question") or question,
            query_type=state.get("query_type", FollowupQueryType.NEW_QUERY),
            linking=state.get("linking"),
            examples=state.get("examples") or [],
            optimization=optimization,
            rows=optimization.rows if optimization else [],
            answer=state.get("answer"),
            error=state.get("error"),
        )

    async def close(self) -> None:
        await self.executor.close()
        await self.completer.close()

    # ========================================================================
    # Graph nodes
    # ========================================================================

    async def _run_context(self, state: PipelineState) -> PipelineState:
        start_time = time.perf_counter()
        connection_id = state["connection_id"]
        question = state["question"]

        query_type = await self.conversations.analyze_followup_query(connection_id, question)
        if query_type == FollowupQueryType.NEW_QUERY:
            resolved = await self.conversations.resolve_coreferences(connection_id, question)
        else:
            resolved = await self.conversations.process_incremental_query(
                connection_id, question, query_type
            )

        state["query_type"] = query_type
        state["resolved_question"] = resolved
        self._record_timing(state, "context", start_time)
        return state

    async def _run_linking(self, state: PipelineState) -> PipelineState:
        start_time = time.perf_counter()
        linking = await self.linker.get_relevant_schema(
            state["connection_id"], state["resolved_question"]
        )
        state["linking"] = linking
        if not linking.success:
            state["error"] = f"Schema linking failed: {linking.error_message}"
        self._record_timing(state, "linking", start_time)
        return state

    async def _run_sql(self, state: PipelineState) -> PipelineState:
        start_time = time.perf_counter()
        context = await self.conversations.get_context(state["connection_id"])
        history = context.history[-PROMPT_HISTORY_TURNS:] if context else []
        examples = await self._relevant_examples(state["connection_id"], state["resolved_question"])
        state["examples"] = examples

        try:
            text = await self.completer.complete(
                GENERATE_TEMPLATE,
                schema_info=state["linking"].schema_text,
                user_message=state["resolved_question"],
                history=history,
                examples=examples,
            )
        except CompletionError as e:
            state["error"] = f"SQL generation failed: {e}"
            self._record_timing(state, "sql", start_time)
            return state

        draft_sql = clean_sql(text)
        if draft_sql:
            state["draft_sql"] = draft_sql
        else:
            state["error"] = "SQL generation returned no statement"
        self._record_timing(state, "sql", start_time)
        return state

    async def _run_optimizer(self, state: PipelineState) -> PipelineState:
        start_time = time.perf_counter()
        state["optimization"] = await self.optimizer.optimize_with_feedback(
            state["connection_id"],
            state["resolved_question"],
            state["linking"].schema_text,
            state["draft_sql"],
        )
        self._record_timing(state, "optimizer", start_time)
        return state

    async def _run_record(self, state: PipelineState) -> PipelineState:
        optimization = state["optimization"]
        if optimization.success:
            answer = f"The query returned {summarize_result(optimization.rows)}."
        else:
            answer = f"No validated query could be produced: {optimization.error_message}"

        state["answer"] = answer
        await self.conversations.update_context(
            state["connection_id"],
            state["question"],
            answer,
            optimization.final_sql or "",
            optimization.rows,
        )
        if optimization.success and optimization.final_sql != optimization.original_sql:
            await self._record_repair(
                state["connection_id"], state["resolved_question"], optimization
            )
        return state

    # ========================================================================
    # Examples
    # ========================================================================

    async def record_correction(
        self,
        connection_id: str,
        question: str,
        correct_sql: str,
        incorrect_sql: str | None = None,
        description: str | None = None,
    ) -> QAExample | None:
        """
        Store a user-supplied correction as a few-shot example.

        Raises:
            ValueError: If the pipeline has no example store
            VectorStoreError: If the example cannot be written
        """
        if self.example_store is None:
            raise ValueError("No example store configured")
        return await self.example_store.create_from_correction(
            connection_id, question, correct_sql, incorrect_sql, description
        )

    async def _relevant_examples(self, connection_id: str, question: str) -> list[QAExample]:
        if self.example_store is None or not self.example_store.config.enabled:
            return []
        return await self.example_store.get_relevant_examples(connection_id, question)

    async def _record_repair(
        self, connection_id: str, question: str, optimization: OptimizationResult
    ) -> None:
        if self.example_store is None or not self.example_store.config.record_corrections:
            return
        try:
            await self.example_store.create_from_correction(
                connection_id,
                question,
                optimization.final_sql,
                incorrect_sql=optimization.original_sql,
            )
        except VectorStoreError as e:
            logger.warning(
                f"Could not record repaired query as an example: {e}",
                extra={"connection_id": connection_id},
            )

    def _should_continue(self, state: PipelineState) -> str:
        return "end" if state.get("error") else "continue"

    @staticmethod
    def _record_timing(state: PipelineState, node: str, start_time: float) -> None:
        state.setdefault("timings", {})[node] = (time.perf_counter() - start_time) * 1000
