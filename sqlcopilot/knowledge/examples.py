"""
Question/SQL Examples

Solved questions stored per connection and retrieved as few-shot
examples for SQL generation. Each example is saved whole, as JSON, under
``qa_example_<id>`` in the connection's collection of a vector store kept
apart from the schema embeddings. Repaired queries can be recorded as
``correction`` examples so the next similar question starts from the
working SQL.
"""

import logging
from datetime import UTC, datetime

from pydantic import ValidationError

from sqlcopilot.config import ExampleSettings
from sqlcopilot.knowledge.vectors import BaseVectorStore, VectorStoreError
from sqlcopilot.models.examples import ExampleSource, QAExample

logger = logging.getLogger(__name__)

CORRECTION_CATEGORY = "correction"
CORRECTION_DESCRIPTION = "Recorded from a corrected query"


class ExampleStore:
    """
    Adds, retrieves and removes question/SQL examples.

    Usage:
        examples = ExampleStore(vector_store)
        await examples.add_example(
            QAExample(connection_id="shop", question="Top customers", sql_query=sql)
        )
        relevant = await examples.get_relevant_examples("shop", "best customers")
    """

    def __init__(self, vector_store: BaseVectorStore, config: ExampleSettings | None = None):
        self.vector_store = vector_store
        self.config = config or ExampleSettings()

    async def add_example(self, example: QAExample) -> bool:
        """
        Store an example, replacing one with the same id.

        Returns:
            False when the question or the SQL is empty

        Raises:
            VectorStoreError: If the example cannot be written
        """
        if not example.question.strip() or not example.sql_query.strip():
            logger.warning(
                f"Ignoring example without question or SQL for {example.connection_id}"
            )
            return False

        await self._save(example)
        logger.info(
            f"Added example {example.id} for {example.connection_id}",
            extra={"connection_id": example.connection_id, "source": example.source},
        )
        return True

    async def create_from_correction(
        self,
        connection_id: str,
        question: str,
        correct_sql: str,
        incorrect_sql: str | None = None,
        description: str | None = None,
    ) -> QAExample | None:
        """Record a corrected query as an example. Returns None if nothing was stored."""
        example = QAExample(
            connection_id=connection_id,
            question=question,
            sql_query=correct_sql,
            description=description or CORRECTION_DESCRIPTION,
            category=CORRECTION_CATEGORY,
            source=ExampleSource.CORRECTION,
            original_incorrect_sql=incorrect_sql,
        )
        return example if await self.add_example(example) else None

    async def update_example(self, example: QAExample) -> bool:
        """Re-save an edited example so its embedding follows the new text."""
        return await self.add_example(example)

    async def delete_example(self, connection_id: str, example_id: str) -> None:
        await self.vector_store.delete(connection_id, [QAExample.item_id(example_id)])
        logger.info(f"Deleted example {example_id} from {connection_id}")

    async def get_relevant_examples(
        self,
        connection_id: str,
        question: str,
        limit: int | None = None,
        min_relevance_score: float | None = None,
    ) -> list[QAExample]:
        """
        Enabled examples most similar to ``question``, best first.

        Searches twice ``limit`` candidates and keeps the first ``limit`` of
        them; disabled and unreadable ones are then skipped. Every returned
        example has its usage count and last-used time updated. Search
        failures are logged and yield no examples.
        """
        if not connection_id or not question.strip():
            return []
        limit = self.config.limit if limit is None else limit
        if limit < 1:
            return []
        threshold = (
            self.config.min_relevance_score if min_relevance_score is None else min_relevance_score
        )

        try:
            hits = [
                hit
                async for hit in self.vector_store.search(
                    connection_id, question, limit * 2, threshold
                )
            ]
        except VectorStoreError as e:
            logger.error(
                f"Example search failed for {connection_id}: {e}",
                extra={"connection_id": connection_id},
            )
            return []

        examples: list[QAExample] = []
        for hit in hits[:limit]:
            try:
                example = QAExample.model_validate_json(hit.text)
            except ValidationError as e:
                logger.warning(
                    f"Skipping unparseable example {hit.item_id}: {e.error_count()} errors"
                )
                continue
            if not example.is_enabled:
                continue

            logger.info(
                f"Using example {example.id} (relevance {hit.score:.2f})",
                extra={"connection_id": connection_id, "question": example.question},
            )
            examples.append(await self._record_usage(example))
        return examples

    async def _record_usage(self, example: QAExample) -> QAExample:
        used = example.model_copy(
            update={
                "usage_count": example.usage_count + 1,
                "last_used_at": datetime.now(UTC),
            }
        )
        try:
            await self._save(used)
        except VectorStoreError as e:
            logger.warning(f"Could not record usage of example {example.id}: {e}")
            return example
        return used

    async def _save(self, example: QAExample) -> None:
        await self.vector_store.save(
            example.connection_id,
            QAExample.item_id(example.id),
            example.model_dump_json(),
        )
