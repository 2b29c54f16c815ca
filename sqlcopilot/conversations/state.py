"""
Conversation State Manager

Per-connection conversation context: a bounded turn history, the entities
mentioned so far and the active filters of the last query. Used to
classify follow-up questions and rewrite them into self-contained ones.

Contexts live in memory for the lifetime of the process (until cleared).
Every read-modify-write of a connection's context runs under that
connection's ``asyncio.Lock``.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlcopilot.config import ConversationSettings
from sqlcopilot.conversations.lexicon import DEFAULT_LEXICON, ConversationLexicon
from sqlcopilot.models.conversation import (
    ConversationContext,
    ConversationTurn,
    FollowupQueryType,
)

logger = logging.getLogger(__name__)

LAST_WHERE = "last_where"
TIME_RANGE = "time_range"


def summarize_result(result: list[dict[str, Any]] | None) -> str:
    if not result:
        return "no results"
    return f"{len(result)} records, {len(result[0])} fields"


class ConversationStateManager:
    """
    Tracks multi-turn context and rewrites follow-up questions.

    Usage:
        manager = ConversationStateManager()
        await manager.update_context("shop", 'orders for "Acme Corp"', answer, sql, rows)
        await manager.resolve_coreferences("shop", "how much did it cost")
        # 'how much did Acme Corp cost'
    """

    def __init__(
        self,
        config: ConversationSettings | None = None,
        lexicon: ConversationLexicon = DEFAULT_LEXICON,
    ):
        self.config = config or ConversationSettings()
        self.lexicon = lexicon
        self._contexts: dict[str, ConversationContext] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @asynccontextmanager
    async def _locked(self, connection_id: str) -> AsyncIterator[None]:
        """Hold the connection's lock; drop it once unused and the context is gone."""
        lock = self._locks.setdefault(connection_id, asyncio.Lock())
        self._lock_users[connection_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[connection_id] -= 1
            if not self._lock_users[connection_id] and connection_id not in self._contexts:
                del self._lock_users[connection_id]
                self._locks.pop(connection_id, None)

    async def update_context(
        self,
        connection_id: str,
        user_message: str,
        assistant_message: str,
        sql: str,
        result: list[dict[str, Any]] | None,
    ) -> ConversationTurn:
        """Record a completed turn and refresh entities and active filters."""
        turn = ConversationTurn(
            user_message=user_message,
            assistant_message=assistant_message,
            generated_sql=sql or "",
            result_summary=summarize_result(result),
            extracted_entities=tuple(self.extract_entities(user_message)),
        )

        async with self._locked(connection_id):
            context = self._contexts.setdefault(
                connection_id, ConversationContext(connection_id=connection_id)
            )
            context.history.append(turn)
            context.referenced_entities.update(turn.extracted_entities)

            if where := self.extract_where_clause(sql or ""):
                context.active_filters[LAST_WHERE] = where
            if time_range := self.extract_time_range(user_message):
                context.active_filters[TIME_RANGE] = time_range

            if len(context.history) > self.config.max_turns:
                del context.history[: len(context.history) - self.config.max_turns]

            logger.debug(
                f"Recorded turn for {connection_id}",
                extra={
                    "connection_id": connection_id,
                    "history_length": len(context.history),
                    "entities": list(turn.extracted_entities),
                },
            )
        return turn

    async def resolve_coreferences(self, connection_id: str, message: str) -> str:
        """Rewrite a follow-up so it no longer depends on earlier turns."""
        async with self._locked(connection_id):
            context = self._contexts.get(connection_id)
            if context is None or not context.history:
                return message
            return self._resolve(context, message)

    async def analyze_followup_query(
        self, connection_id: str, message: str
    ) -> FollowupQueryType:
        """Classify how a message relates to the conversation so far."""
        async with self._locked(connection_id):
            context = self._contexts.get(connection_id)
            if context is None or not context.history:
                return FollowupQueryType.NEW_QUERY

        for query_type, keywords in self.lexicon.classification_order():
            if keywords.matches(message):
                return query_type
        return FollowupQueryType.NEW_QUERY

    async def process_incremental_query(
        self,
        connection_id: str,
        message: str,
        query_type: FollowupQueryType,
    ) -> str:
        """Rewrite a follow-up so it carries the previous question along."""
        async with self._locked(connection_id):
            context = self._contexts.get(connection_id)
            if context is None or context.last_turn is None:
                return message

            match query_type:
                case FollowupQueryType.NEW_QUERY:
                    return message
                case FollowupQueryType.PRONOUN_REFERENCE:
                    return self._resolve(context, message)
                case (
                    FollowupQueryType.FILTER_REFINEMENT
                    | FollowupQueryType.AGGREGATION_CHANGE
                    | FollowupQueryType.COLUMN_EXPANSION
                    | FollowupQueryType.SORTING_CHANGE
                    | FollowupQueryType.COMPARISON
                ):
                    template = self.lexicon.templates[query_type]
                    return template.format(previous=context.last_turn.user_message, message=message)

    async def get_context(self, connection_id: str) -> ConversationContext | None:
        """Snapshot of a connection's context."""
        async with self._locked(connection_id):
            context = self._contexts.get(connection_id)
            return context.model_copy(deep=True) if context else None

    async def clear_context(self, connection_id: str) -> bool:
        async with self._locked(connection_id):
            removed = self._contexts.pop(connection_id, None) is not None
        if removed:
            logger.info(f"Cleared conversation context for {connection_id}")
        return removed

    def active_connections(self) -> list[str]:
        return list(self._contexts)

    def extract_entities(self, message: str) -> list[str]:
        """Numbers, quoted strings and capitalised words, in pattern order, distinct."""
        entities: list[str] = []
        for pattern in self.lexicon.entity_patterns:
            for match in pattern.finditer(message):
                entity = match.group(1) if pattern.groups else match.group(0)
                if entity and entity not in entities:
                    entities.append(entity)
        return entities

    def extract_where_clause(self, sql: str) -> str | None:
        match = self.lexicon.where_pattern.search(sql)
        return match.group(1).strip() if match else None

    def extract_time_range(self, message: str) -> str | None:
        for pattern in self.lexicon.time_range_patterns:
            if match := pattern.search(message):
                return match.group(0)
        return None

    def extract_table_context(self, message: str) -> str:
        if match := self.lexicon.table_context_pattern.search(message):
            return match.group(0)
        for word in message.replace("，", " ").replace("。", " ").split():
            if any(term in word for term in self.lexicon.table_context_terms):
                return word
        return ""

    def _resolve(self, context: ConversationContext, message: str) -> str:
        lexicon = self.lexicon
        resolved = message

        if lexicon.pronouns.matches(resolved):
            if entity := self._recent_entity(context):
                resolved = lexicon.pronouns.replace(resolved, entity)

        if lexicon.continuation_markers.matches(resolved):
            resolved = self._add_implicit_context(context, resolved)

        time_range = context.active_filters.get(TIME_RANGE)
        if time_range and lexicon.relative_time_words.matches(resolved):
            resolved = lexicon.relative_time_words.replace(resolved, time_range)

        if lexicon.result_references.matches(resolved):
            resolved = lexicon.result_reference_prefix.format(message=resolved)

        if resolved != message:
            logger.debug(
                "Resolved follow-up question",
                extra={"connection_id": context.connection_id, "resolved": resolved},
            )
        return resolved

    def _recent_entity(self, context: ConversationContext) -> str | None:
        recent = context.history[-self.config.entity_lookback_turns :]
        for turn in reversed(recent):
            if turn.extracted_entities:
                return turn.extracted_entities[0]
        return None

    def _add_implicit_context(self, context: ConversationContext, message: str) -> str:
        enhanced = message
        last_turn = context.last_turn
        if (
            last_turn is not None
            and not self.lexicon.table_words.matches(message)
            and self.lexicon.table_words.matches(last_turn.user_message)
        ):
            if table_context := self.extract_table_context(last_turn.user_message):
                enhanced = self.lexicon.table_context_prefix.format(
                    table=table_context, message=enhanced
                )

        if time_range := context.active_filters.get(TIME_RANGE):
            enhanced = self.lexicon.time_range_prefix.format(
                time_range=time_range, message=enhanced
            )
        return enhanced
