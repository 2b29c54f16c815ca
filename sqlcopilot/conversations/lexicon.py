"""
Conversation Lexicon

Keyword tables, extraction patterns and rewrite templates used to analyse
and rewrite follow-up questions. ``DEFAULT_LEXICON`` covers English and
Chinese; pass a different ``ConversationLexicon`` to the state manager to
localise or tune it.
"""

import re
from dataclasses import dataclass, field

from sqlcopilot.models.conversation import FollowupQueryType
from sqlcopilot.utils.keywords import KeywordSet


def _default_templates() -> dict[FollowupQueryType, str]:
    return {
        FollowupQueryType.FILTER_REFINEMENT: (
            "Previous query: {previous}\nNarrow or change its filter: {message}"
        ),
        FollowupQueryType.AGGREGATION_CHANGE: (
            "Previous query: {previous}\nUsing the same tables and conditions: {message}"
        ),
        FollowupQueryType.COLUMN_EXPANSION: (
            "Previous query: {previous}\nKeep its result and additionally: {message}"
        ),
        FollowupQueryType.SORTING_CHANGE: (
            "Previous query: {previous}\nKeep its content and conditions, then: {message}"
        ),
        FollowupQueryType.COMPARISON: (
            "Previous query: {previous}\nCompare the current request with that result: {message}"
        ),
    }


@dataclass(frozen=True)
class ConversationLexicon:
    """Language resources for follow-up analysis."""

    # Checked in this order by follow-up classification
    filter_words: KeywordSet = KeywordSet(
        ("筛选", "过滤", "条件", "只要", "除了", "不包括", "条件是", "where", "filter")
    )
    aggregation_words: KeywordSet = KeywordSet(
        ("统计", "计算", "求和", "平均", "最大", "最小", "count", "sum", "avg", "max", "min")
    )
    column_expansion_words: KeywordSet = KeywordSet(
        ("加上", "还要", "也显示", "包括", "以及", "and", "include", "show")
    )
    sort_words: KeywordSet = KeywordSet(
        ("排序", "排列", "按", "升序", "降序", "order", "sort", "asc", "desc")
    )
    pronouns: KeywordSet = KeywordSet(
        ("它们", "他们", "这个", "那个", "它", "this", "that", "they", "them", "it")
    )
    comparison_words: KeywordSet = KeywordSet(
        ("比较", "对比", "差异", "相同", "不同", "compare", "difference", "versus")
    )

    continuation_markers: KeywordSet = KeywordSet(("也", "还", "再", "and", "also", "too"))
    table_words: KeywordSet = KeywordSet(("表", "table", "用户", "订单", "商品", "客户"))
    relative_time_words: KeywordSet = KeywordSet(
        ("同期", "同比", "环比", "上次", "之前", "same period", "last time", "previously")
    )
    result_references: KeywordSet = KeywordSet(
        ("其中", "这些", "那些", "among them", "of these", "of those")
    )

    entity_patterns: tuple[re.Pattern, ...] = (
        re.compile(r"\d+"),
        re.compile(r"'([^']*)'"),
        re.compile(r'"([^"]*)"'),
        re.compile(r"\b[A-Z][a-z]+\b"),
    )
    where_pattern: re.Pattern = re.compile(
        r"\bWHERE\s+(.+?)(?=\s+GROUP\s+BY\b|\s+ORDER\s+BY\b|\s+HAVING\b|\s+LIMIT\b|\s*;?\s*\Z)",
        re.IGNORECASE | re.DOTALL,
    )
    time_range_patterns: tuple[re.Pattern, ...] = (
        re.compile(r"(最近|最后|过去|前)\s*(\d+)\s*(天|月|年|小时|分钟)"),
        re.compile(
            r"\b(last|past|previous)\s+(\d+)\s+(minutes?|hours?|days?|weeks?|months?|years?)\b",
            re.IGNORECASE,
        ),
    )
    table_context_pattern: re.Pattern = re.compile(r"\b(\w+)\s+table\b", re.IGNORECASE)
    table_context_terms: tuple[str, ...] = ("表", "用户", "订单")

    table_context_prefix: str = "In the context of {table}, {message}"
    time_range_prefix: str = "{time_range}, {message}"
    result_reference_prefix: str = "Based on the previous query's result, {message}"
    templates: dict[FollowupQueryType, str] = field(default_factory=_default_templates)

    def classification_order(self) -> list[tuple[FollowupQueryType, KeywordSet]]:
        return [
            (FollowupQueryType.FILTER_REFINEMENT, self.filter_words),
            (FollowupQueryType.AGGREGATION_CHANGE, self.aggregation_words),
            (FollowupQueryType.COLUMN_EXPANSION, self.column_expansion_words),
            (FollowupQueryType.SORTING_CHANGE, self.sort_words),
            (FollowupQueryType.PRONOUN_REFERENCE, self.pronouns),
            (FollowupQueryType.COMPARISON, self.comparison_words),
        ]


DEFAULT_LEXICON = ConversationLexicon()
