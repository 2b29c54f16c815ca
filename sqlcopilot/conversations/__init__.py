"""
Conversations Module

Multi-turn context tracking and follow-up question rewriting.
"""

from sqlcopilot.conversations.lexicon import DEFAULT_LEXICON, ConversationLexicon
from sqlcopilot.conversations.state import ConversationStateManager, summarize_result

__all__ = [
    "DEFAULT_LEXICON",
    "ConversationLexicon",
    "ConversationStateManager",
    "summarize_result",
]
