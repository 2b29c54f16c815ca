"""
LLM Provider Module

Text-generation abstraction used to draft and repair SQL.

Usage:
    from sqlcopilot.config import get_settings
    from sqlcopilot.llm import LLMProviderFactory, PromptCompleter

    provider = LLMProviderFactory.create_default_provider(get_settings().llm)
    completer = PromptCompleter(provider)
    sql = await completer.complete("sql/generate_sql.md", user_message=..., schema_info=...)
"""

from sqlcopilot.llm.base import BaseLLMProvider
from sqlcopilot.llm.completion import CompletionError, PromptCompleter, TextCompleter
from sqlcopilot.llm.factory import LLMProviderFactory
from sqlcopilot.llm.local import LocalProvider
from sqlcopilot.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage
from sqlcopilot.llm.openai import OpenAIProvider

__all__ = [
    "BaseLLMProvider",
    "CompletionError",
    "LLMMessage",
    "LLMProviderFactory",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "LocalProvider",
    "OpenAIProvider",
    "PromptCompleter",
    "TextCompleter",
]
