"""Prompt templates."""

from sqlcopilot.prompts.loader import PromptLoader

__all__ = ["PromptLoader"]
