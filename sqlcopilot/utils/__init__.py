"""Shared utilities."""

from sqlcopilot.utils.keywords import KeywordSet
from sqlcopilot.utils.naming import storage_name

__all__ = ["KeywordSet", "storage_name"]
