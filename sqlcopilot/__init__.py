"""
SQL Copilot

Text-to-SQL engine: schema linking over a vector store, an
execute -> validate -> repair loop, and multi-turn conversation context.
"""

__version__ = "0.1.0"
