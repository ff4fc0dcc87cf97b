"""Versioned artifact engine for AI chat: streaming generation, line-range edits, validation."""

__version__ = "1.0.0"
