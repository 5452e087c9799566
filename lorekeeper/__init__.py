"""Agentic campaign-lore assistant core."""

__version__ = "0.1.0"
