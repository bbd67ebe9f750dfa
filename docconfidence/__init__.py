"""Confidence scoring for LLM output and concurrent field extraction from scanned documents."""

__version__ = "1.0.0"
