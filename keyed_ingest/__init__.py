"""Streaming ingestion into a persistent, deduplicated keyed store."""

__version__ = "0.1.0"
