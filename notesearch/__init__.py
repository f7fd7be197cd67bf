"""Hybrid full-text and semantic search engine for personal notes."""

__version__ = "0.1.0"
