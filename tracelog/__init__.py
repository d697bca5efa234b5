"""Normalize agent pipeline execution logs into canonical step sequences."""

__version__ = "0.1.0"
