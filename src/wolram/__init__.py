"""Governed lifecycle orchestration for AI-assisted coding jobs."""

__version__ = "0.3.0"
