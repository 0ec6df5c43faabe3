"""Incremental, dependency-aware parallel build orchestration."""

__version__ = "0.1.0"
