"""Persistent stores used across build runs."""

from .manifest import Manifest, ManifestStatistics, ManifestStore, RunSummary

__all__ = ["Manifest", "ManifestStatistics", "ManifestStore", "RunSummary"]
