"""Dependency extractor implementations and discovery utilities."""

from __future__ import annotations

from importlib import metadata
from typing import Callable, Iterable, List, Sequence, Set

from ..config import ConfigError
from .base import DependencyExtractor
from .patterns import PatternExtractor

_ENTRY_POINT_GROUP = "incbuild.extractors"

_BUILTIN_FACTORIES: dict[str, Callable[[], DependencyExtractor]] = {
    "patterns": PatternExtractor,
}


class CompositeExtractor(DependencyExtractor):
    """Unions the references reported by every extractor that supports a file."""

    def __init__(self, extractors: Sequence[DependencyExtractor]) -> None:
        self.extractors = list(extractors)

    def supports(self, path: str) -> bool:
        return any(extractor.supports(path) for extractor in self.extractors)

    def extract(self, content: str, path: str) -> Set[str]:
        refs: Set[str] = set()
        for extractor in self.extractors:
            if extractor.supports(path):
                refs.update(extractor.extract(content, path))
        return refs


def discover_extractors(enabled: Sequence[str] | None = None) -> List[DependencyExtractor]:
    """Return instantiated extractors, limited to ``enabled`` names when given."""

    enabled_set: Set[str] | None = None
    if enabled is not None:
        enabled_set = {name.lower() for name in enabled}

    extractors: List[DependencyExtractor] = []
    seen: Set[str] = set()

    def _add(name: str, factory: Callable[[], DependencyExtractor]) -> None:
        key = name.lower()
        if enabled_set is not None and key not in enabled_set:
            return
        if key in seen:
            return
        instance = factory()
        if not isinstance(instance, DependencyExtractor):
            raise TypeError(f"Extractor factory for '{name}' did not return a DependencyExtractor")
        extractors.append(instance)
        seen.add(key)
        if enabled_set is not None:
            enabled_set.discard(key)

    for name, factory in _BUILTIN_FACTORIES.items():
        _add(name, factory)

    for entry in _iter_entry_points():
        try:
            loaded = entry.load()
        except Exception as exc:
            raise RuntimeError(f"Failed to load extractor entry point '{entry.name}': {exc}") from exc

        def _factory(obj: object = loaded) -> DependencyExtractor:
            return _coerce_extractor(obj)

        _add(entry.name, _factory)

    if enabled_set:
        missing = ", ".join(sorted(enabled_set))
        raise ConfigError(f"Unknown extractors requested: {missing}")

    return extractors


def default_extractor(enabled: Sequence[str] | None = None) -> DependencyExtractor:
    """Return a composite of the discoverable extractors, optionally filtered."""
    return CompositeExtractor(discover_extractors(enabled))


def _coerce_extractor(obj: object) -> DependencyExtractor:
    if isinstance(obj, DependencyExtractor):
        return obj
    if isinstance(obj, type) and issubclass(obj, DependencyExtractor):
        return obj()
    if callable(obj):
        instance = obj()
        if isinstance(instance, DependencyExtractor):
            return instance
    raise TypeError("Extractor entry point must be a DependencyExtractor subclass or factory")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "CompositeExtractor",
    "DependencyExtractor",
    "PatternExtractor",
    "default_extractor",
    "discover_extractors",
]
