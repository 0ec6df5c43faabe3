"""Resolution of the minimal set of stale build targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .config import BuildConfig, ConfigError
from .graph import DependencyGraph
from .logging import get_logger
from .models import BuildTarget
from .stores import Manifest, ManifestStore

logger = get_logger("scope")


@dataclass(frozen=True)
class BuildScope:
    """Targets selected for rebuild plus the evidence that selected them."""

    targets: Tuple[BuildTarget, ...]
    stale_files: frozenset[str]
    affected_files: frozenset[str]
    removed_files: frozenset[str]
    order: Tuple[str, ...]
    up_to_date: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.targets

    def categories(self) -> List[str]:
        return [target.category for target in self.targets]

    def target(self, category: str) -> Optional[BuildTarget]:
        for target in self.targets:
            if target.category == category:
                return target
        return None


def build_targets(graph: DependencyGraph, config: BuildConfig, order: Sequence[str]) -> Dict[str, BuildTarget]:
    """Return one target per configured category, members in build order."""
    members: Dict[str, List[str]] = {name: [] for name in config.category_names()}
    for path in order:
        category = graph.node(path).category
        if category in members:
            members[category].append(path)
    return {
        category.name: BuildTarget(
            category=category.name,
            files=tuple(members[category.name]),
            output=category.output,
            depends_on=category.depends_on,
        )
        for category in config.categories
    }


def resolve_scope(
    graph: DependencyGraph,
    manifest: Manifest,
    config: BuildConfig,
    *,
    requested: Sequence[str] | None = None,
    force_all: bool = False,
    order: Sequence[str] | None = None,
) -> BuildScope:
    """Select the targets that must be rebuilt.

    A target is included when ``force_all`` is set, when one of its files is
    stale, when a file it depends on (transitively) is stale, or when a file
    it owned disappeared since the manifest was written. Staleness is pushed
    from dependencies to dependents in a single pass over the build order.
    """
    known = config.category_names()
    if requested:
        unknown = sorted(set(requested) - set(known))
        if unknown:
            raise ConfigError(f"Unknown build categories requested: {', '.join(unknown)}")
    selected = set(requested) if requested else set(known)

    if order is None:
        order = graph.topological_order()

    stale: Set[str] = {
        path for path in graph.paths() if ManifestStore.is_stale(graph.node(path), manifest)
    }
    affected: Set[str] = set()
    for path in order:
        if path in stale or any(dependency in affected for dependency in graph.dependencies(path)):
            affected.add(path)

    removed = {path for path in manifest.files if path not in graph}
    touched: Set[str] = {
        category
        for category in (graph.node(path).category for path in affected)
        if category is not None
    }
    touched.update(
        category for category in (config.categorize(path) for path in removed) if category is not None
    )

    targets: List[BuildTarget] = []
    up_to_date: List[str] = []
    for name, target in build_targets(graph, config, order).items():
        if name not in selected:
            continue
        if (force_all and target.files) or name in touched:
            targets.append(target)
        elif target.files:
            up_to_date.append(name)

    logger.debug(
        "Scope: %d stale, %d affected, %d removed files; targets=%s",
        len(stale),
        len(affected),
        len(removed),
        ", ".join(target.category for target in targets) or "(none)",
    )
    return BuildScope(
        targets=tuple(targets),
        stale_files=frozenset(stale),
        affected_files=frozenset(affected),
        removed_files=frozenset(removed),
        order=tuple(order),
        up_to_date=tuple(up_to_date),
    )


__all__ = ["BuildScope", "build_targets", "resolve_scope"]
