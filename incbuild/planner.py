"""Task planning: one task per scoped build target."""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from .config import BuildConfig, ConfigError
from .graph import DependencyGraph, topological_sort
from .logging import get_logger
from .models import BuildTarget, Task
from .scope import BuildScope
from .stores import Manifest

logger = get_logger("planner")


class TaskPlanner:
    """Turns a resolved scope into tasks annotated with their task dependencies."""

    def __init__(self, config: BuildConfig, manifest: Optional[Manifest] = None) -> None:
        self.config = config
        self.manifest = manifest

    def plan(self, scope: BuildScope, graph: DependencyGraph) -> List[Task]:
        """Return tasks in dependency order.

        Task dependencies combine the categories a target declares and the
        categories owning files its members depend on, restricted to targets
        in scope; anything outside the scope is already up to date.
        """
        known = set(self.config.category_names())
        scoped: Dict[str, BuildTarget] = {}
        for target in scope.targets:
            if target.category not in known:
                raise ConfigError(f"Build target '{target.category}' has no category definition")
            scoped[target.category] = target

        requires: Dict[str, Set[str]] = {name: set() for name in scoped}
        for name, target in scoped.items():
            for declared in target.depends_on:
                if declared not in known:
                    raise ConfigError(
                        f"Build category '{name}' depends on unknown category '{declared}'"
                    )
                if declared in scoped:
                    requires[name].add(declared)
            for path in target.files:
                for dependency in graph.dependencies(path):
                    owner = graph.node(dependency).category
                    if owner is not None and owner != name and owner in scoped:
                        requires[name].add(owner)

        order = topological_sort(requires, kind="category")
        costs = self._estimate_costs(scoped, graph)
        ids = {name: f"{index + 1:03d}-{name}" for index, name in enumerate(order)}

        tasks: List[Task] = []
        for name in order:
            target = scoped[name]
            category = self.config.category(name)
            timeout = category.timeout if category.timeout is not None else self.config.task_timeout
            tasks.append(
                Task(
                    id=ids[name],
                    category=name,
                    files=target.files,
                    depends_on=tuple(ids[required] for required in sorted(requires[name])),
                    estimated_cost=costs[name],
                    timeout=timeout,
                    output_path=target.output,
                )
            )
            logger.debug(
                "Planned %s: %d files, depends on [%s]",
                ids[name],
                len(target.files),
                ", ".join(tasks[-1].depends_on),
            )
        return tasks

    def _estimate_costs(self, scoped: Dict[str, BuildTarget], graph: DependencyGraph) -> Dict[str, float]:
        # Seconds when every scoped category has a recorded duration, else bytes.
        if self.manifest is not None:
            durations = {name: self.manifest.last_duration(name) for name in scoped}
            if durations and all(value is not None for value in durations.values()):
                return {name: float(value) for name, value in durations.items() if value is not None}
        return {
            name: float(sum(graph.node(path).size for path in target.files))
            for name, target in scoped.items()
        }


__all__ = ["TaskPlanner"]
