"""Pipeline orchestration for incremental build runs."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import BuildConfig, load_config
from .errors import CycleError
from .executors import CommandExecutor, NullExecutor, TaskExecutor
from .extractors import DependencyExtractor, default_extractor
from .graph import DependencyGraph, build_graph
from .logging import get_logger
from .models import FileInventory, RunOutcome, RunResult, Task, TaskStatus
from .planner import TaskPlanner
from .repo_scanner import ProjectScanner
from .scheduler import ParallelScheduler
from .scope import BuildScope, resolve_scope
from .stores import Manifest, ManifestStore


@dataclass
class BuildPlan:
    """Everything computed before any task runs."""

    config: BuildConfig
    inventory: FileInventory
    graph: DependencyGraph
    order: List[str]
    manifest: Manifest
    scope: BuildScope
    tasks: List[Task]


class BuildOrchestrator:
    """Coordinates scan, graph, scope, planning, scheduling and persistence."""

    def __init__(
        self,
        config: BuildConfig | None = None,
        scanner: ProjectScanner | None = None,
        extractor: DependencyExtractor | None = None,
        executor: TaskExecutor | None = None,
    ) -> None:
        self._config_override = config
        self._scanner = scanner
        self.extractor = extractor
        self.executor = executor
        self.logger = get_logger("orchestrator")

    def plan(
        self,
        path: str | Path = ".",
        *,
        categories: Optional[Sequence[str]] = None,
        force: bool = False,
    ) -> BuildPlan:
        """Resolve what a build would do without executing anything.

        Raises CycleError when the file graph is not a DAG and ConfigError for
        invalid configuration or unknown requested categories.
        """
        config = self._load_config(Path(path))
        self.logger.info("Planning build for %s", config.root)

        scanner = self._scanner or ProjectScanner(config.exclude_paths)
        inventory = scanner.scan(config.root)
        self.logger.debug("Scanner discovered %d files", len(inventory.files))

        extractor = self.extractor or default_extractor(config.extractors)
        graph = build_graph(inventory, extractor, config.categorize)

        cycle = graph.find_cycle()
        if cycle is not None:
            error = CycleError(cycle)
            self.logger.error("%s", error)
            raise error
        order = graph.topological_order()

        store = ManifestStore(config.manifest_path, history_limit=config.history_limit)
        manifest = store.load()

        scope = resolve_scope(
            graph,
            manifest,
            config,
            requested=categories,
            force_all=force,
            order=order,
        )
        tasks = TaskPlanner(config, manifest).plan(scope, graph)
        self.logger.info(
            "%d of %d files stale; %d tasks planned (%s up to date)",
            len(scope.stale_files),
            len(graph),
            len(tasks),
            ", ".join(scope.up_to_date) or "nothing",
        )
        return BuildPlan(
            config=config,
            inventory=inventory,
            graph=graph,
            order=order,
            manifest=manifest,
            scope=scope,
            tasks=tasks,
        )

    def run(
        self,
        path: str | Path = ".",
        *,
        categories: Optional[Sequence[str]] = None,
        force: bool = False,
        dry_run: bool = False,
        cancel_event: threading.Event | None = None,
        max_workers: int | None = None,
        strict: bool | None = None,
    ) -> RunResult:
        """Rebuild the stale targets of the project at ``path``."""
        build_plan = self.plan(path, categories=categories, force=force)
        config = build_plan.config

        if dry_run:
            executor: TaskExecutor = NullExecutor()
        else:
            executor = self.executor or CommandExecutor(config)

        scheduler = ParallelScheduler(
            executor,
            max_workers=max_workers if max_workers is not None else config.max_workers,
            strict=config.strict if strict is None else strict,
        )
        result = scheduler.run(
            build_plan.tasks,
            cancel_event=cancel_event,
            run_id=uuid.uuid4().hex,
        )
        result.up_to_date = list(build_plan.scope.up_to_date)

        if dry_run:
            self.logger.info("Dry run: manifest left untouched")
            return result

        store = ManifestStore(config.manifest_path, history_limit=config.history_limit)
        hashes = _updated_hashes(build_plan, result)
        store.record_run(build_plan.manifest, result, hashes)
        if not store.save(build_plan.manifest):
            self.logger.warning("Run recorded in memory only; next run will rebuild")
        if result.outcome is RunOutcome.CANCELLED:
            self.logger.warning("Run %s was cancelled", result.run_id[:8])
        return result

    def _load_config(self, path: Path) -> BuildConfig:
        if self._config_override is not None:
            return self._config_override
        root = path.expanduser().resolve()
        if not root.exists():
            raise FileNotFoundError(f"Project path not found: {path}")
        return load_config(root)


def _updated_hashes(build_plan: BuildPlan, result: RunResult) -> Dict[str, str]:
    """Return the hash map to persist after ``result``.

    A file keeps its current hash when its category succeeded, or when its
    category was not attempted and the file was not affected. Files in a
    category that ran without succeeding are dropped so they stay stale.
    """
    statuses = {report.category: report.status for report in result.tasks}
    affected = build_plan.scope.affected_files

    hashes: Dict[str, str] = {}
    for path in build_plan.graph.paths():
        node = build_plan.graph.node(path)
        if node.category is None:
            hashes[path] = node.hash
            continue
        status = statuses.get(node.category)
        if status is TaskStatus.SUCCESS:
            hashes[path] = node.hash
        elif status is None and path not in affected:
            hashes[path] = node.hash
    return hashes


__all__ = ["BuildOrchestrator", "BuildPlan"]
