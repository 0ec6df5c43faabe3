"""Tests for incbuild.planner."""

from __future__ import annotations

from pathlib import Path

import pytest

from incbuild.config import BuildConfig, CategoryConfig
from incbuild.errors import CycleError
from incbuild.models import RunOutcome, RunResult, TaskReport, TaskStatus
from incbuild.planner import TaskPlanner
from incbuild.scope import resolve_scope
from incbuild.stores import Manifest, ManifestStore
from tests._fixtures.graphs import make_config, make_graph


def _plan(config, graph, manifest=None):
    scope = resolve_scope(graph, Manifest(), config)
    return TaskPlanner(config, manifest).plan(scope, graph)


def test_one_task_per_target_in_dependency_order(tmp_path: Path) -> None:
    config = make_config(tmp_path, [("docs", "*.md"), ("code", "*.py")])
    graph = make_graph(
        {"lib.py": [], "app.py": ["lib.py"], "guide.md": ["app.py"]},
        categories={"lib.py": "code", "app.py": "code", "guide.md": "docs"},
    )

    tasks = _plan(config, graph)

    assert [task.category for task in tasks] == ["code", "docs"]
    code, docs = tasks
    assert code.id == "001-code"
    assert docs.id == "002-docs"
    assert code.files == ("lib.py", "app.py")
    assert docs.depends_on == ("001-code",)
    assert code.depends_on == ()


def test_declared_dependencies_only_apply_within_scope(tmp_path: Path) -> None:
    config = make_config(
        tmp_path,
        [("tests", "test_*"), ("code", "*.py")],
        depends_on={"tests": ("code",)},
    )
    graph = make_graph(
        {"app.py": [], "test_app.py": []},
        categories={"app.py": "code", "test_app.py": "tests"},
    )

    tasks = _plan(config, graph)
    by_category = {task.category: task for task in tasks}
    assert by_category["tests"].depends_on == (by_category["code"].id,)

    manifest = Manifest(files={path: graph.node(path).hash for path in graph.paths()})
    manifest.files["test_app.py"] = "old"
    scope = resolve_scope(graph, manifest, config)
    only_tests = TaskPlanner(config).plan(scope, graph)
    assert [task.category for task in only_tests] == ["tests"]
    assert only_tests[0].depends_on == ()


def test_cross_category_cycle_raises(tmp_path: Path) -> None:
    config = make_config(tmp_path, [("a", "a*"), ("b", "b*")])
    graph = make_graph(
        {"a1": ["b1"], "a2": [], "b1": ["a2"]},
        categories={"a1": "a", "a2": "a", "b1": "b"},
    )

    with pytest.raises(CycleError) as excinfo:
        _plan(config, graph)
    assert excinfo.value.kind == "category"
    assert set(excinfo.value.cycle) == {"a", "b"}


def test_timeouts_follow_category_then_global(tmp_path: Path) -> None:
    config = BuildConfig(
        root=tmp_path,
        manifest_path=tmp_path / "manifest.json",
        task_timeout=30.0,
        categories=(
            CategoryConfig(name="slow", patterns=("*.slow",), timeout=90.0),
            CategoryConfig(name="fast", patterns=("*",)),
        ),
    )
    graph = make_graph({"x.slow": [], "y.txt": []}, categories={"x.slow": "slow", "y.txt": "fast"})

    timeouts = {task.category: task.timeout for task in _plan(config, graph)}

    assert timeouts == {"slow": 90.0, "fast": 30.0}


def test_cost_defaults_to_member_bytes(tmp_path: Path) -> None:
    config = make_config(tmp_path, [("big", "big*"), ("small", "small*")])
    graph = make_graph(
        {"big1": [], "big2": [], "small1": []},
        categories={"big1": "big", "big2": "big", "small1": "small"},
        sizes={"big1": 400, "big2": 600, "small1": 5},
    )

    costs = {task.category: task.estimated_cost for task in _plan(config, graph)}

    assert costs == {"big": 1000.0, "small": 5.0}


def test_cost_uses_recorded_durations_when_complete(tmp_path: Path) -> None:
    config = make_config(tmp_path, [("big", "big*"), ("small", "small*")])
    graph = make_graph(
        {"big1": [], "small1": []},
        categories={"big1": "big", "small1": "small"},
        sizes={"big1": 1000, "small1": 1},
    )
    store = ManifestStore(tmp_path / "manifest.json")
    manifest = store.load()
    store.record_run(
        manifest,
        RunResult(
            run_id="r1",
            started_at="t",
            duration=3.0,
            outcome=RunOutcome.SUCCESS,
            tasks=[
                TaskReport("001-big", "big", TaskStatus.SUCCESS, 1, (), 0.2),
                TaskReport("002-small", "small", TaskStatus.SUCCESS, 1, (), 2.5),
            ],
        ),
        {},
    )

    costs = {task.category: task.estimated_cost for task in _plan(config, graph, manifest)}

    assert costs == {"big": 0.2, "small": 2.5}


def test_partial_history_falls_back_to_bytes(tmp_path: Path) -> None:
    config = make_config(tmp_path, [("big", "big*"), ("small", "small*")])
    graph = make_graph(
        {"big1": [], "small1": []},
        categories={"big1": "big", "small1": "small"},
        sizes={"big1": 1000, "small1": 1},
    )
    manifest = Manifest()
    store = ManifestStore(tmp_path / "manifest.json")
    store.record_run(
        manifest,
        RunResult(
            run_id="r1",
            started_at="t",
            duration=1.0,
            outcome=RunOutcome.SUCCESS,
            tasks=[TaskReport("001-big", "big", TaskStatus.SUCCESS, 1, (), 0.2)],
        ),
        {},
    )

    costs = {task.category: task.estimated_cost for task in _plan(config, graph, manifest)}

    assert costs == {"big": 1000.0, "small": 1.0}
