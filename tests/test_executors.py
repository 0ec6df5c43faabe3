"""Tests for incbuild.executors."""

from __future__ import annotations

import subprocess
from pathlib import Path

from incbuild.config import BuildConfig, CategoryConfig
from incbuild.executors import CommandExecutor, NullExecutor
from incbuild.models import Task


def _config(tmp_path: Path, command: str | None) -> BuildConfig:
    return BuildConfig(
        root=tmp_path,
        manifest_path=tmp_path / "manifest.json",
        categories=(CategoryConfig(name="code", patterns=("*",), command=command, output="out dir"),),
    )


def _task(**overrides) -> Task:
    values = dict(
        id="001-code",
        category="code",
        files=("src/a.py", "src/b c.py"),
        timeout=5.0,
        output_path="out dir",
    )
    values.update(overrides)
    return Task(**values)


class FakeRunner:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "", raises=None) -> None:
        self.calls = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.raises = raises

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        if self.raises is not None:
            raise self.raises
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)


def test_null_executor_always_succeeds() -> None:
    result = NullExecutor()(_task())

    assert result.success
    assert result.output == "dry-run: 2 files"


def test_render_command_quotes_placeholders(tmp_path: Path) -> None:
    executor = CommandExecutor(_config(tmp_path, "lint {files} --out {output} --name {category}"))

    command = executor.render_command(_task())

    assert command == "lint src/a.py 'src/b c.py' --out 'out dir' --name code"


def test_missing_command_succeeds_without_running(tmp_path: Path) -> None:
    runner = FakeRunner()

    result = CommandExecutor(_config(tmp_path, None), runner=runner).execute(_task())

    assert result.success
    assert runner.calls == []


def test_successful_command_captures_output(tmp_path: Path) -> None:
    runner = FakeRunner(stdout="built\n")

    result = CommandExecutor(_config(tmp_path, "make {category}"), runner=runner).execute(_task())

    assert result.success
    assert result.output == "built\n"
    command, kwargs = runner.calls[0]
    assert command == "make code"
    assert kwargs["cwd"] == str(tmp_path)
    assert kwargs["timeout"] == 5.0
    assert kwargs["shell"] is True


def test_non_zero_exit_reports_stderr(tmp_path: Path) -> None:
    runner = FakeRunner(returncode=2, stderr="syntax error on line 3\n")

    result = CommandExecutor(_config(tmp_path, "make"), runner=runner).execute(_task())

    assert not result.success
    assert result.error == "syntax error on line 3"


def test_non_zero_exit_without_stderr_reports_status(tmp_path: Path) -> None:
    result = CommandExecutor(_config(tmp_path, "make"), runner=FakeRunner(returncode=7)).execute(_task())

    assert result.error == "exit status 7"


def test_command_timeout_is_a_failure(tmp_path: Path) -> None:
    runner = FakeRunner(raises=subprocess.TimeoutExpired("make", 5.0))

    result = CommandExecutor(_config(tmp_path, "make"), runner=runner).execute(_task())

    assert not result.success
    assert "exceeded" in result.error


def test_unstartable_command_is_a_failure(tmp_path: Path) -> None:
    runner = FakeRunner(raises=FileNotFoundError("no shell"))

    result = CommandExecutor(_config(tmp_path, "make"), runner=runner).execute(_task())

    assert not result.success
    assert "no shell" in result.error


def test_long_output_is_truncated(tmp_path: Path) -> None:
    runner = FakeRunner(stdout="x" * 100_000 + "tail")

    result = CommandExecutor(_config(tmp_path, "make"), runner=runner).execute(_task())

    assert len(result.output) == 64 * 1024
    assert result.output.endswith("tail")


def test_real_shell_command_runs(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    executor = CommandExecutor(_config(tmp_path, "echo {category} > marker.txt"))

    result = executor.execute(_task())

    assert result.success
    assert (tmp_path / "marker.txt").read_text(encoding="utf-8").strip() == "code"
