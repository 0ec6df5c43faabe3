"""Task executors invoked by the scheduler's worker pool."""

from __future__ import annotations

import shlex
import subprocess
from abc import ABC, abstractmethod
from typing import Callable

from .config import BuildConfig
from .logging import get_logger
from .models import ExecutionResult, Task

logger = get_logger("executor")

_MAX_CAPTURE = 64 * 1024


class TaskExecutor(ABC):
    """Contract for executors; implementations must treat the task as read-only."""

    @abstractmethod
    def execute(self, task: Task) -> ExecutionResult:
        """Perform the build action for ``task``."""

    def __call__(self, task: Task) -> ExecutionResult:
        return self.execute(task)


class NullExecutor(TaskExecutor):
    """Succeeds without doing anything; used for dry runs."""

    def execute(self, task: Task) -> ExecutionResult:
        return ExecutionResult(success=True, output=f"dry-run: {len(task.files)} files")


class CommandExecutor(TaskExecutor):
    """Runs the shell command configured for a task's category.

    The command may reference ``{files}``, ``{output}``, ``{category}`` and
    ``{root}``; values are shell-quoted. Categories without a command succeed
    immediately.
    """

    def __init__(
        self,
        config: BuildConfig,
        runner: Callable[..., subprocess.CompletedProcess] | None = None,
    ) -> None:
        self.config = config
        self._runner = runner or subprocess.run

    def render_command(self, task: Task) -> str | None:
        command = self.config.category(task.category).command
        if not command:
            return None
        replacements = {
            "{files}": " ".join(shlex.quote(path) for path in task.files),
            "{output}": shlex.quote(task.output_path or ""),
            "{category}": shlex.quote(task.category),
            "{root}": shlex.quote(str(self.config.root)),
        }
        for placeholder, value in replacements.items():
            command = command.replace(placeholder, value)
        return command

    def execute(self, task: Task) -> ExecutionResult:
        command = self.render_command(task)
        if command is None:
            return ExecutionResult(success=True, output=f"no command configured for '{task.category}'")

        logger.debug("Running %s: %s", task.id, command)
        try:
            completed = self._runner(
                command,
                shell=True,
                cwd=str(self.config.root),
                capture_output=True,
                text=True,
                timeout=task.timeout,
            )
        except subprocess.TimeoutExpired:
            return ExecutionResult(success=False, error=f"command exceeded {task.timeout}s: {command}")
        except OSError as exc:
            return ExecutionResult(success=False, error=f"unable to start command: {exc}")

        output = _truncate(completed.stdout or "")
        if completed.returncode != 0:
            error = _truncate(completed.stderr or "") or f"exit status {completed.returncode}"
            return ExecutionResult(success=False, output=output, error=error.strip())
        return ExecutionResult(success=True, output=output)


def _truncate(text: str) -> str:
    if len(text) <= _MAX_CAPTURE:
        return text
    return text[-_MAX_CAPTURE:]


__all__ = ["CommandExecutor", "NullExecutor", "TaskExecutor"]
