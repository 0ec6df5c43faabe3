"""Exception hierarchy for structural and configuration failures."""

from __future__ import annotations

from typing import Sequence


class BuildError(RuntimeError):
    """Base class for errors that abort a run before any task executes."""


class CycleError(BuildError):
    """Raised when a dependency cycle prevents a valid build order."""

    def __init__(self, cycle: Sequence[str], *, kind: str = "file") -> None:
        self.cycle = list(cycle)
        self.kind = kind
        super().__init__(f"Dependency cycle detected between {kind}s: {' -> '.join(self.cycle)}")


class SchedulerError(BuildError):
    """Raised when the task list handed to the scheduler is inconsistent."""


__all__ = ["BuildError", "CycleError", "SchedulerError"]
