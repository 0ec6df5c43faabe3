"""Core data models shared across incbuild components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class TaskStatus(str, Enum):
    """Lifecycle states of a scheduled task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)

    @property
    def blocks_dependents(self) -> bool:
        """Return True when dependents of a task in this state must not run."""
        return self in (
            TaskStatus.FAILED,
            TaskStatus.TIMEOUT,
            TaskStatus.SKIPPED,
            TaskStatus.CANCELLED,
        )


class RunOutcome(str, Enum):
    """Overall result of a build invocation."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FileMeta:
    """Metadata for an individual project file."""

    path: str
    size: int
    mtime_ns: int
    hash: str
    language: Optional[str] = None


@dataclass
class FileInventory:
    """Normalized view of the project handed to the graph builder."""

    root: str
    files: List[FileMeta]

    def by_path(self) -> Dict[str, FileMeta]:
        return {meta.path: meta for meta in self.files}

    def paths(self) -> List[str]:
        return sorted(meta.path for meta in self.files)

    def read_text(self, path: str) -> str:
        """Return the UTF-8 content of ``path`` relative to the inventory root."""
        return (Path(self.root) / path).read_text(encoding="utf-8")


@dataclass(frozen=True)
class FileNode:
    """A file in the dependency graph, addressed by its relative path."""

    path: str
    hash: str
    mtime_ns: int
    size: int
    category: Optional[str] = None
    dependencies: frozenset[str] = frozenset()
    dependents: frozenset[str] = frozenset()


@dataclass(frozen=True)
class DependencyEdge:
    """Directed edge from a dependency to the file that depends on it."""

    dependency: str
    dependent: str


@dataclass(frozen=True)
class BuildTarget:
    """A build category and the files it owns for the current run."""

    category: str
    files: Tuple[str, ...]
    output: Optional[str] = None
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionResult:
    """Value returned by a task executor."""

    success: bool
    output: str = ""
    error: str = ""

    @classmethod
    def coerce(cls, value: object) -> "ExecutionResult":
        """Accept an ExecutionResult, a ``(success, output, error)`` tuple or a bool."""
        if isinstance(value, ExecutionResult):
            return value
        if isinstance(value, bool):
            return cls(success=value)
        if isinstance(value, (tuple, list)) and 1 <= len(value) <= 3:
            success, output, error = (list(value) + ["", ""])[:3]
            return cls(
                success=bool(success),
                output="" if output is None else str(output),
                error="" if error is None else str(error),
            )
        raise TypeError(
            f"Task executor returned {type(value).__name__}; expected ExecutionResult or (success, output, error)"
        )


@dataclass
class Task:
    """Unit of work for one build category.

    The scheduler's coordinating thread is the only writer of ``status``,
    the timestamps and the result fields once a run starts.
    """

    id: str
    category: str
    files: Tuple[str, ...]
    depends_on: Tuple[str, ...] = ()
    estimated_cost: float = 0.0
    timeout: Optional[float] = None
    output_path: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    output: str = ""
    error: str = ""

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.ended_at is None:
            return None
        return max(0.0, self.ended_at - self.started_at)


@dataclass(frozen=True)
class TaskReport:
    """Immutable snapshot of a finished task, kept in the run summary."""

    id: str
    category: str
    status: TaskStatus
    file_count: int
    depends_on: Tuple[str, ...]
    duration: Optional[float]
    output: str = ""
    error: str = ""

    @classmethod
    def from_task(cls, task: Task) -> "TaskReport":
        return cls(
            id=task.id,
            category=task.category,
            status=task.status,
            file_count=len(task.files),
            depends_on=task.depends_on,
            duration=task.duration,
            output=task.output,
            error=task.error,
        )


@dataclass
class RunResult:
    """Aggregate outcome of one build invocation."""

    run_id: str
    started_at: str
    duration: float
    outcome: RunOutcome
    tasks: List[TaskReport] = field(default_factory=list)
    up_to_date: List[str] = field(default_factory=list)
    strict: bool = False

    def _count(self, *statuses: TaskStatus) -> int:
        return sum(1 for task in self.tasks if task.status in statuses)

    @property
    def succeeded(self) -> int:
        return self._count(TaskStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(TaskStatus.FAILED, TaskStatus.TIMEOUT)

    @property
    def timed_out(self) -> int:
        return self._count(TaskStatus.TIMEOUT)

    @property
    def skipped(self) -> int:
        return self._count(TaskStatus.SKIPPED)

    @property
    def cancelled(self) -> int:
        return self._count(TaskStatus.CANCELLED)

    @property
    def success(self) -> bool:
        if self.outcome is not RunOutcome.SUCCESS:
            return False
        if self.strict and self.skipped:
            return False
        return True

    def task(self, category: str) -> Optional[TaskReport]:
        for report in self.tasks:
            if report.category == category:
                return report
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-ready summary for report collaborators."""
        return {
            "id": self.run_id,
            "started_at": self.started_at,
            "duration": round(self.duration, 6),
            "outcome": self.outcome.value,
            "success": self.success,
            "strict": self.strict,
            "counts": {
                "succeeded": self.succeeded,
                "failed": self.failed,
                "timed_out": self.timed_out,
                "skipped": self.skipped,
                "cancelled": self.cancelled,
            },
            "up_to_date": list(self.up_to_date),
            "tasks": [
                {
                    "id": report.id,
                    "category": report.category,
                    "status": report.status.value,
                    "files": report.file_count,
                    "depends_on": list(report.depends_on),
                    "duration": report.duration,
                    "error": report.error,
                }
                for report in self.tasks
            ],
        }
