"""Persistent manifest of file hashes and past build runs."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

from ..config import DEFAULT_HISTORY_LIMIT
from ..logging import get_logger
from ..models import RunResult

MANIFEST_SCHEMA_VERSION = 1

logger = get_logger("manifest")


class _Hashed(Protocol):
    path: str
    hash: str


def _utcnow() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class RunSummary:
    """Condensed record of one past run kept in the manifest history."""

    id: str
    timestamp: str
    duration: float
    outcome: str
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    tasks: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: RunResult) -> "RunSummary":
        return cls(
            id=result.run_id,
            timestamp=result.started_at,
            duration=round(result.duration, 6),
            outcome=result.outcome.value,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
            tasks={
                report.category: {
                    "status": report.status.value,
                    "duration": None if report.duration is None else round(report.duration, 6),
                }
                for report in result.tasks
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "duration": self.duration,
            "outcome": self.outcome,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "tasks": self.tasks,
        }


@dataclass
class ManifestStatistics:
    """Aggregate counters across every recorded run."""

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    average_duration: float = 0.0

    def record(self, success: bool, duration: float) -> None:
        self.total_runs += 1
        if success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
        self.average_duration += (duration - self.average_duration) / self.total_runs


@dataclass
class Manifest:
    """In-memory form of the manifest file."""

    schema_version: int = MANIFEST_SCHEMA_VERSION
    created_at: str = field(default_factory=_utcnow)
    updated_at: Optional[str] = None
    files: Dict[str, str] = field(default_factory=dict)
    history: List[RunSummary] = field(default_factory=list)
    statistics: ManifestStatistics = field(default_factory=ManifestStatistics)

    def last_duration(self, category: str) -> Optional[float]:
        """Return the most recent successful duration recorded for ``category``."""
        for summary in reversed(self.history):
            entry = summary.tasks.get(category)
            if not entry or entry.get("status") != "success":
                continue
            duration = entry.get("duration")
            if isinstance(duration, (int, float)) and not isinstance(duration, bool):
                return float(duration)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "files": dict(sorted(self.files.items())),
            "history": [summary.to_dict() for summary in self.history],
            "statistics": {
                "total_runs": self.statistics.total_runs,
                "successful_runs": self.statistics.successful_runs,
                "failed_runs": self.statistics.failed_runs,
                "average_duration": round(self.statistics.average_duration, 6),
            },
        }


class ManifestStore:
    """Loads, updates and atomically persists the build manifest."""

    def __init__(self, path: Path, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.path = path
        self.history_limit = history_limit

    def load(self) -> Manifest:
        """Return the stored manifest, or an empty one when missing or unreadable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return Manifest()
        except (OSError, ValueError) as exc:
            logger.warning("Manifest at %s is unreadable (%s); forcing a full rebuild", self.path, exc)
            return Manifest()

        if not isinstance(data, dict):
            logger.warning("Manifest at %s is malformed; forcing a full rebuild", self.path)
            return Manifest()

        manifest = Manifest(
            schema_version=_as_int(data.get("schema_version"), MANIFEST_SCHEMA_VERSION),
            created_at=data["created_at"] if isinstance(data.get("created_at"), str) else _utcnow(),
            updated_at=data["updated_at"] if isinstance(data.get("updated_at"), str) else None,
            files=_load_files(data.get("files")),
            history=_load_history(data.get("history")),
            statistics=_load_statistics(data.get("statistics")),
        )
        if len(manifest.history) > self.history_limit:
            del manifest.history[: len(manifest.history) - self.history_limit]
        return manifest

    def save(self, manifest: Manifest) -> bool:
        """Write the manifest via a temporary file and an atomic rename."""
        manifest.updated_at = _utcnow()
        payload = json.dumps(manifest.to_dict(), indent=2, sort_keys=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.warning("Unable to write manifest to %s: %s", self.path, exc)
            return False
        return True

    @staticmethod
    def is_stale(file: _Hashed, manifest: Manifest) -> bool:
        """Return True when the stored hash is missing or differs from the current one."""
        return manifest.files.get(file.path) != file.hash

    def record_run(
        self, manifest: Manifest, result: RunResult, files: Mapping[str, str]
    ) -> None:
        """Fold a finished run into the manifest.

        ``files`` replaces the stored hash map; callers omit files whose build
        did not succeed so they are stale on the next run.
        """
        manifest.files = dict(files)
        manifest.history.append(RunSummary.from_result(result))
        if len(manifest.history) > self.history_limit:
            del manifest.history[: len(manifest.history) - self.history_limit]
        manifest.statistics.record(result.success, result.duration)


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _as_number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return default


def _load_files(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {
        path: digest
        for path, digest in raw.items()
        if isinstance(path, str) and isinstance(digest, str)
    }


def _load_history(raw: Any) -> List[RunSummary]:
    if not isinstance(raw, list):
        return []
    history: List[RunSummary] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        run_id = entry.get("id")
        timestamp = entry.get("timestamp")
        if not isinstance(run_id, str) or not isinstance(timestamp, str):
            continue
        tasks = entry.get("tasks")
        history.append(
            RunSummary(
                id=run_id,
                timestamp=timestamp,
                duration=_as_number(entry.get("duration")),
                outcome=str(entry.get("outcome", "unknown")),
                succeeded=_as_int(entry.get("succeeded"), 0),
                failed=_as_int(entry.get("failed"), 0),
                skipped=_as_int(entry.get("skipped"), 0),
                tasks={
                    key: value
                    for key, value in (tasks.items() if isinstance(tasks, dict) else ())
                    if isinstance(key, str) and isinstance(value, dict)
                },
            )
        )
    return history


def _load_statistics(raw: Any) -> ManifestStatistics:
    if not isinstance(raw, dict):
        return ManifestStatistics()
    return ManifestStatistics(
        total_runs=_as_int(raw.get("total_runs"), 0),
        successful_runs=_as_int(raw.get("successful_runs"), 0),
        failed_runs=_as_int(raw.get("failed_runs"), 0),
        average_duration=_as_number(raw.get("average_duration")),
    )


__all__ = ["Manifest", "ManifestStatistics", "ManifestStore", "RunSummary", "MANIFEST_SCHEMA_VERSION"]
