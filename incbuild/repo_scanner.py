"""Project scanning: walk the tree, honour exclusions and hash every file."""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from .config import STATE_DIRNAME, path_matches
from .logging import get_logger
from .models import FileInventory, FileMeta

# Tool and VCS directories are never part of a build.
_ALWAYS_SKIPPED = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".venv",
        "venv",
        "node_modules",
        "__pycache__",
        ".pytest_cache",
        ".mypy_cache",
        ".idea",
        ".vscode",
        ".DS_Store",
        "Thumbs.db",
        STATE_DIRNAME,
    }
)

_SUFFIXES_BY_LANGUAGE = {
    "Python": (".py", ".pyi"),
    "JavaScript": (".js", ".mjs", ".cjs", ".jsx"),
    "TypeScript": (".ts", ".tsx"),
    "C": (".c", ".h"),
    "C++": (".cpp", ".cc", ".hpp", ".hh"),
    "CSS": (".css", ".scss", ".less"),
    "HTML": (".html", ".htm"),
    "Markdown": (".md",),
    "PowerShell": (".ps1", ".psm1"),
    "Shell": (".sh", ".bash"),
}
_LANGUAGE_BY_SUFFIX = {
    suffix: language for language, suffixes in _SUFFIXES_BY_LANGUAGE.items() for suffix in suffixes
}

HASH_CACHE_FILENAME = "hash_cache.json"
_HASH_CACHE_VERSION = 1
_CHUNK_SIZE = 1024 * 1024

logger = get_logger("scanner")


@dataclass(frozen=True)
class ExcludeRule:
    """One exclusion pattern, from ``.gitignore`` or ``exclude_paths``."""

    pattern: str
    negate: bool = False
    directory_only: bool = False
    anchored: bool = False

    @classmethod
    def parse(cls, line: str) -> Optional["ExcludeRule"]:
        text = line.strip()
        if not text or text.startswith("#"):
            return None
        negate = text.startswith("!")
        text = text[1:] if negate else text
        directory_only = text.endswith("/")
        anchored = text.startswith("/")
        text = text.strip("/")
        if not text:
            return None
        return cls(pattern=text, negate=negate, directory_only=directory_only, anchored=anchored)

    def applies_to(self, rel_path: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        if self.anchored and "/" not in self.pattern:
            return fnmatchcase(rel_path, self.pattern)
        return path_matches(rel_path, self.pattern)


def _read_gitignore(root: Path) -> List[ExcludeRule]:
    path = root / ".gitignore"
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return []
    return [rule for rule in map(ExcludeRule.parse, text.splitlines()) if rule is not None]


def _excluded(rel_path: str, is_dir: bool, rules: Sequence[ExcludeRule]) -> bool:
    # Last matching rule wins, as in git.
    excluded = False
    for rule in rules:
        if rule.applies_to(rel_path, is_dir):
            excluded = not rule.negate
    return excluded


class _HashCache:
    """``(size, mtime_ns) -> hash`` memo stored beside the manifest."""

    def __init__(self, state_dir: Path, enabled: bool) -> None:
        self.path = state_dir / HASH_CACHE_FILENAME
        self.enabled = enabled
        self._previous = self._load() if enabled else {}
        self._current: Dict[str, Dict[str, object]] = {}
        self.misses = 0

    def _load(self) -> Dict[str, Dict[str, object]]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.debug("Discarding unreadable hash cache at %s", self.path)
            return {}
        if not isinstance(payload, dict) or payload.get("version") != _HASH_CACHE_VERSION:
            return {}
        files = payload.get("files")
        if not isinstance(files, dict):
            return {}
        return {
            rel_path: entry
            for rel_path, entry in files.items()
            if isinstance(entry, dict)
            and isinstance(entry.get("size"), int)
            and isinstance(entry.get("mtime_ns"), int)
            and isinstance(entry.get("hash"), str)
        }

    def hash_of(self, path: Path, rel_path: str, size: int, mtime_ns: int) -> str:
        entry = self._previous.get(rel_path)
        if entry is not None and entry["size"] == size and entry["mtime_ns"] == mtime_ns:
            file_hash = str(entry["hash"])
        else:
            file_hash = hash_file(path)
            self.misses += 1
        self._current[rel_path] = {"size": size, "mtime_ns": mtime_ns, "hash": file_hash}
        return file_hash

    def save(self) -> None:
        if not self.enabled:
            return
        payload = {"version": _HASH_CACHE_VERSION, "files": self._current}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            logger.debug("Unable to write hash cache: %s", exc)


def detect_language(path: str) -> str | None:
    return _LANGUAGE_BY_SUFFIX.get(Path(path).suffix.lower())


def hash_file(path: Path) -> str:
    """SHA-256 of the file's bytes, read in chunks."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while chunk := handle.read(_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


class ProjectScanner:
    """Walks the project tree to produce a hashed file inventory."""

    def __init__(self, exclude_paths: Sequence[str] = (), *, use_hash_cache: bool = True) -> None:
        self._configured_rules = [
            rule for rule in map(ExcludeRule.parse, exclude_paths) if rule is not None
        ]
        self._use_hash_cache = use_hash_cache

    def scan(self, root: str | Path) -> FileInventory:
        """Return an inventory of every non-excluded file under ``root``.

        Files are visited in sorted order so the inventory is deterministic.
        Unreadable files are skipped with a debug message.
        """
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Project path not found: {root}")
        if not root_path.is_dir():
            raise NotADirectoryError(f"Project path is not a directory: {root}")

        rules = _read_gitignore(root_path) + self._configured_rules
        cache = _HashCache(root_path / STATE_DIRNAME, self._use_hash_cache)

        files: List[FileMeta] = []
        for path, rel_path in self._walk(root_path, rules):
            try:
                stat_result = path.stat()
            except OSError as exc:
                logger.debug("Skipping %s: %s", rel_path, exc)
                continue
            files.append(
                FileMeta(
                    path=rel_path,
                    size=stat_result.st_size,
                    mtime_ns=stat_result.st_mtime_ns,
                    hash=cache.hash_of(path, rel_path, stat_result.st_size, stat_result.st_mtime_ns),
                    language=detect_language(rel_path),
                )
            )

        cache.save()
        logger.debug("Scanned %d files under %s (%d hashed)", len(files), root_path, cache.misses)
        return FileInventory(root=str(root_path), files=files)

    @staticmethod
    def _walk(root: Path, rules: Sequence[ExcludeRule]) -> Iterator[tuple[Path, str]]:
        for dirpath, dirnames, filenames in os.walk(root):
            prefix = Path(dirpath).relative_to(root).as_posix()
            prefix = "" if prefix == "." else f"{prefix}/"

            # Pruning in place keeps os.walk out of excluded directories.
            dirnames[:] = [
                name
                for name in sorted(dirnames)
                if name not in _ALWAYS_SKIPPED and not _excluded(prefix + name, True, rules)
            ]
            for name in sorted(filenames):
                if name in _ALWAYS_SKIPPED or _excluded(prefix + name, False, rules):
                    continue
                yield Path(dirpath) / name, prefix + name


__all__ = ["ExcludeRule", "HASH_CACHE_FILENAME", "ProjectScanner", "detect_language", "hash_file"]
