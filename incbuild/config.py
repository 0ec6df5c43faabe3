"""Configuration loading for incbuild (.incbuild.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from .errors import BuildError

CONFIG_FILENAME = ".incbuild.yml"
STATE_DIRNAME = ".incbuild"

DEFAULT_TASK_TIMEOUT = 600.0
DEFAULT_HISTORY_LIMIT = 50


class ConfigError(BuildError):
    """Raised when the configuration is missing, unparsable or inconsistent."""


@dataclass(frozen=True)
class CategoryConfig:
    """Declares one build category and the files that belong to it."""

    name: str
    patterns: Tuple[str, ...]
    output: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    command: Optional[str] = None
    timeout: Optional[float] = None

    def matches(self, path: str) -> bool:
        return any(path_matches(path, pattern) for pattern in self.patterns)


DEFAULT_CATEGORIES: Tuple[CategoryConfig, ...] = (
    CategoryConfig(
        name="docs",
        patterns=("docs/**", "doc/**", "*.md", "*.rst", "*.adoc"),
        output="build/docs",
    ),
    CategoryConfig(
        name="tests",
        patterns=(
            "tests/**",
            "test/**",
            "__tests__/**",
            "test_*.py",
            "*_test.py",
            "*_test.go",
            "*.test.js",
            "*.test.ts",
            "*.spec.js",
            "*.spec.ts",
            "*.Tests.ps1",
        ),
        output="build/tests",
        depends_on=("code",),
    ),
    CategoryConfig(
        name="assets",
        patterns=(
            "assets/**",
            "static/**",
            "public/**",
            "*.png",
            "*.jpg",
            "*.jpeg",
            "*.gif",
            "*.svg",
            "*.ico",
            "*.css",
            "*.scss",
            "*.woff",
            "*.woff2",
        ),
        output="build/assets",
    ),
    CategoryConfig(
        name="config",
        patterns=("config/**", "*.json", "*.yml", "*.yaml", "*.toml", "*.ini", "*.cfg"),
        output="build/config",
    ),
    CategoryConfig(name="code", patterns=("*",), output="build/code"),
)


@dataclass(frozen=True)
class BuildConfig:
    """Immutable settings for a run, passed explicitly to every stage."""

    root: Path
    manifest_path: Path
    max_workers: Optional[int] = None
    task_timeout: Optional[float] = DEFAULT_TASK_TIMEOUT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    strict: bool = False
    exclude_paths: Tuple[str, ...] = ()
    # None enables every built-in and installed extractor.
    extractors: Optional[Tuple[str, ...]] = None
    categories: Tuple[CategoryConfig, ...] = field(default=DEFAULT_CATEGORIES)

    def __post_init__(self) -> None:
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1 (got {self.max_workers})")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ConfigError(f"task_timeout must be positive (got {self.task_timeout})")
        if self.history_limit < 1:
            raise ConfigError(f"history_limit must be at least 1 (got {self.history_limit})")
        if not self.categories:
            raise ConfigError("At least one build category must be defined")

        names: List[str] = []
        for category in self.categories:
            if category.name in names:
                raise ConfigError(f"Duplicate build category '{category.name}'")
            if not category.patterns:
                raise ConfigError(f"Build category '{category.name}' declares no patterns")
            if category.timeout is not None and category.timeout <= 0:
                raise ConfigError(f"Timeout for category '{category.name}' must be positive")
            names.append(category.name)
        for category in self.categories:
            for dependency in category.depends_on:
                if dependency not in names:
                    raise ConfigError(
                        f"Build category '{category.name}' depends on unknown category '{dependency}'"
                    )
                if dependency == category.name:
                    raise ConfigError(f"Build category '{category.name}' depends on itself")

    @classmethod
    def default(cls, root: Path) -> "BuildConfig":
        root = root.expanduser().resolve()
        return cls(root=root, manifest_path=root / STATE_DIRNAME / "manifest.json")

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIRNAME

    def category_names(self) -> List[str]:
        return [category.name for category in self.categories]

    def category(self, name: str) -> CategoryConfig:
        for category in self.categories:
            if category.name == name:
                return category
        raise ConfigError(f"Unknown build category '{name}'")

    def categorize(self, path: str) -> Optional[str]:
        """Return the first category whose patterns match ``path``."""
        for category in self.categories:
            if category.matches(path):
                return category.name
        return None


def path_matches(path: str, pattern: str) -> bool:
    """Match a relative POSIX path against a gitignore-flavoured glob."""
    normalized = path.replace("\\", "/").strip("/")
    pattern = pattern.strip().lstrip("/")
    if not pattern:
        return False

    if pattern.startswith("**/"):
        rest = pattern[3:]
        segments = normalized.split("/")
        return any(
            path_matches("/".join(segments[index:]), rest) for index in range(len(segments))
        )

    if pattern.endswith("/**") or pattern.endswith("/"):
        directory = pattern[:-3] if pattern.endswith("/**") else pattern[:-1]
        parents = normalized.split("/")[:-1]
        if "/" not in directory:
            return any(fnmatchcase(part, directory) for part in parents)
        depth = directory.count("/") + 1
        return len(parents) >= depth and fnmatchcase("/".join(parents[:depth]), directory)

    if "/" not in pattern:
        return fnmatchcase(normalized.rsplit("/", 1)[-1], pattern)
    return fnmatchcase(normalized, pattern)


def load_config(config_path: Path) -> BuildConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return BuildConfig.default(root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    manifest_str = _as_str(data.get("manifest_path"))
    manifest_path = root / manifest_str if manifest_str else root / STATE_DIRNAME / "manifest.json"

    max_workers = _as_int(data.get("max_workers"))
    if data.get("max_workers") is not None and max_workers is None:
        raise ConfigError("max_workers must be an integer")

    task_timeout: Optional[float] = DEFAULT_TASK_TIMEOUT
    if "task_timeout" in data:
        task_timeout = _as_float(data.get("task_timeout"))
        if data.get("task_timeout") is not None and task_timeout is None:
            raise ConfigError("task_timeout must be a number")

    history_limit = _as_int(data.get("history_limit"))

    extractors: Optional[Tuple[str, ...]] = None
    if data.get("extractors") is not None:
        if not isinstance(data["extractors"], (str, list)):
            raise ConfigError("extractors must be a name or a list of names")
        extractors = tuple(_as_str_list(data["extractors"]))

    categories_data = data.get("categories")
    categories = DEFAULT_CATEGORIES
    if categories_data is not None:
        categories = _parse_categories(categories_data)

    return BuildConfig(
        root=root,
        manifest_path=manifest_path,
        max_workers=max_workers,
        task_timeout=task_timeout,
        history_limit=history_limit if history_limit is not None else DEFAULT_HISTORY_LIMIT,
        strict=_as_bool(data.get("strict")) or False,
        exclude_paths=tuple(_as_str_list(data.get("exclude_paths"))),
        extractors=extractors,
        categories=categories,
    )


def _parse_categories(raw: Any) -> Tuple[CategoryConfig, ...]:
    if not isinstance(raw, dict) or not raw:
        raise ConfigError("categories must be a non-empty mapping of name -> settings")

    categories: List[CategoryConfig] = []
    for name, settings in raw.items():
        if not isinstance(name, str) or not name.strip():
            raise ConfigError("Category names must be non-empty strings")
        options = _as_dict(settings)
        if settings is not None and not options:
            raise ConfigError(f"Settings for category '{name}' must be a mapping")
        patterns = _as_str_list(options.get("patterns"))
        timeout = _as_float(options.get("timeout"))
        if options.get("timeout") is not None and timeout is None:
            raise ConfigError(f"Timeout for category '{name}' must be a number")
        categories.append(
            CategoryConfig(
                name=name.strip(),
                patterns=tuple(patterns),
                output=_as_str(options.get("output")),
                depends_on=tuple(_as_str_list(options.get("depends_on"))),
                command=_as_str(options.get("command")),
                timeout=timeout,
            )
        )
    return tuple(categories)


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read {path.name}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "BuildConfig",
    "CategoryConfig",
    "ConfigError",
    "DEFAULT_CATEGORIES",
    "load_config",
    "path_matches",
]
