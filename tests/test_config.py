"""Tests for incbuild.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from incbuild.config import (
    DEFAULT_CATEGORIES,
    BuildConfig,
    CategoryConfig,
    ConfigError,
    load_config,
    path_matches,
)
from incbuild.errors import BuildError


def _write_config(root: Path, text: str) -> Path:
    path = root / ".incbuild.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert config.root == tmp_path.resolve()
    assert config.manifest_path == tmp_path.resolve() / ".incbuild" / "manifest.json"
    assert config.max_workers is None
    assert config.task_timeout == 600.0
    assert config.history_limit == 50
    assert config.strict is False
    assert config.categories == DEFAULT_CATEGORIES
    assert config.extractors is None


def test_load_config_reads_extractor_names(tmp_path: Path) -> None:
    _write_config(tmp_path, "extractors: [patterns, terraform]\n")

    assert load_config(tmp_path).extractors == ("patterns", "terraform")


def test_load_config_parses_categories(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
max_workers: 3
task_timeout: 30
history_limit: 5
strict: yes
manifest_path: state/manifest.json
exclude_paths:
  - vendor/
categories:
  lib:
    patterns: ["src/**"]
    command: make lib
    output: dist/lib
  docs:
    patterns: "*.md"
    depends_on: [lib]
    timeout: 12.5
""",
    )

    config = load_config(tmp_path)

    assert config.max_workers == 3
    assert config.task_timeout == 30.0
    assert config.history_limit == 5
    assert config.strict is True
    assert config.manifest_path == tmp_path.resolve() / "state" / "manifest.json"
    assert config.exclude_paths == ("vendor/",)
    assert config.category_names() == ["lib", "docs"]
    lib = config.category("lib")
    assert lib.patterns == ("src/**",)
    assert lib.command == "make lib"
    assert lib.output == "dist/lib"
    docs = config.category("docs")
    assert docs.patterns == ("*.md",)
    assert docs.depends_on == ("lib",)
    assert docs.timeout == 12.5


def test_load_config_accepts_explicit_file(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "max_workers: 2\n")

    assert load_config(path).max_workers == 2


def test_load_config_empty_file_uses_defaults(tmp_path: Path) -> None:
    _write_config(tmp_path, "\n")

    assert load_config(tmp_path).categories == DEFAULT_CATEGORIES


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "categories: [unclosed\n")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_non_mapping_root_raises(tmp_path: Path) -> None:
    _write_config(tmp_path, "- just\n- a list\n")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


@pytest.mark.parametrize(
    "text",
    [
        "max_workers: 0\n",
        "max_workers: many\n",
        "task_timeout: -1\n",
        "history_limit: 0\n",
        "categories: {}\n",
        "categories:\n  code:\n    patterns: []\n",
        "categories:\n  code:\n    patterns: ['*']\n    depends_on: [missing]\n",
        "categories:\n  code:\n    patterns: ['*']\n    depends_on: [code]\n",
        "categories:\n  code:\n    patterns: ['*']\n    timeout: soon\n",
        "categories:\n  code: [not, a, mapping]\n",
        "extractors: {patterns: true}\n",
    ],
)
def test_invalid_settings_raise_config_error(tmp_path: Path, text: str) -> None:
    _write_config(tmp_path, text)

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_config_error_is_build_error() -> None:
    assert issubclass(ConfigError, BuildError)


def test_duplicate_categories_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        BuildConfig(
            root=tmp_path,
            manifest_path=tmp_path / "m.json",
            categories=(
                CategoryConfig(name="a", patterns=("*",)),
                CategoryConfig(name="a", patterns=("*.md",)),
            ),
        )


def test_unknown_category_lookup_raises(tmp_path: Path) -> None:
    config = BuildConfig.default(tmp_path)

    with pytest.raises(ConfigError):
        config.category("nope")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("README.md", "docs"),
        ("docs/guide/index.html", "docs"),
        ("tests/test_app.py", "tests"),
        ("pkg/test_utils.py", "tests"),
        ("web/app.test.ts", "tests"),
        ("static/logo.png", "assets"),
        ("styles/site.css", "assets"),
        ("config/app.py", "config"),
        ("package.json", "config"),
        ("src/app.py", "code"),
        ("Makefile", "code"),
    ],
)
def test_default_categorization_first_match_wins(tmp_path: Path, path: str, expected: str) -> None:
    assert BuildConfig.default(tmp_path).categorize(path) == expected


def test_categorize_returns_none_without_match(tmp_path: Path) -> None:
    config = BuildConfig(
        root=tmp_path,
        manifest_path=tmp_path / "m.json",
        categories=(CategoryConfig(name="docs", patterns=("*.md",)),),
    )

    assert config.categorize("src/app.py") is None


@pytest.mark.parametrize(
    ("path", "pattern", "expected"),
    [
        ("docs/a.md", "docs/**", True),
        ("docs/deep/a.md", "docs/**", True),
        ("src/docs/a.md", "docs/**", True),
        ("docs.md", "docs/**", False),
        ("src/app.py", "src/", True),
        ("lib/src/app.py", "lib/src/**", True),
        ("src/lib/app.py", "lib/src/**", False),
        ("a/b/c.py", "**/c.py", True),
        ("c.py", "**/c.py", True),
        ("a/b/c.py", "*.py", True),
        ("a/b/c.py", "a/*/c.py", True),
        ("a/b/c.py", "b/c.py", False),
        ("a/b/c.py", "", False),
    ],
)
def test_path_matches(path: str, pattern: str, expected: bool) -> None:
    assert path_matches(path, pattern) is expected
