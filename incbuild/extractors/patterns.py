"""Regex-based dependency extractor covering common source languages."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Set

from .base import DependencyExtractor

_PY_IMPORT = re.compile(r"^[ \t]*import[ \t]+([\w. \t,]+)", re.MULTILINE)
_PY_FROM = re.compile(r"^[ \t]*from[ \t]+([.\w]+)[ \t]+import[ \t]+(\([^)]*\)|[^\n]+)", re.MULTILINE)

_JS_PATTERNS = (
    re.compile(r"""\b(?:import|export)\s+(?:[^'";]*?\s+from\s+)?['"]([^'"\n]+)['"]"""),
    re.compile(r"""\brequire\(\s*['"]([^'"\n]+)['"]\s*\)"""),
    re.compile(r"""\bimport\(\s*['"]([^'"\n]+)['"]\s*\)"""),
)

_C_INCLUDE = re.compile(r"""^[ \t]*#[ \t]*include[ \t]*["<]([^">\n]+)[">]""", re.MULTILINE)

_CSS_PATTERNS = (
    re.compile(r"""@import\s+(?:url\()?\s*['"]?([^'")\s;]+)"""),
    re.compile(r"""url\(\s*['"]?([^'")\s]+)['"]?\s*\)"""),
)

# Embeds only; plain links and href navigation are not build inputs.
_MARKDOWN_EMBED = re.compile(r"""!\[[^\]]*\]\(\s*<?([^)\s>]+)""")
_HTML_SRC = re.compile(r"""\bsrc\s*=\s*['"]([^'"]+)['"]""", re.IGNORECASE)

_TYPE_CHECKING_GUARD = re.compile(r"^([ \t]*)if[ \t]+(?:typing\.)?TYPE_CHECKING[ \t]*:[ \t]*(?:#.*)?$")

_POWERSHELL_PATTERNS = (
    re.compile(r"""^[ \t]*\.[ \t]+['"]?([^'"\s]+\.ps1)""", re.MULTILINE),
    re.compile(r"""\bImport-Module[ \t]+(?:-Name[ \t]+)?['"]?([^'"\s]+)""", re.IGNORECASE),
    re.compile(r"""^[ \t]*using[ \t]+module[ \t]+['"]?([^'"\s]+)""", re.IGNORECASE | re.MULTILINE),
)

_SHELL_SOURCE = re.compile(r"""^[ \t]*(?:source|\.)[ \t]+['"]?([^'"\s;]+)""", re.MULTILINE)


def _python_module_ref(module: str) -> str:
    dots = len(module) - len(module.lstrip("."))
    tail = module[dots:].replace(".", "/")
    if dots == 0:
        return tail
    prefix = "./" if dots == 1 else "../" * (dots - 1)
    if not tail:
        return prefix.rstrip("/") or "."
    return prefix + tail


def _strip_type_checking_blocks(content: str) -> str:
    """Drop the bodies of ``if TYPE_CHECKING:`` blocks; they never run."""
    kept: List[str] = []
    guard_indent: int | None = None
    for line in content.splitlines():
        if guard_indent is not None:
            stripped = line.strip()
            indent = len(line) - len(line.lstrip(" \t"))
            if not stripped or indent > guard_indent:
                continue
            guard_indent = None
        match = _TYPE_CHECKING_GUARD.match(line)
        if match:
            guard_indent = len(match.group(1))
            continue
        kept.append(line)
    return "\n".join(kept)


def _extract_python(content: str) -> Set[str]:
    content = _strip_type_checking_blocks(content)
    refs: Set[str] = set()
    for match in _PY_IMPORT.finditer(content):
        for chunk in match.group(1).split(","):
            name = chunk.strip().split()[0] if chunk.strip() else ""
            if name:
                refs.add(_python_module_ref(name))
    for match in _PY_FROM.finditer(content):
        module_ref = _python_module_ref(match.group(1))
        if module_ref:
            refs.add(module_ref)
        names = match.group(2).strip().strip("()")
        for chunk in names.split(","):
            name = chunk.split("#", 1)[0].strip().split(" ")[0]
            if name and name != "*" and name.isidentifier():
                refs.add(f"{module_ref}/{name}" if module_ref else name)
    return refs


def _extract_all(patterns: Iterable[re.Pattern[str]]) -> Callable[[str], Set[str]]:
    compiled = tuple(patterns)

    def _extract(content: str) -> Set[str]:
        refs: Set[str] = set()
        for pattern in compiled:
            refs.update(match.group(1).strip() for match in pattern.finditer(content))
        return refs

    return _extract


def _extract_powershell(content: str) -> Set[str]:
    refs = _extract_all(_POWERSHELL_PATTERNS)(content)
    return {ref.replace("$PSScriptRoot", ".").replace("\\", "/") for ref in refs}


_EXTRACTORS_BY_SUFFIX: Dict[str, Callable[[str], Set[str]]] = {}
for _suffix in (".py", ".pyi"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_python
for _suffix in (".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx", ".vue", ".svelte"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_all(_JS_PATTERNS)
for _suffix in (".c", ".h", ".cc", ".cpp", ".cxx", ".hpp", ".hh"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_all((_C_INCLUDE,))
for _suffix in (".css", ".scss", ".sass", ".less"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_all(_CSS_PATTERNS)
for _suffix in (".md", ".markdown"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_all((_MARKDOWN_EMBED,))
for _suffix in (".html", ".htm"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_all((_HTML_SRC,))
for _suffix in (".ps1", ".psm1"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_powershell
for _suffix in (".sh", ".bash"):
    _EXTRACTORS_BY_SUFFIX[_suffix] = _extract_all((_SHELL_SOURCE,))


class PatternExtractor(DependencyExtractor):
    """Finds import, include and embed references with per-language regexes."""

    def supports(self, path: str) -> bool:
        return PurePosixPath(path).suffix.lower() in _EXTRACTORS_BY_SUFFIX

    def extract(self, content: str, path: str) -> Set[str]:
        handler = _EXTRACTORS_BY_SUFFIX.get(PurePosixPath(path).suffix.lower())
        if handler is None:
            return set()
        return {ref for ref in handler(content) if ref}


__all__ = ["PatternExtractor"]
