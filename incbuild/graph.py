"""File-level dependency graph construction, cycle detection and ordering."""

from __future__ import annotations

import posixpath
import re
from collections import Counter, deque
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Union

from .errors import CycleError
from .extractors import DependencyExtractor
from .logging import get_logger
from .models import DependencyEdge, FileInventory, FileMeta, FileNode

ExtractorLike = Union[DependencyExtractor, Callable[[str, str], Iterable[str]]]
Categorizer = Callable[[str], Optional[str]]

_MAX_EXTRACT_BYTES = 2 * 1024 * 1024

_SOURCE_SUFFIXES = (
    ".py",
    ".pyi",
    ".js",
    ".mjs",
    ".cjs",
    ".jsx",
    ".ts",
    ".tsx",
    ".d.ts",
    ".vue",
    ".css",
    ".scss",
    ".less",
    ".h",
    ".hpp",
    ".ps1",
    ".psm1",
    ".sh",
    ".md",
    ".json",
)

_INDEX_FILES = (
    "__init__.py",
    "index.js",
    "index.mjs",
    "index.jsx",
    "index.ts",
    "index.tsx",
)

_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")

logger = get_logger("graph")


class DependencyGraph:
    """Read-only graph of FileNodes keyed by relative path.

    Dependencies are stored by key on each node, so the graph holds no object
    cycles and no stage can mutate it after construction.
    """

    def __init__(self, nodes: Mapping[str, FileNode]) -> None:
        self._nodes: Mapping[str, FileNode] = MappingProxyType(dict(nodes))

    def __contains__(self, path: object) -> bool:
        return path in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths())

    @property
    def nodes(self) -> Mapping[str, FileNode]:
        return self._nodes

    def node(self, path: str) -> FileNode:
        return self._nodes[path]

    def paths(self) -> List[str]:
        return sorted(self._nodes)

    def dependencies(self, path: str) -> frozenset[str]:
        return self._nodes[path].dependencies

    def dependents(self, path: str) -> frozenset[str]:
        return self._nodes[path].dependents

    def edges(self) -> List[DependencyEdge]:
        return [
            DependencyEdge(dependency=dependency, dependent=path)
            for path in self.paths()
            for dependency in sorted(self._nodes[path].dependencies)
        ]

    def adjacency(self) -> Dict[str, List[str]]:
        """Return ``path -> sorted dependencies`` for the generic graph helpers."""
        return {path: sorted(node.dependencies) for path, node in self._nodes.items()}

    def categories(self) -> Dict[str, List[str]]:
        members: Dict[str, List[str]] = {}
        for path in self.paths():
            category = self._nodes[path].category
            if category is not None:
                members.setdefault(category, []).append(path)
        return members

    def find_cycle(self) -> Optional[List[str]]:
        return find_cycle(self.adjacency())

    def topological_order(self) -> List[str]:
        return topological_sort(self.adjacency())

    def transitive_dependents(self, paths: Iterable[str]) -> Set[str]:
        """Return every file that depends, directly or not, on one of ``paths``."""
        seeds = [path for path in paths if path in self._nodes]
        reached: Set[str] = set()
        queue = deque(seeds)
        while queue:
            current = queue.popleft()
            for dependent in self._nodes[current].dependents:
                if dependent not in reached:
                    reached.add(dependent)
                    queue.append(dependent)
        return reached

    def statistics(self) -> Dict[str, object]:
        edge_count = sum(len(node.dependencies) for node in self._nodes.values())
        file_count = len(self._nodes)
        categories = Counter(
            node.category for node in self._nodes.values() if node.category is not None
        )
        return {
            "files": file_count,
            "edges": edge_count,
            "average_dependencies": edge_count / file_count if file_count else 0.0,
            "roots": sum(1 for node in self._nodes.values() if not node.dependencies),
            "leaves": sum(1 for node in self._nodes.values() if not node.dependents),
            "uncategorized": sum(1 for node in self._nodes.values() if node.category is None),
            "categories": dict(sorted(categories.items())),
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "nodes": [
                {
                    "path": path,
                    "category": self._nodes[path].category,
                    "hash": self._nodes[path].hash,
                    "size": self._nodes[path].size,
                    "dependencies": sorted(self._nodes[path].dependencies),
                }
                for path in self.paths()
            ],
            "edges": [[edge.dependency, edge.dependent] for edge in self.edges()],
        }


def build_graph(
    inventory: FileInventory,
    extractor: ExtractorLike,
    categorize: Categorizer | None = None,
) -> DependencyGraph:
    """Assemble the dependency graph for ``inventory``.

    References that do not resolve to an inventory file are dropped, as are
    self references. Files are visited in sorted order so the edge sets do not
    depend on how the inventory was enumerated.
    """
    metas = inventory.by_path()
    paths = sorted(metas)
    resolver = _ReferenceResolver(paths)

    dependencies: Dict[str, Set[str]] = {}
    for path in paths:
        resolved: Set[str] = set()
        for ref in _extract_references(inventory, extractor, metas[path]):
            target = resolver.resolve(ref, path)
            if target is not None and target != path:
                resolved.add(target)
        dependencies[path] = resolved

    dependents: Dict[str, Set[str]] = {path: set() for path in paths}
    for path, targets in dependencies.items():
        for target in targets:
            dependents[target].add(path)

    nodes: Dict[str, FileNode] = {}
    for path in paths:
        meta = metas[path]
        nodes[path] = FileNode(
            path=path,
            hash=meta.hash,
            mtime_ns=meta.mtime_ns,
            size=meta.size,
            category=categorize(path) if categorize else None,
            dependencies=frozenset(dependencies[path]),
            dependents=frozenset(dependents[path]),
        )

    graph = DependencyGraph(nodes)
    logger.debug("Built dependency graph with %d files and %d edges", len(graph), len(graph.edges()))
    return graph


def find_cycle(adjacency: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """Return the first cycle found as ``[n0, n1, ..., n0]``, or None for a DAG.

    Iterative white/gray/black DFS; every node is coloured once, so graphs with
    several disconnected components terminate in linear time.
    """
    white, gray, black = 0, 1, 2
    colour: Dict[str, int] = {}

    for root in sorted(adjacency):
        if colour.get(root, white) != white:
            continue
        colour[root] = gray
        path = [root]
        stack = [iter(sorted(adjacency.get(root, ())))]
        while stack:
            for neighbour in stack[-1]:
                state = colour.get(neighbour, white)
                if state == gray:
                    return path[path.index(neighbour):] + [neighbour]
                if state == white:
                    colour[neighbour] = gray
                    path.append(neighbour)
                    stack.append(iter(sorted(adjacency.get(neighbour, ()))))
                    break
            else:
                colour[path.pop()] = black
                stack.pop()
    return None


def topological_sort(adjacency: Mapping[str, Iterable[str]], *, kind: str = "file") -> List[str]:
    """Return nodes ordered so every dependency precedes its dependents.

    DFS postorder with lexical tie-breaking; meeting a node that is still in
    progress raises CycleError instead of returning a partial order.
    """
    in_progress, done = 1, 2
    state: Dict[str, int] = {}
    order: List[str] = []

    for root in sorted(adjacency):
        if root in state:
            continue
        state[root] = in_progress
        path = [root]
        stack = [iter(sorted(adjacency.get(root, ())))]
        while stack:
            for neighbour in stack[-1]:
                current = state.get(neighbour)
                if current == in_progress:
                    raise CycleError(path[path.index(neighbour):] + [neighbour], kind=kind)
                if current is None:
                    state[neighbour] = in_progress
                    path.append(neighbour)
                    stack.append(iter(sorted(adjacency.get(neighbour, ()))))
                    break
            else:
                node = path.pop()
                stack.pop()
                state[node] = done
                order.append(node)
    return order


def _extract_references(
    inventory: FileInventory, extractor: ExtractorLike, meta: FileMeta
) -> Set[str]:
    if isinstance(extractor, DependencyExtractor) and not extractor.supports(meta.path):
        return set()
    if meta.size > _MAX_EXTRACT_BYTES:
        logger.debug("Skipping dependency extraction for large file %s", meta.path)
        return set()
    try:
        content = inventory.read_text(meta.path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Skipping dependency extraction for %s: %s", meta.path, exc)
        return set()

    try:
        if isinstance(extractor, DependencyExtractor):
            refs = extractor.extract(content, meta.path)
        else:
            refs = extractor(content, meta.path)
    except Exception as exc:
        logger.warning("Dependency extraction failed for %s: %s", meta.path, exc)
        return set()
    return {ref for ref in refs if isinstance(ref, str) and ref}


class _ReferenceResolver:
    """Maps raw references to inventory paths."""

    def __init__(self, paths: Iterable[str]) -> None:
        self._paths = set(paths)
        self._by_key: Dict[str, List[str]] = {}
        for path in sorted(self._paths):
            for key in _lookup_keys(path):
                self._by_key.setdefault(key, []).append(path)

    def resolve(self, ref: str, source: str) -> Optional[str]:
        cleaned = ref.strip().replace("\\", "/").split("#", 1)[0].split("?", 1)[0]
        if not cleaned or _URL_SCHEME.match(cleaned) or cleaned.startswith("//"):
            return None

        source_dir = posixpath.dirname(source)
        explicit = cleaned in (".", "..") or cleaned.startswith(("./", "../"))
        if cleaned.startswith("/"):
            bases = [posixpath.normpath(cleaned.lstrip("/"))]
        elif explicit:
            bases = [posixpath.normpath(posixpath.join(source_dir, cleaned))]
        else:
            bases = [
                posixpath.normpath(posixpath.join(source_dir, cleaned)),
                posixpath.normpath(cleaned),
            ]

        for base in bases:
            if base == ".":
                base = ""
            if base == ".." or base.startswith("../"):
                continue
            hit = self._probe(base)
            if hit is not None:
                return hit

        if explicit:
            return None
        candidates = self._by_key.get(posixpath.normpath(cleaned).strip("/"))
        if not candidates:
            return None
        return min(candidates, key=lambda candidate: (-_shared_depth(candidate, source), candidate))

    def _probe(self, base: str) -> Optional[str]:
        options: List[str] = []
        if base:
            options.append(base)
            options.extend(base + suffix for suffix in _SOURCE_SUFFIXES)
        prefix = f"{base}/" if base else ""
        options.extend(prefix + index for index in _INDEX_FILES)
        for option in options:
            if option in self._paths:
                return option
        return None


def _lookup_keys(path: str) -> Set[str]:
    segments = path.split("/")
    stem = posixpath.splitext(segments[-1])[0]
    keys: Set[str] = set()
    for index in range(len(segments)):
        keys.add("/".join(segments[index:]))
        keys.add("/".join(segments[index:-1] + [stem]))
    if stem in ("__init__", "index") and len(segments) > 1:
        for index in range(len(segments) - 1):
            keys.add("/".join(segments[index:-1]))
    return keys


def _shared_depth(candidate: str, source: str) -> int:
    depth = 0
    for left, right in zip(candidate.split("/")[:-1], source.split("/")[:-1]):
        if left != right:
            break
        depth += 1
    return depth


__all__ = [
    "DependencyGraph",
    "build_graph",
    "find_cycle",
    "topological_sort",
]
