"""Base classes for dependency extractor plugins."""

from abc import ABC, abstractmethod
from typing import Set


class DependencyExtractor(ABC):
    """Contract for extractors that list the references made by a file."""

    def supports(self, path: str) -> bool:
        """Return True when this extractor understands the file at ``path``."""
        return True

    @abstractmethod
    def extract(self, content: str, path: str) -> Set[str]:
        """Return the paths or module references found in ``content``.

        References are best-effort: the graph builder resolves them against
        the inventory and silently drops anything it cannot match.
        """
