"""Knowledge index: which documents matter for a phase, module or keyword.

The index file is a JSON object with ``index_by_phase``, ``index_by_module``
and ``index_by_keyword`` sections mapping keys to ordered document paths, and
an ``aggregated_rules`` section that is carried through untouched.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .documents import DocumentStore, atomic_write_text
from .errors import DanglingIndexReferenceError
from .models import INDEX_DIMENSIONS, DocRef

logger = logging.getLogger("phasekit.knowledge")

SECTION_NAMES = {
    "phase": "index_by_phase",
    "module": "index_by_module",
    "keyword": "index_by_keyword",
}


class KnowledgeIndex:
    """Lookup from ``(dimension, key)`` to ordered document references."""

    def __init__(
        self,
        entries: Optional[Dict[str, Dict[str, List[DocRef]]]] = None,
        aggregated_rules: Optional[Dict[str, Any]] = None,
    ):
        self.entries: Dict[str, Dict[str, List[DocRef]]] = {
            dimension: dict((entries or {}).get(dimension, {})) for dimension in INDEX_DIMENSIONS
        }
        self.aggregated_rules: Dict[str, Any] = aggregated_rules if aggregated_rules is not None else {}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeIndex":
        """Create from the index file structure.

        Raises:
            ValueError: If a section is not an object of reference lists, or a
                reference is neither a path nor an object with a path.
        """
        entries: Dict[str, Dict[str, List[DocRef]]] = {}
        for dimension, section in SECTION_NAMES.items():
            raw = data.get(section) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"'{section}' must be an object")
            entries[dimension] = {}
            for key, refs in raw.items():
                if not isinstance(refs, list):
                    raise ValueError(f"'{section}.{key}' must be a list of document references")
                entries[dimension][str(key)] = [DocRef.from_entry(entry) for entry in refs]
        return cls(entries, aggregated_rules=data.get("aggregated_rules", {}))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the index file structure."""
        data: Dict[str, Any] = {
            section: {key: [ref.to_entry() for ref in refs] for key, refs in self.entries[dimension].items()}
            for dimension, section in SECTION_NAMES.items()
        }
        data["aggregated_rules"] = self.aggregated_rules
        return data

    @classmethod
    def load(cls, path: Path) -> "KnowledgeIndex":
        """Load the index file; a missing file is an empty index."""
        if not path.exists():
            logger.debug(f"No knowledge index at {path}")
            return cls()
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Knowledge index at {path} must be a JSON object")
        return cls.from_dict(data)

    def save(self, path: Path) -> Path:
        atomic_write_text(path, json.dumps(self.to_dict(), indent=2) + "\n")
        return path

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, dimension: str, key: str) -> List[DocRef]:
        """References for one key, in index order."""
        if dimension not in INDEX_DIMENSIONS:
            raise ValueError(f"Unknown index dimension: {dimension}")
        return list(self.entries[dimension].get(key, []))

    def lookup_keywords(self, text: str) -> List[DocRef]:
        """Keyword-dimension references whose key appears as a word in ``text``.

        Keys are visited in index order; results are de-duplicated by path.
        """
        found: List[DocRef] = []
        seen = set()
        for keyword, refs in self.entries["keyword"].items():
            if not re.search(rf"\b{re.escape(keyword)}\b", text, re.IGNORECASE):
                continue
            for ref in refs:
                if ref.path not in seen:
                    seen.add(ref.path)
                    found.append(ref)
        return found

    def add(self, dimension: str, key: str, ref: DocRef) -> bool:
        """Append a reference unless its path is already indexed under the key."""
        if dimension not in INDEX_DIMENSIONS:
            raise ValueError(f"Unknown index dimension: {dimension}")
        refs = self.entries[dimension].setdefault(key, [])
        if any(existing.path == ref.path for existing in refs):
            return False
        refs.append(ref)
        return True

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def check_integrity(self, store: DocumentStore) -> List[DanglingIndexReferenceError]:
        """Every reference that does not resolve in the store."""
        problems = []
        for dimension in INDEX_DIMENSIONS:
            for key, refs in self.entries[dimension].items():
                for ref in refs:
                    if store.resolve(ref.path) is None:
                        problems.append(DanglingIndexReferenceError(dimension, key, ref.path))
        for problem in problems:
            logger.warning(str(problem))
        return problems
