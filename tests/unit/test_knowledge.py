"""Unit tests for the PhaseKit knowledge index."""

import json
from unittest.mock import patch

import pytest

from phasekit.errors import DanglingIndexReferenceError
from phasekit.knowledge import KnowledgeIndex
from phasekit.models import DocRef


SAMPLE_INDEX = {
    "index_by_phase": {"implementation": ["phase/implementation.md", "module/database.md"]},
    "index_by_module": {"database": [{"path": "module/database.md", "tags": ["sql"]}]},
    "index_by_keyword": {"cache": ["module/api.md"], "sql": ["module/database.md"]},
    "aggregated_rules": {"style": {"max_line": 120}, "notes": ["keep me"]},
}


class TestKnowledgeIndexFile:
    """Test cases for loading and saving the index file."""

    def test_missing_file_is_empty(self, tmp_path):
        """A missing index file is an empty index."""
        index = KnowledgeIndex.load(tmp_path / "knowledge_index.json")

        assert index.lookup("phase", "implementation") == []
        assert index.aggregated_rules == {}

    def test_load_and_lookup(self, tmp_path):
        """Bare paths and tagged objects both load."""
        path = tmp_path / "knowledge_index.json"
        path.write_text(json.dumps(SAMPLE_INDEX), encoding="utf-8")

        index = KnowledgeIndex.load(path)

        assert [ref.path for ref in index.lookup("phase", "implementation")] == [
            "phase/implementation.md",
            "module/database.md",
        ]
        assert index.lookup("module", "database") == [DocRef("module/database.md", frozenset({"sql"}))]

    def test_aggregated_rules_pass_through(self, tmp_path):
        """Opaque rules survive a load/save cycle untouched."""
        path = tmp_path / "knowledge_index.json"
        path.write_text(json.dumps(SAMPLE_INDEX), encoding="utf-8")

        KnowledgeIndex.load(path).save(path)

        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["aggregated_rules"] == SAMPLE_INDEX["aggregated_rules"]
        assert saved["index_by_module"] == SAMPLE_INDEX["index_by_module"]

    def test_bad_section_raises(self, tmp_path):
        """A section that is not an object is rejected."""
        path = tmp_path / "knowledge_index.json"
        path.write_text(json.dumps({"index_by_phase": ["oops"]}), encoding="utf-8")

        with pytest.raises(ValueError):
            KnowledgeIndex.load(path)

    @pytest.mark.parametrize("refs", ["phase/implementation.md", {"path": "phase/implementation.md"}, [5], [{"tags": []}]])
    def test_malformed_references_raise(self, tmp_path, refs):
        """Section values must be lists of paths or path objects."""
        path = tmp_path / "knowledge_index.json"
        path.write_text(json.dumps({"index_by_phase": {"implementation": refs}}), encoding="utf-8")

        with pytest.raises(ValueError):
            KnowledgeIndex.load(path)

    def test_save_is_atomic(self, tmp_path):
        """Saving goes through the temp-file-and-rename writer."""
        path = tmp_path / "knowledge_index.json"
        path.write_text(json.dumps(SAMPLE_INDEX), encoding="utf-8")

        with patch("phasekit.knowledge.atomic_write_text", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                KnowledgeIndex().save(path)

        assert json.loads(path.read_text(encoding="utf-8")) == SAMPLE_INDEX


class TestKnowledgeIndexLookup:
    """Test cases for lookups and additions."""

    def test_unknown_dimension(self):
        """Only phase, module and keyword are dimensions."""
        with pytest.raises(ValueError, match="Unknown index dimension"):
            KnowledgeIndex().lookup("team", "core")

    def test_lookup_keywords_whole_words(self):
        """Keywords match whole words only, deduplicated by path."""
        index = KnowledgeIndex.from_dict(SAMPLE_INDEX)

        refs = index.lookup_keywords("Add a cache in front of the SQL layer; sql again")

        assert [ref.path for ref in refs] == ["module/api.md", "module/database.md"]
        assert index.lookup_keywords("caches everywhere") == []

    def test_add_deduplicates(self):
        """Adding an already indexed path is a no-op."""
        index = KnowledgeIndex()

        assert index.add("module", "api", DocRef("module/api.md"))
        assert not index.add("module", "api", DocRef("module/api.md", frozenset({"rest"})))
        assert len(index.lookup("module", "api")) == 1


class TestKnowledgeIndexIntegrity:
    """Test cases for check_integrity."""

    def test_reports_dangling_references(self, store):
        """Every unresolved path is reported as a non-fatal error."""
        store.put("module", "database", "db")
        index = KnowledgeIndex.from_dict(SAMPLE_INDEX)

        problems = index.check_integrity(store)

        assert all(isinstance(problem, DanglingIndexReferenceError) for problem in problems)
        assert sorted((p.dimension, p.key, p.path) for p in problems) == [
            ("keyword", "cache", "module/api.md"),
            ("phase", "implementation", "phase/implementation.md"),
        ]
        assert not problems[0].fatal
