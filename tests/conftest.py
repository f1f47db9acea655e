"""Shared fixtures for PhaseKit tests."""

import logging

import pytest

from phasekit.config import LOG_LEVEL_ENV, PROJECT_ROOT_ENV, STORAGE_DIR_ENV, EngineConfig
from phasekit.documents import DocumentStore
from phasekit.knowledge import KnowledgeIndex
from phasekit.models import ProjectState, TaskRef
from phasekit.phasekit_logging import observability_hooks, performance_monitor
from phasekit.state import ProjectStateRecord
from phasekit.workspace import Workspace


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's PhaseKit environment out of every test."""
    for name in (PROJECT_ROOT_ENV, STORAGE_DIR_ENV, LOG_LEVEL_ENV):
        monkeypatch.delenv(name, raising=False)
    yield
    performance_monitor.clear()
    observability_hooks.hooks.clear()
    phasekit_logger = logging.getLogger("phasekit")
    for handler in list(phasekit_logger.handlers):
        handler.close()
        phasekit_logger.removeHandler(handler)
    phasekit_logger.setLevel(logging.NOTSET)


@pytest.fixture
def config():
    """Default engine configuration."""
    return EngineConfig()


@pytest.fixture
def store(tmp_path):
    """An empty document store with a master document."""
    document_store = DocumentStore(tmp_path / "prompts", backoff_seconds=0)
    document_store.put("master", "master", "# Master\n\nAlways write tests.\n")
    return document_store


@pytest.fixture
def record(tmp_path):
    """A state record in the implementation phase with two critical tasks."""
    state_record = ProjectStateRecord(tmp_path / "state.json")
    state_record.initialize("Demo", "implementation")

    def seed(state):
        state.tasks["critical"] = [
            TaskRef("Design database schema", status="in_progress"),
            TaskRef("Build API endpoints", status="not_started"),
        ]
        return state

    state_record.mutate(seed)
    return state_record


@pytest.fixture
def index():
    """An empty knowledge index."""
    return KnowledgeIndex()


@pytest.fixture
def workspace(tmp_path):
    """A bootstrapped workspace in the implementation phase."""
    ws = Workspace(tmp_path)
    ws.bootstrap("Demo", phase="implementation")
    return ws


@pytest.fixture
def make_state():
    """Factory for in-memory states with the given tasks per tier."""

    def factory(phase="implementation", **tiers):
        state = ProjectState.new("Demo", phase, timestamp="2024-01-01T00:00:00Z")
        for tier, tasks in tiers.items():
            state.tasks[tier] = list(tasks)
        return state

    return factory
