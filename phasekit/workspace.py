"""Workspace management for PhaseKit.

A workspace is the ``.phasekit/`` directory inside a project root. It holds
the state record, the prompt document store, the knowledge index, the
session changelog and the engine configuration, and wires them together.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from .assembler import ContextAssembler
from .config import (
    CONFIG_FILENAME,
    PROJECT_ROOT_ENV,
    EngineConfig,
    load_config,
    save_config,
    storage_dir_name,
)
from .documents import DocumentStore
from .knowledge import KnowledgeIndex
from .models import ProjectState
from .phasekit_logging import log_error_with_context, observability_hooks
from .session import SessionUpdateProtocol
from .state import ProjectStateRecord

logger = logging.getLogger("phasekit.workspace")

DEFAULT_MASTER_BODY = """# Master Instructions

Project-wide principles, conventions and constraints go here.
Every session loads this document first.
"""


class Workspace:
    """Manage the PhaseKit storage directory within a project."""

    def __init__(self, root: Path | str, config: Optional[EngineConfig] = None):
        """Initialize workspace with given root directory."""
        try:
            self.root = Path(root).resolve()
            self.base_dir = self.root / storage_dir_name()
            self.prompts_dir = self.base_dir / "prompts"
            self.changelog_dir = self.base_dir / "changelog"

            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
                self.prompts_dir.mkdir(parents=True, exist_ok=True)
                self.changelog_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise RuntimeError(f"Could not initialize workspace at {self.root}: {e}") from e

            self.config = config or load_config(self.config_path)
            self.store = DocumentStore(
                self.prompts_dir,
                retries=self.config.io_retries,
                backoff_seconds=self.config.io_backoff_seconds,
            )
            self.record = ProjectStateRecord(self.state_path, self.config.phase_order)

            logger.debug(f"Workspace initialized at {self.root}")
            observability_hooks.log_workflow_event("workspace_initialized", root=str(self.root))

        except Exception as e:
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        return self.base_dir / "state.json"

    @property
    def index_path(self) -> Path:
        return self.base_dir / "knowledge_index.json"

    @property
    def config_path(self) -> Path:
        return self.base_dir / CONFIG_FILENAME

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def load_index(self) -> KnowledgeIndex:
        """Read the knowledge index fresh from disk."""
        return KnowledgeIndex.load(self.index_path)

    def save_index(self, index: KnowledgeIndex) -> Path:
        return index.save(self.index_path)

    def save_config(self) -> Path:
        return save_config(self.config_path, self.config)

    def assembler(self) -> ContextAssembler:
        return ContextAssembler(self.config)

    def session_protocol(self) -> SessionUpdateProtocol:
        return SessionUpdateProtocol(self.record, self.store, self.config, changelog_dir=self.changelog_dir)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.record.exists()

    def bootstrap(
        self,
        project_name: str,
        *,
        master_body: Optional[str] = None,
        phase: Optional[str] = None,
    ) -> ProjectState:
        """Create state, master document, config and an empty index.

        Existing documents, config and index are left alone; only the state
        record must be new.
        """
        if not project_name or not project_name.strip():
            raise ValueError("Project name cannot be empty")
        if phase is not None and phase not in self.config.phase_order:
            raise ValueError(f"Unknown phase: {phase}")

        state = self.record.initialize(project_name.strip(), phase)

        if not self.store.exists("master", self.config.master_document_id):
            self.store.put(
                "master",
                self.config.master_document_id,
                master_body or DEFAULT_MASTER_BODY,
                change_description="Master document created",
            )
        if not self.config_path.exists():
            self.save_config()
        if not self.index_path.exists():
            self.save_index(KnowledgeIndex())

        observability_hooks.log_workflow_event(
            "project_bootstrapped", root=str(self.root), project_name=state.project_name, phase=state.phase
        )
        return state


def _candidate_bases(start: Path) -> List[Path]:
    return [start, *start.parents]


def resolve_root(root: Optional[str] = None, *, allow_new: bool = False) -> Path:
    """Work out which project root to operate on.

    An explicit ``root`` wins, then ``PHASEKIT_PROJECT_ROOT``, then the nearest
    directory (from the current one upwards) holding a storage directory.
    With ``allow_new`` the current directory is used as a last resort.
    """
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    cwd = Path.cwd().resolve()
    marker = storage_dir_name()
    for base in _candidate_bases(cwd):
        if (base / marker).is_dir():
            return base

    if allow_new:
        return cwd
    raise ValueError(
        "Unable to determine project root automatically. Pass a root explicitly "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )
