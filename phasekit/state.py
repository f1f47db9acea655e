"""The project state record: one JSON file, one write path.

Reads always go back to disk and validate what they find. Writes go through
:meth:`ProjectStateRecord.mutate`, which holds an exclusive lock (a thread
lock plus an ``fcntl`` lock on a ``.lock`` sidecar) for its full duration and
replaces the file atomically.
"""

from __future__ import annotations

import fcntl
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .documents import atomic_write_text
from .errors import StateCorruptionError
from .models import DEFAULT_PHASE_ORDER, ProjectState, utc_timestamp
from .phasekit_logging import log_operation

logger = logging.getLogger("phasekit.state")

_LOCK_SUFFIX = ".lock"


class ProjectStateRecord:
    """Owner of the persisted :class:`ProjectState`."""

    def __init__(self, path: Path | str, phase_order: Optional[List[str]] = None):
        self.path = Path(path)
        self.phase_order = list(phase_order or DEFAULT_PHASE_ORDER)
        self._thread_lock = threading.RLock()
        self._depth = 0

    @property
    def lock_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + _LOCK_SUFFIX)

    def exists(self) -> bool:
        return self.path.is_file()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the record's exclusive lock. Re-entrant within one thread."""
        with self._thread_lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with self.lock_path.open("a+", encoding="utf-8") as lock_handle:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
                self._depth = 1
                try:
                    yield
                finally:
                    self._depth = 0
                    fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self) -> ProjectState:
        """Load and validate the record from disk.

        Raises:
            FileNotFoundError: If the record has not been initialized.
            StateCorruptionError: If the file is unparseable or invalid.
        """
        if not self.path.is_file():
            raise FileNotFoundError(f"Project state not found: {self.path}")

        raw = self.path.read_text(encoding="utf-8")
        try:
            state = ProjectState.from_dict(json.loads(raw))
        except json.JSONDecodeError as e:
            raise StateCorruptionError(str(self.path), [f"Invalid JSON: {e}"]) from e
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateCorruptionError(str(self.path), [f"Malformed record: {type(e).__name__}: {e}"]) from e

        issues = state.validate(self.phase_order)
        if issues:
            raise StateCorruptionError(str(self.path), issues)
        return state

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def _write(self, state: ProjectState) -> None:
        atomic_write_text(self.path, json.dumps(state.to_dict(), indent=2) + "\n")

    def _checked(self, state: ProjectState) -> ProjectState:
        issues = state.validate(self.phase_order)
        if issues:
            raise StateCorruptionError(str(self.path), issues)
        return state

    def mutate(self, fn: Callable[[ProjectState], ProjectState]) -> ProjectState:
        """Apply ``fn`` to a copy of the current record and persist the result.

        The result is validated before anything is written; an invalid result
        raises :class:`StateCorruptionError` and leaves the file untouched.
        """
        with self.exclusive():
            with log_operation("mutate_state", path=str(self.path)):
                current = self.read()
                updated = fn(current.copy())
                if not isinstance(updated, ProjectState):
                    raise TypeError(f"State mutation must return a ProjectState, got {type(updated).__name__}")
                updated.updated_at = utc_timestamp()
                self._write(self._checked(updated))
                return updated

    def initialize(self, project_name: str, phase: Optional[str] = None) -> ProjectState:
        """Create the record. Refuses to overwrite an existing one."""
        with self.exclusive():
            if self.exists():
                raise FileExistsError(f"Project state already exists at {self.path}")
            state = ProjectState.new(project_name, phase or self.phase_order[0])
            self._write(self._checked(state))
            logger.info(f"Initialized project state at {self.path} in phase '{state.phase}'")
            return state
