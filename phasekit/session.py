"""Session update protocol.

Writes a finished session back into the project: session history, task
status, blockers, phase/module document logs and a fresh transition verdict.
Documents are written first and the state record last, all under the
record's lock; if anything fails, every document written so far is restored
and the record is left as it was.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .assembler import derive_module
from .config import EngineConfig
from .documents import DocumentSnapshot, DocumentStore
from .errors import DocumentStoreError, PartialWriteError, PhaseKitError, StateCorruptionError, UnmatchedTaskWarning
from .models import ProjectState, SessionRecord, TransitionVerdict, is_document_id, utc_timestamp
from .phasekit_logging import log_error_with_context, log_performance, log_session_applied, log_transition_evaluated
from .state import ProjectStateRecord
from .transitions import evaluate

logger = logging.getLogger("phasekit.session")


@dataclass(slots=True)
class SessionOutcome:
    """Result of :meth:`SessionUpdateProtocol.apply_session`."""

    state: ProjectState
    verdict: TransitionVerdict
    completed: List[str] = field(default_factory=list)
    warnings: List[PhaseKitError] = field(default_factory=list)
    changelog_path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "phase": self.state.phase,
            "verdict": self.verdict.to_dict(),
            "completed": list(self.completed),
            "warnings": [warning.to_dict() for warning in self.warnings],
            "changelog_path": str(self.changelog_path) if self.changelog_path else None,
            "session_count": len(self.state.session_history),
            "blockers": list(self.state.blockers),
        }


class SessionUpdateProtocol:
    """Apply session results to the state record and document store atomically."""

    def __init__(
        self,
        record: ProjectStateRecord,
        store: DocumentStore,
        config: Optional[EngineConfig] = None,
        changelog_dir: Optional[Path] = None,
        clock: Callable[[], str] = utc_timestamp,
    ):
        self.record = record
        self.store = store
        self.config = config or EngineConfig()
        self.changelog_dir = Path(changelog_dir) if changelog_dir else None
        self.clock = clock

    # ------------------------------------------------------------------
    # State changes (in memory)
    # ------------------------------------------------------------------

    def _complete_tasks(
        self, state: ProjectState, tasks_completed: Sequence[str], warnings: List[PhaseKitError]
    ) -> Tuple[List[str], Dict[str, List[str]]]:
        completed: List[str] = []
        by_module: Dict[str, List[str]] = {}
        for description in tasks_completed:
            matches = state.find_tasks(description)
            if not matches:
                warning = UnmatchedTaskWarning(description)
                logger.warning(str(warning))
                warnings.append(warning)
                continue
            for task in matches:
                task.status = "complete"
                module = derive_module(task, self.config.module_keywords)
                if module and not is_document_id(module):
                    logger.warning(f"Module id {module!r} cannot name a document, skipping its update log")
                elif module:
                    by_module.setdefault(module, []).append(task.description)
            completed.append(description)
        return completed, by_module

    @staticmethod
    def _update_blockers(state: ProjectState, blocking: Sequence[str], resolved: Sequence[str]) -> None:
        for blocker in resolved:
            if blocker in state.blockers:
                state.blockers.remove(blocker)
            else:
                logger.info(f"Resolved blocker '{blocker}' was not recorded")
        for blocker in blocking:
            if blocker not in state.blockers:
                state.blockers.append(blocker)

    # ------------------------------------------------------------------
    # Document staging
    # ------------------------------------------------------------------

    @staticmethod
    def _phase_entry(timestamp: str, summary: str, completed: List[str], issues: Sequence[str]) -> str:
        parts = [f"Session {timestamp}: {summary.strip()}"]
        parts.append("Completed: " + ("; ".join(completed) if completed else "none"))
        if issues:
            parts.append("Issues: " + "; ".join(issues))
        return " | ".join(parts)

    def _restore(self, snapshots: List[DocumentSnapshot]) -> None:
        for snapshot in reversed(snapshots):
            try:
                self.store.restore(snapshot)
            except DocumentStoreError as e:
                log_error_with_context(e, {
                    "operation": "restore_document",
                    "tier": snapshot.tier,
                    "doc_id": snapshot.doc_id,
                })

    def _write_documents(self, changes: List[Tuple[str, str, str]], timestamp: str) -> List[DocumentSnapshot]:
        snapshots: List[DocumentSnapshot] = []
        try:
            for tier, doc_id, change in changes:
                snapshots.append(self.store.snapshot(tier, doc_id))
                self.store.append_update(tier, doc_id, change, timestamp=timestamp)
        except Exception as e:
            self._restore(snapshots)
            raise PartialWriteError("document update", e) from e
        return snapshots

    # ------------------------------------------------------------------
    # Changelog
    # ------------------------------------------------------------------

    def _append_changelog(self, timestamp: str, payload: Dict[str, Any]) -> Path:
        self.changelog_dir.mkdir(parents=True, exist_ok=True)
        stem = re.sub(r"[^0-9A-Za-z]", "", timestamp) or "entry"
        suffix = 0
        while True:
            name = f"{stem}.json" if suffix == 0 else f"{stem}-{suffix}.json"
            path = self.changelog_dir / name
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(json.dumps(payload, indent=2) + "\n")
                return path
            except FileExistsError:
                suffix += 1

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    @log_performance("apply_session")
    def apply_session(
        self,
        summary: str,
        tasks_completed: Sequence[str] = (),
        new_issues: Sequence[str] = (),
        *,
        blocking_issues: Sequence[str] = (),
        resolved_blockers: Sequence[str] = (),
    ) -> SessionOutcome:
        """Record a session and return the committed state with its verdict.

        Raises:
            ValueError: If ``summary`` is empty.
            StateCorruptionError: If the record is corrupt or the result invalid.
            PartialWriteError: If a write failed; nothing was left changed.
        """
        if not summary or not summary.strip():
            raise ValueError("Session summary cannot be empty")
        if any(not blocker or not blocker.strip() for blocker in blocking_issues):
            raise ValueError("Blocking issues must be non-empty strings")

        warnings: List[PhaseKitError] = []

        with self.record.exclusive():
            state = self.record.read().copy()
            timestamp = self.clock()

            completed, by_module = self._complete_tasks(state, tasks_completed, warnings)
            state.session_history.append(
                SessionRecord(
                    timestamp=timestamp,
                    summary=summary,
                    tasks_completed=tuple(tasks_completed),
                    issues_raised=tuple(new_issues),
                )
            )
            self._update_blockers(state, blocking_issues, resolved_blockers)

            verdict = evaluate(state, self.config)
            state.pending_verdict = verdict

            issues = state.validate(self.config.phase_order)
            if issues:
                raise StateCorruptionError(str(self.record.path), issues)

            changes = [("phase", state.phase, self._phase_entry(timestamp, summary, completed, new_issues))]
            for module, descriptions in by_module.items():
                changes.append(("module", module, f"Session {timestamp}: completed " + "; ".join(descriptions)))

            snapshots = self._write_documents(changes, timestamp)
            try:
                committed = self.record.mutate(lambda _current: state)
            except Exception as e:
                self._restore(snapshots)
                raise PartialWriteError("state write", e) from e

        log_transition_evaluated(committed.phase, verdict.eligible, verdict.target_phase)
        log_session_applied(committed.phase, len(completed), len(warnings))

        changelog_path = None
        if self.changelog_dir is not None:
            payload = {
                "timestamp": timestamp,
                "phase": committed.phase,
                "summary": summary,
                "tasks_completed": completed,
                "unmatched_tasks": [w.description for w in warnings if isinstance(w, UnmatchedTaskWarning)],
                "issues_raised": list(new_issues),
                "blockers": list(committed.blockers),
                "verdict": verdict.to_dict(),
            }
            try:
                changelog_path = self._append_changelog(timestamp, payload)
            except OSError as e:
                problem = DocumentStoreError(f"Changelog entry for session {timestamp} not written: {e}")
                log_error_with_context(e, {"operation": "append_changelog", "timestamp": timestamp})
                warnings.append(problem)

        return SessionOutcome(
            state=committed,
            verdict=verdict,
            completed=completed,
            warnings=warnings,
            changelog_path=changelog_path,
        )
