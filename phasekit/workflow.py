"""Workflow management for PhaseKit.

This module provides the operator-facing facade over the engine. Every
method returns a JSON-ready dictionary with a human-readable message and a
suggestion for the next step; engine errors become ``error`` payloads.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import PhaseKitError
from .models import PRIORITY_TIERS, SESSION_WORKFLOW, TASK_STATUSES, DocRef, TaskRef
from .phasekit_logging import log_error_with_context, log_operation, log_transition_evaluated
from .transitions import advance_phase, evaluate, rollback_phase
from .workspace import Workspace

logger = logging.getLogger("phasekit.workflow")

# Errors that describe a bad request or an unusable project rather than a bug
_REPORTABLE_ERRORS = (PhaseKitError, ValueError, FileNotFoundError, FileExistsError)


class ProjectWorkflow:
    """Drive the session loop for one project root."""

    def __init__(self, root: Path | str):
        """Initialize workflow with workspace root."""
        self.workspace = Workspace(root)

    def _error(self, operation: str, error: Exception, suggestion: str, next_step: str, **context) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, **context})
        payload: Dict[str, Any] = {
            "error": f"{operation} failed: {error}",
            "error_type": type(error).__name__,
            "suggestion": suggestion,
            "next_suggested_step": next_step,
        }
        issues = getattr(error, "issues", None) or getattr(error, "reasons", None)
        if issues:
            payload["details"] = list(issues)
        return payload

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize_project(
        self,
        project_name: str,
        master_body: Optional[str] = None,
        phase: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create the project's state record and master document."""
        try:
            with log_operation("initialize_project", project_name=project_name):
                state = self.workspace.bootstrap(project_name, master_body=master_body, phase=phase)
            return {
                "project_name": state.project_name,
                "phase": state.phase,
                "state_path": str(self.workspace.state_path),
                "next_suggested_step": "add_task",
                "workflow_tip": "Next: record the critical and high priority tasks for this phase with add_task",
                "message": f"Project '{state.project_name}' initialized in phase '{state.phase}'",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error(
                "initialize_project", e,
                "Use a non-empty project name and a configured phase; an existing project cannot be re-initialized",
                "project_status",
            )

    # ------------------------------------------------------------------
    # Context and sessions
    # ------------------------------------------------------------------

    def assemble_context(self, include_text: bool = True) -> Dict[str, Any]:
        """Assemble the context bundle for the current phase."""
        try:
            state = self.workspace.record.read()
            bundle = self.workspace.assembler().assemble(state, self.workspace.load_index(), self.workspace.store)
            result = bundle.to_dict()
            if include_text:
                result["text"] = bundle.render()
            result.update({
                "next_suggested_step": "apply_session",
                "workflow_tip": "Work the session, then record it with apply_session",
                "message": (
                    f"Assembled context for phase '{state.phase}' with {len(bundle.module_ids)} modules "
                    f"and {len(bundle.knowledge_refs)} knowledge references"
                    + (f"; {len(bundle.issues)} issues" if bundle.issues else "")
                ),
            })
            return result
        except _REPORTABLE_ERRORS as e:
            return self._error(
                "assemble_context", e,
                "Ensure the project is initialized and the master document exists",
                "initialize_project",
            )

    def apply_session(
        self,
        summary: str,
        tasks_completed: Optional[Sequence[str]] = None,
        new_issues: Optional[Sequence[str]] = None,
        blocking_issues: Optional[Sequence[str]] = None,
        resolved_blockers: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Record a finished session."""
        try:
            outcome = self.workspace.session_protocol().apply_session(
                summary,
                tasks_completed or [],
                new_issues or [],
                blocking_issues=blocking_issues or [],
                resolved_blockers=resolved_blockers or [],
            )
            result = outcome.to_dict()
            eligible = outcome.verdict.eligible
            result.update({
                "next_suggested_step": "advance_phase" if eligible else "assemble_context",
                "workflow_tip": (
                    f"Phase '{outcome.state.phase}' may advance to '{outcome.verdict.target_phase}'; "
                    "confirm with advance_phase"
                    if eligible
                    else "Start the next session with assemble_context"
                ),
                "message": (
                    f"Session recorded. Completed {len(outcome.completed)} tasks"
                    + (f", {len(outcome.warnings)} warnings" if outcome.warnings else "")
                ),
            })
            return result
        except _REPORTABLE_ERRORS as e:
            return self._error(
                "apply_session", e,
                "Nothing was changed; fix the reported problem and apply the session again",
                "apply_session",
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def check_transition(self) -> Dict[str, Any]:
        """Evaluate eligibility to leave the current phase."""
        try:
            state = self.workspace.record.read()
            verdict = evaluate(state, self.workspace.config)
            log_transition_evaluated(state.phase, verdict.eligible, verdict.target_phase)
            return {
                "phase": state.phase,
                **verdict.to_dict(),
                "next_suggested_step": "advance_phase" if verdict.eligible else "assemble_context",
                "workflow_tip": (
                    "Confirm the advance with advance_phase(confirm=True)"
                    if verdict.eligible
                    else "Resolve the listed reasons before advancing"
                ),
                "message": "Eligible to advance" if verdict.eligible else "Not eligible to advance",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error("check_transition", e, "Ensure the project is initialized", "initialize_project")

    def advance_phase(self, confirm: bool = False, reason: Optional[str] = None) -> Dict[str, Any]:
        """Advance to the next phase (operator confirmation required)."""
        try:
            previous = self.workspace.record.read().phase
            state = advance_phase(self.workspace.record, self.workspace.config, confirm=confirm, reason=reason)
            return {
                "previous_phase": previous,
                "phase": state.phase,
                "next_suggested_step": "add_task",
                "workflow_tip": f"Record the tasks for phase '{state.phase}'",
                "message": f"Advanced from '{previous}' to '{state.phase}'",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error(
                "advance_phase", e,
                "Pass confirm=True once check_transition reports the phase as eligible",
                "check_transition",
            )

    def rollback_phase(self, target: str, reason: str) -> Dict[str, Any]:
        """Return to an earlier phase, recording why."""
        try:
            previous = self.workspace.record.read().phase
            state = rollback_phase(self.workspace.record, self.workspace.config, target, reason=reason)
            return {
                "previous_phase": previous,
                "phase": state.phase,
                "next_suggested_step": "assemble_context",
                "workflow_tip": f"Rollback to '{state.phase}' recorded; reassemble context",
                "message": f"Rolled back from '{previous}' to '{state.phase}'",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error(
                "rollback_phase", e,
                "Name an earlier phase and give a reason",
                "project_status",
            )

    # ------------------------------------------------------------------
    # State maintenance
    # ------------------------------------------------------------------

    def add_task(
        self,
        description: str,
        tier: str = "critical",
        module_hint: Optional[str] = None,
        status: str = "not_started",
    ) -> Dict[str, Any]:
        """Track a new task in a priority tier."""
        try:
            if tier not in PRIORITY_TIERS:
                raise ValueError(f"Unknown priority tier: {tier}")
            task = TaskRef(description=description, status=status, module_hint=module_hint or None)
            issues = task.validate()
            if issues:
                raise ValueError("; ".join(issues))

            def add(state):
                if state.find_tasks(description):
                    raise ValueError(f"Task already tracked: {description}")
                state.tasks.setdefault(tier, []).append(task)
                return state

            self.workspace.record.mutate(add)
            return {
                "success": True,
                "task": task.to_dict(),
                "tier": tier,
                "next_suggested_step": "assemble_context",
                "workflow_tip": "Assemble context to pick up module documents for new critical tasks",
                "message": f"Added {tier} task '{description}'",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error("add_task", e, "Check the tier, status and description", "project_status")

    def update_task_status(self, description: str, status: str) -> Dict[str, Any]:
        """Set the status of every task matching ``description``."""
        try:
            if status not in TASK_STATUSES:
                raise ValueError(f"Invalid task status: {status}")
            updated: List[Dict[str, Any]] = []

            def update(state):
                matches = state.find_tasks(description)
                if not matches:
                    raise ValueError(f"No tracked task matches '{description}'")
                for task in matches:
                    task.status = status
                    updated.append(task.to_dict())
                return state

            self.workspace.record.mutate(update)
            return {
                "success": True,
                "tasks": updated,
                "message": f"Updated {len(updated)} task(s) to '{status}'",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error("update_task_status", e, "Check the task description and status", "project_status")

    def set_health_metric(self, name: str, score: float) -> Dict[str, Any]:
        """Record a health score in [0, 100]."""
        try:
            if not name or not name.strip():
                raise ValueError("Metric name cannot be empty")
            score = float(score)
            if not 0 <= score <= 100:
                raise ValueError(f"Health metric score must be within [0, 100], got: {score}")

            def record_metric(state):
                state.health_metrics[name] = score
                return state

            self.workspace.record.mutate(record_metric)
            return {"success": True, "metric": name, "score": score, "message": f"Health metric '{name}' set to {score:g}"}
        except _REPORTABLE_ERRORS as e:
            return self._error("set_health_metric", e, "Scores must be numbers within [0, 100]", "project_status")

    # ------------------------------------------------------------------
    # Knowledge index
    # ------------------------------------------------------------------

    def add_index_entry(
        self,
        dimension: str,
        key: str,
        path: str,
        tags: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Add a document reference to the knowledge index."""
        try:
            with self.workspace.record.exclusive():
                index = self.workspace.load_index()
                added = index.add(dimension, key, DocRef(path=path, tags=frozenset(tags or [])))
                if added:
                    self.workspace.save_index(index)
            resolved = self.workspace.store.resolve(path) is not None
            return {
                "added": added,
                "dimension": dimension,
                "key": key,
                "path": path,
                "resolves": resolved,
                "message": (
                    ("Added" if added else "Already indexed")
                    + f" ({dimension}, {key}) -> {path}"
                    + ("" if resolved else "; the document does not exist yet")
                ),
            }
        except _REPORTABLE_ERRORS as e:
            return self._error("add_index_entry", e, "Dimension must be phase, module or keyword", "check_index")

    def check_index(self) -> Dict[str, Any]:
        """Report dangling knowledge index references."""
        try:
            problems = self.workspace.load_index().check_integrity(self.workspace.store)
            return {
                "dangling": [problem.to_dict() for problem in problems],
                "count": len(problems),
                "message": "Knowledge index is consistent" if not problems else f"{len(problems)} dangling references",
            }
        except _REPORTABLE_ERRORS as e:
            return self._error("check_index", e, "Check that knowledge_index.json is valid JSON", "check_index")

    # ------------------------------------------------------------------
    # Status and guidance
    # ------------------------------------------------------------------

    def project_status(self) -> Dict[str, Any]:
        """Summarize phase, task progress, blockers and health."""
        try:
            state = self.workspace.record.read()
            tiers = {}
            for tier in PRIORITY_TIERS:
                tasks = state.tier(tier)
                tiers[tier] = {
                    "total": len(tasks),
                    "complete": sum(1 for task in tasks if task.is_complete()),
                    "open": [task.description for task in tasks if not task.is_complete()],
                }
            return {
                "project_name": state.project_name,
                "phase": state.phase,
                "phase_history": [entry.to_dict() for entry in state.phase_history],
                "tasks": tiers,
                "blockers": list(state.blockers),
                "health_metrics": dict(state.health_metrics),
                "session_count": len(state.session_history),
                "last_session": state.session_history[-1].to_dict() if state.session_history else None,
                "pending_verdict": state.pending_verdict.to_dict() if state.pending_verdict else None,
                "updated_at": state.updated_at,
            }
        except _REPORTABLE_ERRORS as e:
            return self._error("project_status", e, "Initialize the project or repair state.json", "initialize_project")

    def get_workflow_guide(self) -> Dict[str, Any]:
        """Get the recommended session loop."""
        return {
            "workflow_overview": "Session loop for a phase-driven project",
            "steps": [step.to_dict() for step in SESSION_WORKFLOW],
            "phases": list(self.workspace.config.phase_order),
            "tips": [
                "Assemble context at the start of every session",
                "Record every session with apply_session, including blocking issues",
                "Phase changes are proposed by check_transition and applied only with confirmation",
                "Use rollback_phase with a reason to return to an earlier phase",
            ],
        }
