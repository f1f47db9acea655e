"""Data models for PhaseKit.

This module contains the core data structures used throughout PhaseKit,
representing the project state record, its tasks and history, prompt
documents, knowledge references, transition verdicts and context bundles.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import PhaseKitError


def utc_timestamp() -> str:
    """Current UTC time as an ISO 8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# Task and tier vocabularies
TASK_STATUSES = ("not_started", "in_progress", "blocked", "complete")
PRIORITY_TIERS = ("critical", "high", "medium", "low")
DOCUMENT_TIERS = ("master", "phase", "module", "emergency")
INDEX_DIMENSIONS = ("phase", "module", "keyword")
HISTORY_ACTIONS = ("initial", "advance", "rollback")

# Phase and module ids double as document ids, so they must be safe file stems
DOCUMENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

DEFAULT_PHASE_ORDER = (
    "planning",
    "architecture",
    "implementation",
    "testing",
    "deployment",
    "maintenance",
)


def normalize_description(text: str) -> str:
    """Collapse whitespace and case so free-form task text can be compared."""
    return " ".join(text.split()).casefold()


def is_document_id(value: Any) -> bool:
    """Whether ``value`` can name a phase, module or other document."""
    return isinstance(value, str) and DOCUMENT_ID_PATTERN.match(value) is not None


def _require_list(value: Any, name: str) -> List[Any]:
    """Refuse anything that is not a list rather than coercing it."""
    if not isinstance(value, list):
        raise TypeError(f"'{name}' must be a list, got {type(value).__name__}")
    return value


def _list_field(data: Dict[str, Any], key: str) -> List[Any]:
    return _require_list(data.get(key, []), key)


def _dict_field(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise TypeError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


@dataclass(slots=True)
class TaskRef:
    """A tracked task inside one priority tier."""

    description: str
    status: str = "not_started"
    module_hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "description": self.description,
            "module_hint": self.module_hint,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRef":
        """Create from dictionary representation."""
        return cls(
            description=data["description"],
            status=data.get("status", "not_started"),
            module_hint=data.get("module_hint"),
        )

    def is_complete(self) -> bool:
        return self.status == "complete"

    def matches(self, description: str) -> bool:
        """Check whether a free-form description refers to this task."""
        return normalize_description(self.description) == normalize_description(description)

    def validate(self) -> List[str]:
        """Validate the task and return any issues."""
        issues = []
        if not isinstance(self.description, str) or not self.description.strip():
            issues.append("Task description is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Invalid task status: {self.status}")
        if self.module_hint is not None and not is_document_id(self.module_hint):
            issues.append(f"Module hint must be a document id (letters, digits, . _ -), got: {self.module_hint!r}")
        return issues


@dataclass(slots=True)
class PhaseHistoryEntry:
    """One stay in a phase. The open entry (no exited_at) is the current phase."""

    phase: str
    entered_at: str
    exited_at: Optional[str] = None
    action: str = "advance"
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "phase": self.phase,
            "entered_at": self.entered_at,
            "exited_at": self.exited_at,
            "action": self.action,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseHistoryEntry":
        """Create from dictionary representation."""
        return cls(
            phase=data["phase"],
            entered_at=data["entered_at"],
            exited_at=data.get("exited_at"),
            action=data.get("action", "advance"),
            reason=data.get("reason"),
        )

    def is_open(self) -> bool:
        return self.exited_at is None


@dataclass(frozen=True)
class SessionRecord:
    """A completed working session. Immutable once appended."""

    timestamp: str
    summary: str
    tasks_completed: tuple = ()
    issues_raised: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "timestamp": self.timestamp,
            "summary": self.summary,
            "tasks_completed": list(self.tasks_completed),
            "issues_raised": list(self.issues_raised),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        """Create from dictionary representation."""
        return cls(
            timestamp=data["timestamp"],
            summary=data.get("summary", ""),
            tasks_completed=tuple(_list_field(data, "tasks_completed")),
            issues_raised=tuple(_list_field(data, "issues_raised")),
        )


@dataclass(slots=True)
class TransitionVerdict:
    """Phase-advancement eligibility as reported by the evaluator."""

    eligible: bool
    target_phase: Optional[str] = None
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "eligible": self.eligible,
            "target_phase": self.target_phase,
            "reasons": list(self.reasons),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionVerdict":
        """Create from dictionary representation."""
        return cls(
            eligible=bool(data["eligible"]),
            target_phase=data.get("target_phase"),
            reasons=list(data.get("reasons", [])),
        )


@dataclass(slots=True)
class ProjectState:
    """The single source of truth for a project's progress."""

    phase: str
    phase_history: List[PhaseHistoryEntry] = field(default_factory=list)
    tasks: Dict[str, List[TaskRef]] = field(default_factory=dict)
    health_metrics: Dict[str, float] = field(default_factory=dict)
    session_history: List[SessionRecord] = field(default_factory=list)
    blockers: List[str] = field(default_factory=list)
    pending_verdict: Optional[TransitionVerdict] = None
    project_name: str = "PhaseKit Project"
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @classmethod
    def new(cls, project_name: str, phase: str, timestamp: Optional[str] = None) -> "ProjectState":
        """Create a fresh record positioned at ``phase``."""
        now = timestamp or utc_timestamp()
        return cls(
            phase=phase,
            phase_history=[PhaseHistoryEntry(phase=phase, entered_at=now, action="initial")],
            tasks={tier: [] for tier in PRIORITY_TIERS},
            project_name=project_name,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "project_name": self.project_name,
            "phase": self.phase,
            "phase_history": [entry.to_dict() for entry in self.phase_history],
            "tasks": {tier: [task.to_dict() for task in tasks] for tier, tasks in self.tasks.items()},
            "health_metrics": dict(self.health_metrics),
            "session_history": [session.to_dict() for session in self.session_history],
            "blockers": list(self.blockers),
            "pending_verdict": self.pending_verdict.to_dict() if self.pending_verdict else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectState":
        """Create from dictionary representation.

        Raises KeyError, TypeError or ValueError on structurally broken input;
        callers decide how to report that.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Project state must be an object, got {type(data).__name__}")
        verdict = data.get("pending_verdict")
        return cls(
            phase=data["phase"],
            phase_history=[PhaseHistoryEntry.from_dict(entry) for entry in _list_field(data, "phase_history")],
            tasks={
                tier: [TaskRef.from_dict(task) for task in _require_list(tasks, f"tasks.{tier}")]
                for tier, tasks in _dict_field(data, "tasks").items()
            },
            health_metrics={name: float(score) for name, score in _dict_field(data, "health_metrics").items()},
            session_history=[SessionRecord.from_dict(s) for s in _list_field(data, "session_history")],
            blockers=list(_list_field(data, "blockers")),
            pending_verdict=TransitionVerdict.from_dict(verdict) if verdict else None,
            project_name=data.get("project_name", "PhaseKit Project"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )

    def copy(self) -> "ProjectState":
        """Deep copy, so callers can mutate freely."""
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def tier(self, name: str) -> List[TaskRef]:
        return self.tasks.get(name, [])

    def open_history_entry(self) -> Optional[PhaseHistoryEntry]:
        for entry in reversed(self.phase_history):
            if entry.is_open():
                return entry
        return None

    def completion_ratio(self, tier: str) -> float:
        """Fraction of complete tasks in a tier; an empty tier counts as done."""
        tasks = self.tier(tier)
        if not tasks:
            return 1.0
        return sum(1 for task in tasks if task.is_complete()) / len(tasks)

    def find_tasks(self, description: str) -> List[TaskRef]:
        """All tasks, across tiers in priority order, matching a description."""
        matches: List[TaskRef] = []
        for tier in _ordered_tiers(self.tasks):
            matches.extend(task for task in self.tasks[tier] if task.matches(description))
        return matches

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, phase_order: Optional[List[str]] = None) -> List[str]:
        """Validate the record and return any issues."""
        order = list(phase_order or DEFAULT_PHASE_ORDER)
        issues: List[str] = []

        if self.phase not in order:
            issues.append(f"Unknown phase: {self.phase}")

        open_entries = [entry for entry in self.phase_history if entry.is_open()]
        if len(open_entries) != 1:
            issues.append(f"Phase history must have exactly one open entry, found {len(open_entries)}")
        elif open_entries[0].phase != self.phase:
            issues.append(
                f"Current phase '{self.phase}' does not match open history entry '{open_entries[0].phase}'"
            )
        elif self.phase_history[-1] is not open_entries[0]:
            issues.append("Open phase history entry must be the last entry")

        previous_rank: Optional[int] = None
        for idx, entry in enumerate(self.phase_history):
            if entry.action not in HISTORY_ACTIONS:
                issues.append(f"Phase history entry {idx} has invalid action: {entry.action}")
            if entry.phase not in order:
                issues.append(f"Phase history entry {idx} names unknown phase: {entry.phase}")
                previous_rank = None
                continue
            rank = order.index(entry.phase)
            if previous_rank is not None and rank < previous_rank and entry.action != "rollback":
                issues.append(
                    f"Phase history entry {idx} moves backwards to '{entry.phase}' without a recorded rollback"
                )
            previous_rank = rank

        for tier, tasks in self.tasks.items():
            if tier not in PRIORITY_TIERS:
                issues.append(f"Unknown priority tier: {tier}")
            for task in tasks:
                issues.extend(f"{tier}: {issue}" for issue in task.validate())

        for name, score in self.health_metrics.items():
            if not 0 <= score <= 100:
                issues.append(f"Health metric '{name}' must be within [0, 100], got: {score}")

        if len(set(self.blockers)) != len(self.blockers):
            issues.append("Blockers must be unique")
        if any(not isinstance(blocker, str) or not blocker for blocker in self.blockers):
            issues.append("Blockers must be non-empty strings")

        return issues


def _ordered_tiers(tasks: Dict[str, List[TaskRef]]) -> List[str]:
    known = [tier for tier in PRIORITY_TIERS if tier in tasks]
    return known + [tier for tier in tasks if tier not in PRIORITY_TIERS]


@dataclass(slots=True)
class DocRef:
    """A knowledge index reference to a document path."""

    path: str
    tags: frozenset = frozenset()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"path": self.path, "tags": sorted(self.tags)}

    @classmethod
    def from_entry(cls, entry: Any) -> "DocRef":
        """Accept either a bare path string or a ``{path, tags}`` object.

        Raises:
            ValueError: For any other shape, or a missing or empty path.
        """
        if isinstance(entry, str) and entry:
            return cls(path=entry)
        if isinstance(entry, dict) and isinstance(entry.get("path"), str) and entry["path"]:
            tags = entry.get("tags", [])
            if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
                raise ValueError(f"Document reference tags must be a list of strings: {entry!r}")
            return cls(path=entry["path"], tags=frozenset(tags))
        raise ValueError(f"Document reference must be a path or an object with a path: {entry!r}")

    def to_entry(self) -> Any:
        """Index file form: bare path when untagged."""
        if not self.tags:
            return self.path
        return self.to_dict()


@dataclass(slots=True)
class UpdateLogEntry:
    """One amendment to a prompt document."""

    timestamp: str
    change_description: str
    previous_body: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "timestamp": self.timestamp,
            "change_description": self.change_description,
            "previous_body": self.previous_body,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpdateLogEntry":
        """Create from dictionary representation."""
        return cls(
            timestamp=data["timestamp"],
            change_description=data["change_description"],
            previous_body=data.get("previous_body"),
        )


@dataclass(slots=True)
class PromptDocument:
    """An instruction document held in the document store."""

    tier: str
    doc_id: str
    body: str = ""
    update_log: List[UpdateLogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "tier": self.tier,
            "id": self.doc_id,
            "body": self.body,
            "update_log": [entry.to_dict() for entry in self.update_log],
        }


@dataclass(slots=True)
class ContextBundle:
    """The ordered set of documents a session should load. Never persisted."""

    master: str
    phase: str
    phase_id: str = ""
    modules: List[str] = field(default_factory=list)
    module_ids: List[str] = field(default_factory=list)
    missing_modules: List[str] = field(default_factory=list)
    knowledge_refs: List[DocRef] = field(default_factory=list)
    issues: List[PhaseKitError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "phase_id": self.phase_id,
            "master": self.master,
            "phase": self.phase,
            "modules": list(self.modules),
            "module_ids": list(self.module_ids),
            "missing_modules": list(self.missing_modules),
            "knowledge_refs": [ref.to_dict() for ref in self.knowledge_refs],
            "issues": [issue.to_dict() for issue in self.issues],
        }

    def render(self) -> str:
        """Render the bundle as a single text block, in load order."""
        sections = ["# Master", self.master.rstrip(), f"# Phase: {self.phase_id}", self.phase.rstrip()]
        for module_id, body in zip(self.module_ids, self.modules):
            sections.extend([f"# Module: {module_id}", body.rstrip()])
        if self.knowledge_refs:
            sections.append("# Knowledge")
            sections.extend(f"- {ref.path}" for ref in self.knowledge_refs)
        return "\n\n".join(section for section in sections if section) + "\n"


@dataclass(slots=True)
class WorkflowStep:
    """One step of the session loop, as presented to operators."""

    step_number: int
    name: str
    tool_name: str
    description: str
    purpose: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step": self.step_number,
            "name": self.name,
            "tool": self.tool_name,
            "description": self.description,
            "purpose": self.purpose,
        }


SESSION_WORKFLOW = [
    WorkflowStep(
        step_number=1,
        name="Project Setup",
        tool_name="initialize_project",
        description="Create the state record, master document, config and knowledge index",
        purpose="Establish the single source of truth for the project",
    ),
    WorkflowStep(
        step_number=2,
        name="Task Planning",
        tool_name="add_task",
        description="Record the current phase's tasks in their priority tiers",
        purpose="Give the transition evaluator and context assembler something to work from",
    ),
    WorkflowStep(
        step_number=3,
        name="Context Assembly",
        tool_name="assemble_context",
        description="Load master, phase and module documents plus knowledge references",
        purpose="Start every session with the same ordered context",
    ),
    WorkflowStep(
        step_number=4,
        name="Session Update",
        tool_name="apply_session",
        description="Record the session summary, completed tasks and raised issues",
        purpose="Keep state and documents consistent after each session",
    ),
    WorkflowStep(
        step_number=5,
        name="Transition Check",
        tool_name="check_transition",
        description="Evaluate whether the current phase may be left",
        purpose="Propose phase changes without applying them",
    ),
    WorkflowStep(
        step_number=6,
        name="Phase Advance",
        tool_name="advance_phase",
        description="Move to the next phase once the operator confirms",
        purpose="Apply phase changes only with explicit human confirmation",
    ),
]
