"""MCP server exposing the PhaseKit session loop as tools."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .workflow import ProjectWorkflow
from .workspace import resolve_root

mcp = FastMCP("phasekit")


def _workflow(root: Optional[str], *, allow_new: bool = False) -> ProjectWorkflow:
    return ProjectWorkflow(resolve_root(root, allow_new=allow_new))


@mcp.tool()
def initialize_project(
    project_name: str,
    master_body: Optional[str] = None,
    phase: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 1: Create the project state record, master document, config and knowledge index.
    Should be called once per project before any session."""

    return _workflow(root, allow_new=True).initialize_project(project_name, master_body=master_body, phase=phase)


@mcp.tool()
def add_task(
    description: str,
    tier: str = "critical",
    module_hint: Optional[str] = None,
    status: str = "not_started",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Track a task in a priority tier (critical, high, medium, low).
    Critical tasks decide which module documents are loaded into context."""

    return _workflow(root).add_task(description, tier=tier, module_hint=module_hint, status=status)


@mcp.tool()
def assemble_context(include_text: bool = True, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 3: Assemble master, phase and module documents plus knowledge references
    for the current phase, in a fixed order."""

    return _workflow(root).assemble_context(include_text=include_text)


@mcp.tool()
def apply_session(
    summary: str,
    tasks_completed: Optional[List[str]] = None,
    new_issues: Optional[List[str]] = None,
    blocking_issues: Optional[List[str]] = None,
    resolved_blockers: Optional[List[str]] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 4: Record a finished session. Marks completed tasks, records issues, appends
    blockers, amends the phase and module documents and re-evaluates the phase transition.
    All-or-nothing: on failure nothing is changed."""

    return _workflow(root).apply_session(
        summary,
        tasks_completed=tasks_completed,
        new_issues=new_issues,
        blocking_issues=blocking_issues,
        resolved_blockers=resolved_blockers,
    )


@mcp.tool()
def check_transition(root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 5: Report whether the current phase may be left, and to which phase.
    Never changes the phase."""

    return _workflow(root).check_transition()


@mcp.tool()
def advance_phase(confirm: bool = False, reason: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 6: Move to the next phase. Requires confirm=True and an eligible verdict."""

    return _workflow(root).advance_phase(confirm=confirm, reason=reason)


@mcp.tool()
def rollback_phase(target: str, reason: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return to an earlier phase. The rollback and its reason are recorded in phase history."""

    return _workflow(root).rollback_phase(target, reason)


@mcp.tool()
def update_task_status(description: str, status: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Set a tracked task's status (not_started, in_progress, blocked, complete)."""

    return _workflow(root).update_task_status(description, status)


@mcp.tool()
def set_health_metric(name: str, score: float, root: Optional[str] = None) -> Dict[str, Any]:
    """Record a project health score between 0 and 100."""

    return _workflow(root).set_health_metric(name, score)


@mcp.tool()
def add_index_entry(
    dimension: str,
    key: str,
    path: str,
    tags: Optional[List[str]] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Add a document reference to the knowledge index under (phase|module|keyword, key).
    Paths are relative to the prompts directory, e.g. 'module/database.md'."""

    return _workflow(root).add_index_entry(dimension, key, path, tags=tags)


@mcp.tool()
def check_index(root: Optional[str] = None) -> Dict[str, Any]:
    """List knowledge index references that point at missing documents."""

    return _workflow(root).check_index()


@mcp.tool()
def project_status(root: Optional[str] = None) -> Dict[str, Any]:
    """Summarize phase, task progress per tier, blockers, health metrics and the last verdict."""

    return _workflow(root).project_status()


@mcp.tool()
def get_workflow_guide(root: Optional[str] = None) -> Dict[str, Any]:
    """Describe the recommended session loop and the configured phases."""

    return _workflow(root, allow_new=True).get_workflow_guide()


@mcp.resource("phasekit://context")
def resource_context() -> str:
    """Resource view of the current context bundle."""

    try:
        workflow = _workflow(None)
    except ValueError:
        return "No project root detected. Set PHASEKIT_PROJECT_ROOT or initialize a project."

    result = workflow.assemble_context(include_text=True)
    if "error" in result:
        return result["error"]
    return result["text"]


def run(transport: str = "stdio") -> None:
    mcp.run(transport=transport)
