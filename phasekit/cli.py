"""Command line entry point for PhaseKit.

Exit codes: 0 on success (and for an eligible ``check-transition``), 1 when
``check-transition`` finds the phase not eligible, 2 on any reported error.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from .config import LOG_LEVEL_ENV, PROJECT_ROOT_ENV
from .errors import PhaseKitError
from .models import PRIORITY_TIERS, TASK_STATUSES
from .phasekit_logging import setup_logging
from .workflow import ProjectWorkflow
from .workspace import resolve_root

logger = logging.getLogger("phasekit.cli")

EXIT_OK = 0
EXIT_NOT_ELIGIBLE = 1
EXIT_ERROR = 2


def _emit(result: Dict[str, Any]) -> int:
    if "error" in result:
        print(result["error"], file=sys.stderr)
        for detail in result.get("details", []):
            print(f"  - {detail}", file=sys.stderr)
        if result.get("suggestion"):
            print(f"Suggestion: {result['suggestion']}", file=sys.stderr)
        return EXIT_ERROR
    print(json.dumps(result, indent=2))
    return EXIT_OK


def _cmd_init(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    master_body = None
    if args.master_file:
        with open(args.master_file, encoding="utf-8") as handle:
            master_body = handle.read()
    return _emit(workflow.initialize_project(args.project_name, master_body=master_body, phase=args.phase))


def _cmd_assemble_context(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    result = workflow.assemble_context(include_text=True)
    if "error" in result or args.json:
        return _emit(result)
    print(result["text"])
    for issue in result.get("issues", []):
        print(f"warning: {issue['message']}", file=sys.stderr)
    return EXIT_OK


def _cmd_apply_session(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(
        workflow.apply_session(
            args.summary,
            tasks_completed=args.completed,
            new_issues=args.issues,
            blocking_issues=args.blocking,
            resolved_blockers=args.resolved,
        )
    )


def _cmd_check_transition(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    result = workflow.check_transition()
    code = _emit(result)
    if code != EXIT_OK:
        return code
    return EXIT_OK if result["eligible"] else EXIT_NOT_ELIGIBLE


def _cmd_advance(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.advance_phase(confirm=args.confirm, reason=args.reason))


def _cmd_rollback(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.rollback_phase(args.target, args.reason))


def _cmd_add_task(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.add_task(args.description, tier=args.tier, module_hint=args.module, status=args.status))


def _cmd_task_status(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.update_task_status(args.description, args.status))


def _cmd_metric(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.set_health_metric(args.name, args.score))


def _cmd_index_add(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.add_index_entry(args.dimension, args.key, args.path, tags=args.tags))


def _cmd_check_index(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    result = workflow.check_index()
    code = _emit(result)
    if code != EXIT_OK:
        return code
    return EXIT_OK if result["count"] == 0 else EXIT_NOT_ELIGIBLE


def _cmd_status(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.project_status())


def _cmd_guide(workflow: ProjectWorkflow, args: argparse.Namespace) -> int:
    return _emit(workflow.get_workflow_guide())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phasekit", description="Phase-aware context assembly for AI-assisted projects")
    parser.add_argument("--root", help="Project root (defaults to PHASEKIT_PROJECT_ROOT or the nearest initialized directory)")
    parser.add_argument(
        "--log-level",
        default=os.getenv(LOG_LEVEL_ENV, "WARNING"),
        help="Logging level (default from PHASEKIT_LOG_LEVEL, else WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Initialize a project in the root directory")
    init.add_argument("project_name")
    init.add_argument("--phase", help="Starting phase (defaults to the first configured phase)")
    init.add_argument("--master-file", help="File whose contents become the master document")
    init.set_defaults(handler=_cmd_init, allow_new=True)

    assemble = subparsers.add_parser("assemble-context", help="Print the context bundle for the current phase")
    assemble.add_argument("--json", action="store_true", help="Print the bundle as JSON")
    assemble.set_defaults(handler=_cmd_assemble_context)

    session = subparsers.add_parser("apply-session", help="Record a finished session")
    session.add_argument("--summary", required=True)
    session.add_argument("--completed", nargs="*", default=[], metavar="TASK")
    session.add_argument("--issues", nargs="*", default=[], metavar="ISSUE")
    session.add_argument("--blocking", nargs="*", default=[], metavar="ISSUE", help="Issues that block the phase")
    session.add_argument("--resolved", nargs="*", default=[], metavar="ISSUE", help="Blockers that are now resolved")
    session.set_defaults(handler=_cmd_apply_session)

    check = subparsers.add_parser("check-transition", help="Exit 0 if the phase may advance, 1 otherwise")
    check.set_defaults(handler=_cmd_check_transition)

    advance = subparsers.add_parser("advance", help="Advance to the next phase")
    advance.add_argument("--confirm", action="store_true", help="Confirm the advance")
    advance.add_argument("--reason")
    advance.set_defaults(handler=_cmd_advance)

    rollback = subparsers.add_parser("rollback", help="Return to an earlier phase")
    rollback.add_argument("target")
    rollback.add_argument("--reason", required=True)
    rollback.set_defaults(handler=_cmd_rollback)

    add_task = subparsers.add_parser("add-task", help="Track a task in a priority tier")
    add_task.add_argument("description")
    add_task.add_argument("--tier", choices=PRIORITY_TIERS, default="critical")
    add_task.add_argument("--module", help="Module document this task belongs to")
    add_task.add_argument("--status", choices=TASK_STATUSES, default="not_started")
    add_task.set_defaults(handler=_cmd_add_task)

    task_status = subparsers.add_parser("task-status", help="Set the status of a tracked task")
    task_status.add_argument("description")
    task_status.add_argument("status", choices=TASK_STATUSES)
    task_status.set_defaults(handler=_cmd_task_status)

    metric = subparsers.add_parser("metric", help="Record a health metric score (0-100)")
    metric.add_argument("name")
    metric.add_argument("score", type=float)
    metric.set_defaults(handler=_cmd_metric)

    index_add = subparsers.add_parser("index-add", help="Add a knowledge index reference")
    index_add.add_argument("dimension", choices=("phase", "module", "keyword"))
    index_add.add_argument("key")
    index_add.add_argument("path", help="Path relative to the prompts directory")
    index_add.add_argument("--tags", nargs="*", default=[])
    index_add.set_defaults(handler=_cmd_index_add)

    check_index = subparsers.add_parser("check-index", help="List dangling knowledge index references")
    check_index.set_defaults(handler=_cmd_check_index)

    status = subparsers.add_parser("status", help="Show project status")
    status.set_defaults(handler=_cmd_status)

    guide = subparsers.add_parser("guide", help="Show the session workflow")
    guide.set_defaults(handler=_cmd_guide, allow_new=True)

    serve = subparsers.add_parser("serve", help="Run the MCP server")
    serve.add_argument("--transport", default="stdio", choices=("stdio", "sse", "streamable-http"))
    serve.set_defaults(handler=None)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the ``phasekit`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "serve":
        # Imported here so the CLI works without starting the MCP machinery
        from .server import run

        if args.root:
            os.environ[PROJECT_ROOT_ENV] = args.root
        run(transport=args.transport)
        return EXIT_OK

    try:
        root = resolve_root(args.root, allow_new=getattr(args, "allow_new", False))
        workflow = ProjectWorkflow(root)
        return args.handler(workflow, args)
    except (PhaseKitError, ValueError, OSError) as e:
        logger.debug(f"Command {args.command} failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
