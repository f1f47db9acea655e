"""Unit tests for the phasekit command line."""

import json

import pytest

from phasekit.cli import EXIT_ERROR, EXIT_NOT_ELIGIBLE, EXIT_OK, build_parser, main


@pytest.fixture
def project(tmp_path):
    """An initialized project with one critical database task."""
    root = str(tmp_path)
    assert main(["--root", root, "init", "Demo", "--phase", "implementation"]) == EXIT_OK
    assert main(["--root", root, "add-task", "Design database schema"]) == EXIT_OK
    return root


class TestParser:
    """Test cases for argument parsing."""

    def test_apply_session_lists(self):
        """Completed tasks and issues accept several values."""
        args = build_parser().parse_args(
            ["apply-session", "--summary", "S", "--completed", "a", "b", "--issues", "x"]
        )

        assert args.completed == ["a", "b"]
        assert args.issues == ["x"]
        assert args.blocking == []

    def test_command_required(self):
        """A subcommand must be given."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    """Test cases for running commands end to end."""

    def test_check_transition_exit_codes(self, project, capsys):
        """Exit 1 while tasks are open, 0 once the phase is eligible."""
        assert main(["--root", project, "check-transition"]) == EXIT_NOT_ELIGIBLE
        capsys.readouterr()

        code = main(["--root", project, "apply-session", "--summary", "Schema done",
                     "--completed", "Design database schema"])
        assert code == EXIT_OK
        applied = json.loads(capsys.readouterr().out)
        assert applied["verdict"]["eligible"]

        assert main(["--root", project, "check-transition"]) == EXIT_OK
        verdict = json.loads(capsys.readouterr().out)
        assert verdict["target_phase"] == "testing"

    def test_assemble_context_text_and_json(self, project, capsys):
        """Plain output is the rendered bundle; --json is the full payload."""
        capsys.readouterr()

        assert main(["--root", project, "assemble-context"]) == EXIT_OK
        text = capsys.readouterr().out
        assert text.startswith("# Master")

        assert main(["--root", project, "assemble-context", "--json"]) == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["phase_id"] == "implementation"
        assert payload["missing_modules"] == ["database"]

    def test_advance_and_rollback(self, project, capsys):
        """Advance needs --confirm; rollback needs a reason."""
        main(["--root", project, "task-status", "Design database schema", "complete"])

        assert main(["--root", project, "advance"]) == EXIT_ERROR
        assert main(["--root", project, "advance", "--confirm"]) == EXIT_OK
        assert main(["--root", project, "rollback", "implementation", "--reason", "Bug found"]) == EXIT_OK
        capsys.readouterr()

        assert main(["--root", project, "status"]) == EXIT_OK
        status = json.loads(capsys.readouterr().out)
        assert status["phase"] == "implementation"
        assert [entry["action"] for entry in status["phase_history"]] == ["initial", "advance", "rollback"]

    def test_errors_exit_2(self, tmp_path, capsys):
        """Engine errors print to stderr and exit with 2."""
        assert main(["--root", str(tmp_path), "status"]) == EXIT_ERROR
        assert "project_status failed" in capsys.readouterr().err

        assert main(["--root", str(tmp_path / "missing"), "status"]) == EXIT_ERROR

    def test_check_index(self, project, capsys):
        """Dangling references make check-index exit 1."""
        assert main(["--root", project, "check-index"]) == EXIT_OK
        main(["--root", project, "index-add", "phase", "implementation", "phase/implementation.md"])

        assert main(["--root", project, "check-index"]) == EXIT_NOT_ELIGIBLE

    def test_metric_and_guide(self, project, capsys):
        """Metrics are validated; the guide prints JSON."""
        assert main(["--root", project, "metric", "coverage", "90"]) == EXIT_OK
        assert main(["--root", project, "metric", "coverage", "190"]) == EXIT_ERROR
        capsys.readouterr()

        assert main(["--root", project, "guide"]) == EXIT_OK
        assert "steps" in json.loads(capsys.readouterr().out)
