"""Unit tests for phase transition evaluation, advance and rollback."""

import pytest

from phasekit.config import EngineConfig
from phasekit.errors import TransitionNotAllowedError
from phasekit.models import TaskRef
from phasekit.transitions import advance_phase, evaluate, rollback_phase


class TestEvaluate:
    """Test cases for the pure transition evaluator."""

    def test_open_critical_tasks_block(self, make_state, config):
        """Any incomplete critical task makes the phase ineligible."""
        state = make_state(critical=[TaskRef("Design database schema", status="in_progress"), TaskRef("Build API")])

        verdict = evaluate(state, config)

        assert not verdict.eligible
        assert verdict.target_phase == "testing"
        assert "2 of 2 critical tasks incomplete" in verdict.reasons[0]

    def test_all_criteria_met(self, make_state, config):
        """Complete critical tasks, enough high tasks and no blockers is eligible."""
        state = make_state(
            critical=[TaskRef("a", status="complete")],
            high=[TaskRef(str(i), status="complete") for i in range(9)] + [TaskRef("open")],
        )

        verdict = evaluate(state, config)

        assert verdict.eligible
        assert verdict.target_phase == "testing"

    def test_high_priority_threshold(self, make_state, config):
        """High tier completion below the threshold blocks."""
        state = make_state(high=[TaskRef("a", status="complete"), TaskRef("b")])

        verdict = evaluate(state, config)

        assert not verdict.eligible
        assert any("below threshold" in reason for reason in verdict.reasons)

    def test_threshold_is_configurable(self, make_state):
        """A lower threshold admits the same state."""
        state = make_state(high=[TaskRef("a", status="complete"), TaskRef("b")])

        assert evaluate(state, EngineConfig(high_priority_threshold=0.5)).eligible

    def test_blockers(self, make_state, config):
        """Unresolved blockers block."""
        state = make_state()
        state.blockers.append("Production database unavailable")

        verdict = evaluate(state, config)

        assert not verdict.eligible
        assert "Production database unavailable" in verdict.reasons[0]

    def test_health_metric_floors(self, make_state):
        """Missing and low metrics are both reported."""
        config = EngineConfig(min_health_metrics={"coverage": 80, "security": 90})
        state = make_state()
        state.health_metrics["coverage"] = 70

        verdict = evaluate(state, config)

        assert not verdict.eligible
        assert len(verdict.reasons) == 2

    def test_final_phase_never_eligible(self, make_state, config):
        """There is nowhere to go from the last phase."""
        verdict = evaluate(make_state(phase="maintenance"), config)

        assert not verdict.eligible
        assert verdict.target_phase is None

    def test_empty_tiers_are_eligible(self, make_state, config):
        """A phase with no tasks at all may advance."""
        assert evaluate(make_state(phase="planning"), config).eligible

    def test_evaluate_is_pure_and_idempotent(self, make_state, config):
        """Evaluating twice gives the same verdict and leaves the state alone."""
        state = make_state(critical=[TaskRef("a")], high=[TaskRef("b")])
        state.blockers.append("x")
        before = state.copy()

        first = evaluate(state, config)
        second = evaluate(state, config)

        assert first == second
        assert state == before


class TestAdvance:
    """Test cases for advance_phase."""

    def test_requires_confirmation(self, record, config):
        """Without confirm nothing happens."""
        with pytest.raises(TransitionNotAllowedError, match="confirmation"):
            advance_phase(record, config, confirm=False)

    def test_refuses_ineligible_phase(self, record, config):
        """The record's open critical tasks block the advance."""
        before = record.path.read_text(encoding="utf-8")

        with pytest.raises(TransitionNotAllowedError) as excinfo:
            advance_phase(record, config, confirm=True)

        assert excinfo.value.reasons
        assert record.path.read_text(encoding="utf-8") == before

    def test_advances_and_records_history(self, record, config):
        """An eligible, confirmed advance closes and opens history entries."""
        def finish(state):
            for task in state.tasks["critical"]:
                task.status = "complete"
            return state

        record.mutate(finish)

        state = advance_phase(record, config, confirm=True, reason="Feature complete")

        assert state.phase == "testing"
        assert state.phase_history[-2].phase == "implementation"
        assert state.phase_history[-2].exited_at is not None
        assert state.phase_history[-1].action == "advance"
        assert state.phase_history[-1].reason == "Feature complete"
        assert state.pending_verdict is None
        assert record.read() == state


class TestRollback:
    """Test cases for rollback_phase."""

    def test_rollback_is_recorded(self, record, config):
        """Rollback opens an entry marked as a rollback with its reason."""
        state = rollback_phase(record, config, "architecture", reason="Schema needs redesign")

        assert state.phase == "architecture"
        assert state.phase_history[-1].action == "rollback"
        assert state.phase_history[-1].reason == "Schema needs redesign"
        assert record.read().validate() == []

    def test_rollback_requires_reason(self, record, config):
        """An unexplained rollback is refused."""
        with pytest.raises(TransitionNotAllowedError, match="reason"):
            rollback_phase(record, config, "planning", reason=" ")

    def test_rollback_target_must_be_earlier(self, record, config):
        """Rolling 'back' to the same or a later phase is refused."""
        with pytest.raises(TransitionNotAllowedError, match="must precede"):
            rollback_phase(record, config, "testing", reason="wrong way")
        with pytest.raises(TransitionNotAllowedError, match="Unknown phase"):
            rollback_phase(record, config, "research", reason="no such phase")
