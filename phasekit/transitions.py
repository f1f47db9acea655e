"""Phase transition evaluation and the explicit phase-change operations.

:func:`evaluate` only reports eligibility. Moving between phases happens in
:func:`advance_phase` (operator-confirmed) and :func:`rollback_phase`
(explicitly recorded), both under the record's lock.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import EngineConfig
from .errors import TransitionNotAllowedError
from .models import PhaseHistoryEntry, ProjectState, TransitionVerdict, utc_timestamp
from .phasekit_logging import log_phase_changed, log_transition_evaluated
from .state import ProjectStateRecord

logger = logging.getLogger("phasekit.transitions")


def evaluate(state: ProjectState, config: Optional[EngineConfig] = None) -> TransitionVerdict:
    """Report whether ``state`` qualifies to leave its current phase.

    Pure: reads ``state`` and ``config`` only. Every failing rule contributes a
    reason, in rule order.
    """
    config = config or EngineConfig()
    reasons: List[str] = []

    critical = state.tier(config.critical_tier)
    open_critical = [task.description for task in critical if not task.is_complete()]
    if open_critical:
        reasons.append(
            f"{len(open_critical)} of {len(critical)} {config.critical_tier} tasks incomplete: "
            + ", ".join(open_critical)
        )

    ratio = state.completion_ratio(config.high_tier)
    if ratio < config.high_priority_threshold:
        reasons.append(
            f"{config.high_tier} priority completion {ratio:.0%} is below threshold "
            f"{config.high_priority_threshold:.0%}"
        )

    if state.blockers:
        reasons.append(f"{len(state.blockers)} unresolved blockers: " + ", ".join(state.blockers))

    for metric, floor in config.min_health_metrics.items():
        score = state.health_metrics.get(metric)
        if score is None:
            reasons.append(f"Health metric '{metric}' has no score (requires {floor:g})")
        elif score < floor:
            reasons.append(f"Health metric '{metric}' is {score:g}, below required {floor:g}")

    target = config.next_phase(state.phase) if state.phase in config.phase_order else None
    if state.phase not in config.phase_order:
        reasons.append(f"Phase '{state.phase}' is not part of the configured phase order")
    elif target is None:
        reasons.append(f"'{state.phase}' is the final phase")

    if reasons:
        return TransitionVerdict(eligible=False, target_phase=target, reasons=reasons)
    return TransitionVerdict(
        eligible=True,
        target_phase=target,
        reasons=[f"All transition criteria met for '{state.phase}' -> '{target}'"],
    )


def _enter_phase(state: ProjectState, phase: str, action: str, reason: Optional[str]) -> ProjectState:
    now = utc_timestamp()
    current = state.open_history_entry()
    if current is not None:
        current.exited_at = now
    state.phase_history.append(PhaseHistoryEntry(phase=phase, entered_at=now, action=action, reason=reason))
    state.phase = phase
    state.pending_verdict = None
    return state


def advance_phase(
    record: ProjectStateRecord,
    config: EngineConfig,
    *,
    confirm: bool,
    reason: Optional[str] = None,
) -> ProjectState:
    """Advance to the next phase once the operator confirms an eligible verdict.

    Raises:
        TransitionNotAllowedError: When unconfirmed or not eligible.
    """
    if not confirm:
        raise TransitionNotAllowedError("Phase advance requires operator confirmation")

    with record.exclusive():
        current = record.read()
        verdict = evaluate(current, config)
        log_transition_evaluated(current.phase, verdict.eligible, verdict.target_phase)
        if not verdict.eligible or verdict.target_phase is None:
            raise TransitionNotAllowedError(
                f"Phase '{current.phase}' is not eligible to advance", verdict.reasons
            )

        target = verdict.target_phase
        updated = record.mutate(lambda state: _enter_phase(state, target, "advance", reason))

    logger.info(f"Advanced phase '{current.phase}' -> '{target}'")
    log_phase_changed(current.phase, target, "advance", reason=reason)
    return updated


def rollback_phase(
    record: ProjectStateRecord,
    config: EngineConfig,
    target: str,
    *,
    reason: str,
) -> ProjectState:
    """Return to an earlier phase. Always recorded, never implicit.

    Raises:
        TransitionNotAllowedError: When ``target`` is unknown or not earlier.
    """
    if not reason or not reason.strip():
        raise TransitionNotAllowedError("Rollback requires a reason")
    if target not in config.phase_order:
        raise TransitionNotAllowedError(f"Unknown phase: {target}")

    with record.exclusive():
        current = record.read()
        if config.phase_index(target) >= config.phase_index(current.phase):
            raise TransitionNotAllowedError(
                f"Rollback target '{target}' must precede current phase '{current.phase}'"
            )
        updated = record.mutate(lambda state: _enter_phase(state, target, "rollback", reason))

    logger.warning(f"Rolled back phase '{current.phase}' -> '{target}': {reason}")
    log_phase_changed(current.phase, target, "rollback", reason=reason)
    return updated
