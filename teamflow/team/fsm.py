"""
Team phase state machine.

    discussion  -> planning, convergence
    planning    -> discussion, team-setup, convergence
    team-setup  -> discussion, planning, convergence
    convergence -> discussion, planning, execution
    execution   -> discussion, done
    done        -> discussion

Staying in the same phase is always allowed. `ensure_transition` reports illegal
moves as a value; callers apply the new phase only after an ok result.
"""

from __future__ import annotations

from dataclasses import dataclass

from teamflow.schema.team import TEAM_PHASES

ALLOWED_PHASE_TRANSITIONS: dict[str, frozenset[str]] = {
    "discussion": frozenset(["planning", "convergence"]),
    "planning": frozenset(["discussion", "team-setup", "convergence"]),
    "team-setup": frozenset(["discussion", "planning", "convergence"]),
    "convergence": frozenset(["discussion", "planning", "execution"]),
    "execution": frozenset(["discussion", "done"]),
    "done": frozenset(["discussion"]),
}


@dataclass(frozen=True)
class PhaseTransition:
    ok: bool
    error: str | None = None


def can_transition(from_phase: str, to_phase: str) -> bool:
    if from_phase == to_phase:
        return True
    return to_phase in ALLOWED_PHASE_TRANSITIONS.get(from_phase, frozenset())


def ensure_transition(from_phase: str, to_phase: str) -> PhaseTransition:
    if can_transition(from_phase, to_phase):
        return PhaseTransition(ok=True)
    return PhaseTransition(ok=False, error=f"Invalid phase transition: {from_phase} -> {to_phase}")


def available_transitions(from_phase: str) -> list[str]:
    """Destinations reachable in one step, in workflow order (excluding staying put)."""
    allowed = ALLOWED_PHASE_TRANSITIONS.get(from_phase, frozenset())
    return [p for p in TEAM_PHASES if p in allowed]
