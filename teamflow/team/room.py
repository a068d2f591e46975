from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr

from teamflow.schema.team import SubagentSummary, Team, TeamContext, TeamPhase, TeamReport

from .binding import build_team_session_key
from .context import TeamContextEnvelope, build_team_context_envelope
from .fsm import PhaseTransition, ensure_transition
from .protocol import (
    ControllerDecision,
    ConvergenceDigest,
    ExecutionBlueprint,
    controller_decision_target_phase,
    execution_blueprint_target_phase,
)


class TeamRoom(BaseModel):
    """
    Shared state of one team for an orchestration session.

    The phase is private: `transition_to` is the only way to change it and it always goes
    through `ensure_transition`. Decisions and reports are append-only; envelopes project
    the most recent ones.
    """

    team: Team
    context: TeamContext = Field(default_factory=TeamContext)
    reports: list[TeamReport] = Field(default_factory=list)
    session_keys: dict[str, str] = Field(default_factory=dict)  # agent_id -> session key

    # Observability
    events: list[dict[str, Any]] = Field(default_factory=list)

    _phase: str = PrivateAttr(default="discussion")

    @property
    def phase(self) -> TeamPhase:
        return self._phase  # type: ignore[return-value]

    def _event(self, kind: str, message: str, **payload: Any) -> None:
        self.events.append(
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "type": kind,
                "phase": self._phase,
                "message": message,
                **payload,
            }
        )

    def transition_to(self, to_phase: TeamPhase) -> PhaseTransition:
        res = ensure_transition(self._phase, to_phase)
        if not res.ok:
            self._event("phase-transition", res.error or "rejected", accepted=False, to=to_phase)
            return res
        if to_phase != self._phase:
            from_phase, self._phase = self._phase, to_phase
            self._event("phase-transition", f"{from_phase} -> {to_phase}", accepted=True, to=to_phase)
        return res

    def add_decision(self, decision: str) -> None:
        decision = decision.strip()
        if decision:
            self.context.decisions.append(decision)

    def add_open_question(self, question: str) -> None:
        question = question.strip()
        if question and question not in self.context.open_questions:
            self.context.open_questions.append(question)

    def resolve_open_question(self, question: str) -> bool:
        try:
            self.context.open_questions.remove(question.strip())
        except ValueError:
            return False
        return True

    def apply_controller_decision(self, decision: ControllerDecision) -> PhaseTransition | None:
        """Record the controller's questions and move to the phase its action asks for, if any."""
        for question in decision.questions:
            self.add_open_question(question)
        self._event("controller-decision", decision.reply, action=decision.action)
        target = controller_decision_target_phase(decision)
        return self.transition_to(target) if target else None  # type: ignore[arg-type]

    def apply_execution_blueprint(self, blueprint: ExecutionBlueprint) -> PhaseTransition | None:
        for item in blueprint.must_fix:
            self.add_open_question(item)
        self._event("execution-blueprint", blueprint.reply, action=blueprint.action)
        target = execution_blueprint_target_phase(blueprint)
        return self.transition_to(target) if target else None  # type: ignore[arg-type]

    def apply_convergence_digest(self, digest: ConvergenceDigest) -> None:
        for agreement in digest.agreements:
            self.add_decision(agreement)
        for question in digest.open_questions:
            self.add_open_question(question)
        self._event("convergence-digest", digest.summary, status=digest.status)

    def append_report(self, report: TeamReport) -> None:
        self.reports.append(report)
        self._event("report-collected", f"{report.agent_id}: {report.status}", report_id=report.report_id)

    def record_tool_violation(self, agent_id: str, tools: list[str]) -> None:
        self._event("tool-policy-blocked", f"{agent_id} used {', '.join(tools)}", agent_id=agent_id, tools=tools)

    def session_key_for(self, agent_id: str) -> str:
        return self.session_keys.get(agent_id) or build_team_session_key(agent_id, self.team.id)

    def envelope(self, agents: list[SubagentSummary]) -> TeamContextEnvelope:
        return build_team_context_envelope(
            team=self.team,
            phase=self.phase,
            agents=agents,
            context=self.context,
            reports=self.reports,
        )

    def snapshot(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        data["phase"] = self._phase
        return data
