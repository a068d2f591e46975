from __future__ import annotations

import json

from pydantic import BaseModel, Field

from teamflow.schema.team import SubagentSummary, Team, TeamContext, TeamPhase, TeamReport

SHARED_SUMMARY_DECISIONS = 8
LATEST_REPORTS = 10


class EnvelopeMember(BaseModel):
    agent_id: str
    name: str
    model: str | None = None


class EnvelopeReport(BaseModel):
    report_id: str
    agent_id: str
    status: str
    result: list[str] = Field(default_factory=list)


class TeamContextEnvelope(BaseModel):
    """The only view of team state an agent turn gets."""

    team_id: str
    phase: TeamPhase
    goal: str = ""
    shared_summary: str = ""
    open_questions: list[str] = Field(default_factory=list)
    members: list[EnvelopeMember] = Field(default_factory=list)
    latest_reports: list[EnvelopeReport] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


def build_team_context_envelope(
    *,
    team: Team,
    phase: TeamPhase,
    agents: list[SubagentSummary],
    context: TeamContext | None = None,
    reports: list[TeamReport] | None = None,
) -> TeamContextEnvelope:
    by_id = {a.id: a for a in agents}
    members: list[EnvelopeMember] = []
    for agent_id in team.member_ids:
        agent = by_id.get(agent_id)
        members.append(
            EnvelopeMember(
                agent_id=agent_id,
                name=(agent.name if agent and agent.name is not None else agent_id),
                model=agent.model if agent else None,
            )
        )

    decisions = context.decisions if context else []
    return TeamContextEnvelope(
        team_id=team.id,
        phase=phase,
        goal=context.goal if context else "",
        shared_summary="\n".join(decisions[-SHARED_SUMMARY_DECISIONS:]),
        open_questions=list(context.open_questions) if context else [],
        members=members,
        latest_reports=[
            EnvelopeReport(report_id=r.report_id, agent_id=r.agent_id, status=r.status, result=list(r.result))
            for r in (reports or [])[-LATEST_REPORTS:]
        ],
    )


def wrap_message_with_team_context(raw_message: str, envelope: TeamContextEnvelope) -> str:
    return "\n".join(
        [
            "[TEAM_CONTEXT]",
            json.dumps(envelope.to_payload(), indent=2, ensure_ascii=False),
            "",
            "[USER_MESSAGE]",
            raw_message.strip(),
        ]
    )
