from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TeamPhase = Literal["discussion", "planning", "team-setup", "convergence", "execution", "done"]
TeamMessageKind = Literal["report", "plan", "normal"]

TEAM_PHASES: tuple[str, ...] = ("discussion", "planning", "team-setup", "convergence", "execution", "done")


class _CamelModel(BaseModel):
    # Gateway payloads are camelCase; python code uses the snake_case names.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Team(_CamelModel):
    id: str
    name: str
    controller_id: str = Field(alias="controllerId")
    member_ids: list[str] = Field(default_factory=list, alias="memberIds")  # ordered
    created_at: int = Field(default=0, alias="createdAt")
    updated_at: int = Field(default=0, alias="updatedAt")


class TeamContext(_CamelModel):
    goal: str = ""
    decisions: list[str] = Field(default_factory=list)  # append-only
    open_questions: list[str] = Field(default_factory=list, alias="openQuestions")


class TeamReport(_CamelModel):
    """Structured outcome an agent emits after `REPORT:`."""

    report_id: str = Field(alias="reportId")
    task_id: str
    agent_id: str
    # Free-form; the agent contract decides the vocabulary (done/partial/blocked/...).
    status: str
    result: list[str] = Field(default_factory=list)
    evidence: list[str] | None = None
    next_steps: list[str] | None = None
    risks: list[str] | None = None

    @field_validator("report_id", "task_id", "agent_id", "status")
    @classmethod
    def validate_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class AgentIdentitySummary(_CamelModel):
    name: str | None = None
    theme: str | None = None
    emoji: str | None = None
    avatar: str | None = None


class SubagentSummary(_CamelModel):
    """Agent registry entry; owned by the registry, read-only here."""

    id: str
    name: str | None = None
    workspace: str | None = None
    model: str | None = None
    identity: AgentIdentitySummary | None = None
    is_default: bool = Field(default=False, alias="isDefault")


class TeamPlanTask(_CamelModel):
    task_id: str = Field(alias="taskId")
    agent_id: str | None = Field(default=None, alias="agentId")
    role: str | None = None
    instruction: str
    acceptance: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")


class TeamPlan(_CamelModel):
    objective: str
    scope: list[str] = Field(default_factory=list)
    tasks: list[TeamPlanTask] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)


class RoleMetadataEntry(_CamelModel):
    """One row of the roles-metadata document kept beside the agent workspaces."""

    agent_id: str = Field(alias="agentId")
    name: str
    role: str
    summary: str = ""
    tags: list[str] = Field(default_factory=list)
    model: str | None = None
    emoji: str | None = None
    updated_at: str = Field(default="", alias="updatedAt")
