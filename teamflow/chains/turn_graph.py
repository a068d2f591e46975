from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from teamflow.gateway.base import GatewayInvoker
from teamflow.schema.team import SubagentSummary, TeamReport
from teamflow.team.context import wrap_message_with_team_context
from teamflow.team.orchestrator import AgentTurnRequest, WaitPolicy, run_agent_and_collect_report_with_run
from teamflow.team.report import ReportDefaults, build_report_retry_message, validate_team_report
from teamflow.team.room import TeamRoom
from teamflow.team.tool_policy import find_forbidden_tools


class TurnState(BaseModel):
    """LangGraph state for one agent turn inside a team room."""

    # Inputs
    team_id: str
    agent_id: str
    task_id: str = ""
    session_key: str
    phase: str = "discussion"
    raw_message: str = ""
    idempotency_key: str

    # Prompt sent by the next run (wrapped message, or a report retry reminder)
    prompt: str = ""

    # Outputs of the latest run
    run_id: str = ""
    text: str = ""
    used_tools: list[str] = Field(default_factory=list)
    forbidden_tools: list[str] = Field(default_factory=list)
    report: TeamReport | None = None
    error: str = ""

    # Control / routing
    attempt: int = 0
    max_retries: int = 1

    # Observability
    trace: list[dict[str, Any]] = Field(default_factory=list)


def _ensure_state(state) -> TurnState:
    if isinstance(state, TurnState):
        return state
    return TurnState.model_validate(state)


def _log(state: TurnState, who: str, msg: str) -> list[dict[str, Any]]:
    return [
        *state.trace,
        {
            "ts": datetime.now(timezone.utc).isoformat(),
            "node": who,
            "message": msg,
            "attempt": state.attempt,
        },
    ]


def _run_key(state: TurnState) -> str:
    # A retry is a new message, so it needs its own key; re-running the same attempt reuses it.
    if state.attempt == 0:
        return state.idempotency_key
    return f"{state.idempotency_key}:retry-{state.attempt}"


def build_turn_graph(
    *,
    gateway: GatewayInvoker,
    room: TeamRoom,
    agents: list[SubagentSummary],
    policy: WaitPolicy | None = None,
):
    graph = StateGraph(TurnState)

    async def prepare(state) -> dict[str, Any]:
        state = _ensure_state(state)
        prompt = wrap_message_with_team_context(state.raw_message, room.envelope(agents))
        return {
            "phase": room.phase,
            "prompt": prompt,
            "trace": _log(state, "prepare", f"context wrapped for {state.agent_id} in {room.phase}"),
        }

    async def run(state) -> dict[str, Any]:
        state = _ensure_state(state)
        request = AgentTurnRequest(state.agent_id, state.session_key, state.prompt, _run_key(state))
        result = await run_agent_and_collect_report_with_run(
            gateway,
            request,
            policy=policy,
            report_defaults=ReportDefaults(task_id=state.task_id or None, agent_id=state.agent_id),
        )
        return {
            "run_id": result.run_id,
            "text": result.text,
            "used_tools": result.used_tools,
            "report": result.report,
            "attempt": state.attempt + 1,
            "trace": _log(state, "run", f"runId={result.run_id} report={'yes' if result.report else 'no'}"),
        }

    async def review(state) -> dict[str, Any]:
        state = _ensure_state(state)
        updates: dict[str, Any] = {}
        notes: list[str] = []

        forbidden = find_forbidden_tools(state.phase, state.used_tools)
        updates["forbidden_tools"] = forbidden
        if forbidden:
            room.record_tool_violation(state.agent_id, forbidden)
            notes.append(f"forbidden tools in {state.phase}: {', '.join(forbidden)}")

        ok, error = validate_team_report(state.report)
        if ok and state.report is not None:
            room.append_report(state.report)
            updates["error"] = ""
            notes.append(f"report {state.report.report_id} status={state.report.status}")
        elif state.attempt <= state.max_retries:
            updates["prompt"] = build_report_retry_message(
                task_id=state.task_id or "unknown-task", agent_id=state.agent_id
            )
            updates["error"] = error or ""
            notes.append(f"{error}; retrying")
        else:
            updates["error"] = error or ""
            notes.append(f"{error}; giving up")

        updates["trace"] = _log(state, "review", " | ".join(notes))
        return updates

    graph.add_node("prepare", prepare)
    graph.add_node("run", run)
    graph.add_node("review", review)

    graph.set_entry_point("prepare")
    graph.add_edge("prepare", "run")
    graph.add_edge("run", "review")

    def route_after_review(state: TurnState) -> str:
        state = _ensure_state(state)
        if state.report is None and state.attempt <= state.max_retries:
            return "run"
        return END

    graph.add_conditional_edges("review", route_after_review, {"run": "run", END: END})

    return graph.compile()


async def run_team_turn(
    *,
    gateway: GatewayInvoker,
    room: TeamRoom,
    agents: list[SubagentSummary],
    agent_id: str,
    message: str,
    idempotency_key: str,
    task_id: str = "",
    max_retries: int = 1,
    policy: WaitPolicy | None = None,
) -> TurnState:
    """Run one agent turn in the room's current phase and return the final graph state."""
    graph = build_turn_graph(gateway=gateway, room=room, agents=agents, policy=policy)
    state = TurnState(
        team_id=room.team.id,
        agent_id=agent_id,
        task_id=task_id,
        session_key=room.session_key_for(agent_id),
        phase=room.phase,
        raw_message=message,
        idempotency_key=idempotency_key,
        max_retries=max_retries,
    )
    out = await graph.ainvoke(state)
    return TurnState.model_validate(out)
