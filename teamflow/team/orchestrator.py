from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from teamflow.config import Settings
from teamflow.gateway.agent_runs import start_agent_run, wait_agent_run
from teamflow.gateway.base import GatewayInvoker, RpcError, rpc
from teamflow.gateway.sessions import delete_session, fetch_latest_assistant_snapshot, fetch_latest_assistant_text
from teamflow.schema.team import TeamReport

from .binding import build_team_session_key
from .report import ReportDefaults, parse_report_from_text

logger = logging.getLogger(__name__)

AGENT_WAIT_SLICE_MS = 30_000
AGENT_WAIT_NO_PROGRESS_TIMEOUT_MS = 180_000
AGENT_WAIT_RPC_TIMEOUT_BUFFER_MS = 5_000
HISTORY_LIMIT = 20


@dataclass(frozen=True)
class WaitPolicy:
    wait_slice_ms: int = AGENT_WAIT_SLICE_MS
    idle_timeout_ms: int = AGENT_WAIT_NO_PROGRESS_TIMEOUT_MS
    rpc_timeout_buffer_ms: int = AGENT_WAIT_RPC_TIMEOUT_BUFFER_MS
    history_limit: int = HISTORY_LIMIT

    @classmethod
    def from_settings(cls, settings: Settings) -> WaitPolicy:
        return cls(
            wait_slice_ms=settings.wait_slice_ms,
            idle_timeout_ms=settings.idle_timeout_ms,
            rpc_timeout_buffer_ms=settings.rpc_timeout_buffer_ms,
            history_limit=settings.history_limit,
        )


@dataclass(frozen=True)
class AgentTurnRequest:
    agent_id: str
    session_key: str
    message: str
    idempotency_key: str


@dataclass(frozen=True)
class AgentTurnResult:
    run_id: str
    text: str
    report: TeamReport | None = None
    used_tools: list[str] = field(default_factory=list)


async def _run_turn(gateway: GatewayInvoker, request: AgentTurnRequest, policy: WaitPolicy) -> tuple[str, str, list[str]]:
    # dispatch -> wait until terminal -> read transcript; strictly in this order.
    run = await start_agent_run(
        gateway,
        agent_id=request.agent_id,
        session_key=request.session_key,
        message=request.message,
        idempotency_key=request.idempotency_key,
    )
    await wait_agent_run(
        gateway,
        run_id=run.run_id,
        session_key=request.session_key,
        wait_slice_ms=policy.wait_slice_ms,
        idle_timeout_ms=policy.idle_timeout_ms,
        rpc_timeout_buffer_ms=policy.rpc_timeout_buffer_ms,
        history_limit=policy.history_limit,
        log_prefix="team-orchestrator",
    )
    snapshot = await fetch_latest_assistant_snapshot(gateway, session_key=request.session_key, limit=policy.history_limit)
    return run.run_id, snapshot.text, list(snapshot.tool_names)


async def run_agent_and_collect_report_with_run(
    gateway: GatewayInvoker,
    request: AgentTurnRequest,
    *,
    policy: WaitPolicy | None = None,
    report_defaults: ReportDefaults | None = None,
) -> AgentTurnResult:
    run_id, text, used_tools = await _run_turn(gateway, request, policy or WaitPolicy())
    report = parse_report_from_text(text, report_defaults)
    if report is None:
        logger.info("no report in latest output agentId=%s runId=%s", request.agent_id, run_id)
    return AgentTurnResult(run_id=run_id, text=text, report=report, used_tools=used_tools)


async def run_agent_and_collect_report(
    gateway: GatewayInvoker,
    *,
    agent_id: str,
    session_key: str,
    message: str,
    idempotency_key: str,
    policy: WaitPolicy | None = None,
) -> TeamReport | None:
    """Run one agent turn and return its report; None when the final message carries no parsable report."""
    request = AgentTurnRequest(agent_id, session_key, message, idempotency_key)
    result = await run_agent_and_collect_report_with_run(gateway, request, policy=policy)
    return result.report


async def run_agent_and_collect_final_text(
    gateway: GatewayInvoker,
    request: AgentTurnRequest,
    *,
    policy: WaitPolicy | None = None,
) -> str:
    policy = policy or WaitPolicy()
    _, text, _ = await _run_turn(gateway, request, policy)
    if text:
        return text
    return await fetch_latest_assistant_text(gateway, session_key=request.session_key, limit=policy.history_limit)


async def broadcast_discussion_round(
    gateway: GatewayInvoker,
    *,
    team_id: str,
    member_ids: list[str],
    message: str,
    session_key_by_agent: dict[str, str] | None = None,
) -> list[str]:
    """Dispatch `message` to every member concurrently without waiting for the runs. Returns run ids."""
    session_key_by_agent = session_key_by_agent or {}

    async def dispatch(agent_id: str) -> str:
        session_key = session_key_by_agent.get(agent_id) or build_team_session_key(agent_id, team_id)
        result = await rpc(
            gateway,
            "agent",
            {
                "agentId": agent_id,
                "sessionKey": session_key,
                "message": message,
                "idempotencyKey": f"{team_id}:{agent_id}:{uuid.uuid4()}",
            },
        )
        run_id = result.get("runId") if isinstance(result, dict) else None
        return run_id if isinstance(run_id, str) else ""

    return list(await asyncio.gather(*(dispatch(a) for a in member_ids)))


async def delete_team_sessions(gateway: GatewayInvoker, session_keys: list[str]) -> None:
    async def delete(key: str) -> None:
        try:
            await delete_session(gateway, key=key, delete_transcript=True)
        except RpcError as e:
            # Missing sessions are fine: leaving a team chat is idempotent.
            logger.debug("ignore session delete failure key=%s error=%s", key, e)

    await asyncio.gather(*(delete(k) for k in session_keys))
