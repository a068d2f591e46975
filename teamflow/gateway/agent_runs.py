from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .base import GatewayInvoker, RpcError, RpcTimeoutError, rpc
from .sessions import DEFAULT_CHAT_HISTORY_LIMIT, fetch_latest_assistant_snapshot

logger = logging.getLogger(__name__)

AGENT_WAIT_SUCCESS_STATUSES = frozenset({"", "ok", "completed", "done", "success"})
AGENT_WAIT_ERROR_STATUSES = frozenset({"error", "failed", "aborted"})


class AgentRunError(RuntimeError):
    """The runtime reported the run as failed, or returned something unusable."""

    recoverable = False


class AgentRunTimeoutError(AgentRunError):
    """No progress within the idle timeout. Retry with the same idempotency key."""

    recoverable = True


@dataclass(frozen=True)
class AgentRun:
    run_id: str
    status: str = ""


@dataclass(frozen=True)
class AgentWaitResult:
    run_id: str
    status: str
    rounds: int
    error: str | None = None


@retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(RpcTimeoutError),
)
async def _dispatch(gateway: GatewayInvoker, params: dict[str, Any]) -> Any:
    # Retrying is safe: the runtime dedupes on idempotencyKey.
    return await rpc(gateway, "agent", params)


async def start_agent_run(
    gateway: GatewayInvoker,
    *,
    agent_id: str,
    session_key: str,
    message: str,
    idempotency_key: str,
) -> AgentRun:
    run = await _dispatch(
        gateway,
        {
            "agentId": agent_id,
            "sessionKey": session_key,
            "message": message,
            "idempotencyKey": idempotency_key,
        },
    )
    run = run if isinstance(run, dict) else {}
    run_id = run.get("runId")
    run_id = run_id.strip() if isinstance(run_id, str) else ""
    if not run_id:
        raise AgentRunError("agent returned empty runId")
    status = run.get("status")
    return AgentRun(run_id=run_id, status=status if isinstance(status, str) else "")


async def _snapshot_fingerprint(gateway: GatewayInvoker, session_key: str, limit: int) -> str | None:
    try:
        snapshot = await fetch_latest_assistant_snapshot(gateway, session_key=session_key, limit=limit)
    except RpcError as e:
        logger.debug("progress snapshot failed sessionKey=%s error=%s", session_key, e)
        return None
    return snapshot.fingerprint()


async def wait_agent_run(
    gateway: GatewayInvoker,
    *,
    run_id: str,
    session_key: str,
    wait_slice_ms: int,
    idle_timeout_ms: int,
    rpc_timeout_buffer_ms: int,
    history_limit: int = DEFAULT_CHAT_HISTORY_LIMIT,
    log_prefix: str = "agent-wait",
) -> AgentWaitResult:
    """
    Long-poll `agent.wait` in slices until the run is terminal.

    A slice that ends without a terminal status (status "timeout", an unknown status, or an
    RPC timeout) checks the session transcript for progress; the idle timer only resets when
    the latest assistant snapshot changes.
    """
    started = time.monotonic()
    last_progress = started
    fingerprint = ""
    round_no = 0

    while True:
        idle_ms = int((time.monotonic() - last_progress) * 1000)
        if idle_ms >= idle_timeout_ms:
            raise AgentRunTimeoutError(f"Timed out with no progress after {idle_timeout_ms}ms")

        round_no += 1
        rpc_timeout_ms = wait_slice_ms + rpc_timeout_buffer_ms
        logger.info(
            "[%s] agent.wait start runId=%s round=%d waitTimeoutMs=%d rpcTimeoutMs=%d idleMs=%d",
            log_prefix, run_id, round_no, wait_slice_ms, rpc_timeout_ms, idle_ms,
        )
        try:
            result = await rpc(gateway, "agent.wait", {"runId": run_id, "timeoutMs": wait_slice_ms}, rpc_timeout_ms)
        except RpcTimeoutError:
            logger.warning("[%s] agent.wait rpc-timeout runId=%s round=%d, continue waiting", log_prefix, run_id, round_no)
        except RpcError as e:
            logger.error("[%s] agent.wait failed runId=%s round=%d error=%s", log_prefix, run_id, round_no, e)
            raise
        else:
            result = result if isinstance(result, dict) else {}
            raw_status = result.get("status")
            status = raw_status.lower() if isinstance(raw_status, str) else ""
            if status in AGENT_WAIT_SUCCESS_STATUSES:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                logger.info(
                    "[%s] agent.wait ok runId=%s round=%d elapsedMs=%d status=%s",
                    log_prefix, run_id, round_no, elapsed_ms, status or "ok",
                )
                return AgentWaitResult(run_id=run_id, status=status or "ok", rounds=round_no)
            if status in AGENT_WAIT_ERROR_STATUSES:
                reason = result.get("error")
                reason = reason.strip() if isinstance(reason, str) else ""
                raise AgentRunError(reason or f"agent.wait returned {status}")
            if status != "timeout":
                logger.warning(
                    "[%s] agent.wait unknown-status runId=%s round=%d status=%s, continue waiting",
                    log_prefix, run_id, round_no, status or "empty",
                )

        next_fingerprint = await _snapshot_fingerprint(gateway, session_key, history_limit)
        if next_fingerprint is not None and next_fingerprint != fingerprint:
            fingerprint = next_fingerprint
            last_progress = time.monotonic()
            logger.info("[%s] progress detected runId=%s round=%d source=snapshot-change", log_prefix, run_id, round_no)
