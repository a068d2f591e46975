"""
Tests for team/orchestrator.py and gateway/agent_runs.py

Validates:
- Happy path: one dispatch, one wait, one transcript fetch, parsed report
- Non-terminal slices keep waiting; error statuses and idle timeouts raise
- Dispatch is retried on RPC timeout under the same idempotency key
- Broadcast and session cleanup helpers
"""

import asyncio

import pytest

from teamflow.gateway import RpcError, RpcResult
from teamflow.gateway.agent_runs import AgentRunError, AgentRunTimeoutError
from teamflow.team.orchestrator import (
    AgentTurnRequest,
    WaitPolicy,
    broadcast_discussion_round,
    delete_team_sessions,
    run_agent_and_collect_final_text,
    run_agent_and_collect_report,
    run_agent_and_collect_report_with_run,
)


def collect(gateway, policy, **overrides):
    kwargs = dict(agent_id="dev", session_key="agent:dev:team:t1", message="do the thing", idempotency_key="k-1")
    kwargs.update(overrides)
    return asyncio.run(run_agent_and_collect_report(gateway, policy=policy, **kwargs))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_happy_path_returns_done_report(gateway, fast_policy):
    report = collect(gateway, fast_policy)
    assert report is not None
    assert report.status == "done"
    assert report.agent_id == "dev"
    assert report.result == ["[mock] do the thing"]
    assert gateway.methods == ["agent", "agent.wait", "chat.history"]


def test_dispatch_params(gateway, fast_policy):
    collect(gateway, fast_policy)
    (call,) = gateway.calls_for("agent")
    assert call.params == {
        "agentId": "dev",
        "sessionKey": "agent:dev:team:t1",
        "message": "do the thing",
        "idempotencyKey": "k-1",
    }
    (wait,) = gateway.calls_for("agent.wait")
    assert wait.params == {"runId": "mock-run-1", "timeoutMs": 10}
    assert wait.timeout_ms == 15


def test_with_run_exposes_run_id_and_tools(gateway, fast_policy):
    gateway.script(
        "chat.history",
        {
            "messages": [
                {
                    "role": "assistant",
                    "content": [
                        {"type": "tool_use", "name": "sessions_spawn"},
                        {"type": "text", "text": 'REPORT: {"task_id": "t", "status": "done"}'},
                    ],
                }
            ]
        },
    )
    request = AgentTurnRequest("dev", "agent:dev:team:t1", "go", "k-2")
    result = asyncio.run(run_agent_and_collect_report_with_run(gateway, request, policy=fast_policy))
    assert result.run_id == "mock-run-1"
    assert result.used_tools == ["sessions_spawn"]
    assert result.report is None  # agent_id missing and no defaults


# ---------------------------------------------------------------------------
# Waiting
# ---------------------------------------------------------------------------


def test_timeout_slice_keeps_waiting(gateway, fast_policy):
    gateway.script("agent.wait", {"status": "timeout"}, {"status": "ok"})
    report = collect(gateway, fast_policy)
    assert report is not None
    assert gateway.methods == ["agent", "agent.wait", "chat.history", "agent.wait", "chat.history"]


def test_rpc_timeout_on_wait_is_recoverable(gateway, fast_policy):
    gateway.script("agent.wait", RpcResult.failure("RPC timeout: agent.wait"))
    report = collect(gateway, fast_policy)
    assert report is not None
    assert gateway.methods.count("agent.wait") == 2


@pytest.mark.parametrize("status", ["", "OK", "completed", "done", "success"])
def test_success_statuses(gateway, fast_policy, status):
    gateway.script("agent.wait", {"status": status})
    assert collect(gateway, fast_policy) is not None


@pytest.mark.parametrize("status", ["error", "failed", "aborted"])
def test_error_statuses_raise(gateway, fast_policy, status):
    gateway.script("agent.wait", {"status": status, "error": "boom"})
    with pytest.raises(AgentRunError) as exc:
        collect(gateway, fast_policy)
    assert str(exc.value) == "boom"
    assert exc.value.recoverable is False
    assert "chat.history" not in gateway.methods


def test_idle_timeout_is_recoverable(gateway):
    policy = WaitPolicy(wait_slice_ms=10, idle_timeout_ms=0, rpc_timeout_buffer_ms=5)
    with pytest.raises(AgentRunTimeoutError) as exc:
        collect(gateway, policy)
    assert exc.value.recoverable is True
    assert "no progress after 0ms" in str(exc.value)
    assert gateway.methods == ["agent"]


def test_wait_transport_failure_propagates(gateway, fast_policy):
    gateway.script("agent.wait", RpcResult.failure("gateway down"))
    with pytest.raises(RpcError):
        collect(gateway, fast_policy)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_empty_run_id_raises(gateway, fast_policy):
    gateway.script("agent", {"runId": "  "})
    with pytest.raises(AgentRunError, match="empty runId"):
        collect(gateway, fast_policy)


def test_dispatch_retried_on_timeout_with_same_key(gateway, fast_policy):
    gateway.script("agent", RpcResult.failure("RPC timeout: agent"))
    report = collect(gateway, fast_policy)
    assert report is not None
    keys = [c.params["idempotencyKey"] for c in gateway.calls_for("agent")]
    assert keys == ["k-1", "k-1"]


def test_dispatch_failure_not_retried(gateway, fast_policy):
    gateway.script("agent", RpcResult.failure("agent not found"))
    with pytest.raises(RpcError, match="agent not found"):
        collect(gateway, fast_policy)
    assert gateway.methods == ["agent"]


def test_non_report_output_is_none(gateway, fast_policy):
    gateway.script("chat.history", {"messages": [{"role": "assistant", "content": "just chatting"}]})
    assert collect(gateway, fast_policy) is None


def test_final_text(gateway, fast_policy):
    request = AgentTurnRequest("dev", "agent:dev:team:t1", "summarize", "k-3")
    text = asyncio.run(run_agent_and_collect_final_text(gateway, request, policy=fast_policy))
    assert text.startswith("REPORT: ")


# ---------------------------------------------------------------------------
# Broadcast / cleanup
# ---------------------------------------------------------------------------


def test_broadcast_dispatches_once_per_member(gateway):
    run_ids = asyncio.run(
        broadcast_discussion_round(gateway, team_id="t1", member_ids=["lead", "dev"], message="kickoff")
    )
    assert len(run_ids) == 2
    calls = gateway.calls_for("agent")
    assert [c.params["sessionKey"] for c in calls] == ["agent:lead:team:t1", "agent:dev:team:t1"]
    keys = {c.params["idempotencyKey"] for c in calls}
    assert len(keys) == 2
    assert "agent.wait" not in gateway.methods


def test_delete_team_sessions_ignores_failures(gateway):
    gateway.script("sessions.delete", RpcResult.failure("not found"))
    asyncio.run(delete_team_sessions(gateway, ["agent:lead:team:t1", "agent:dev:team:t1"]))
    calls = gateway.calls_for("sessions.delete")
    assert len(calls) == 2
    assert all(c.params["deleteTranscript"] is True for c in calls)
