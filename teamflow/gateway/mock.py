from __future__ import annotations

import json
from collections import defaultdict, deque
from typing import Any, Callable

from teamflow.schema.draft import SUBAGENT_TARGET_FILES

from .base import RpcCall, RpcResult


class MockGateway:
    """
    Deterministic in-memory gateway: useful to verify control-flow without an agent runtime.

    Every call is recorded in `calls`. `script(method, ...)` queues canned results that are
    served before the built-in simulation.
    """

    def __init__(
        self,
        *,
        files: dict[str, dict[str, str]] | None = None,
        agents: list[dict[str, Any]] | None = None,
    ) -> None:
        self.calls: list[RpcCall] = []
        self.sessions: dict[str, list[dict[str, Any]]] = {}
        self.files: dict[str, dict[str, str]] = {k: dict(v) for k, v in (files or {}).items()}
        self.agents: list[dict[str, Any]] = list(agents or [])
        self._scripted: dict[str, deque[RpcResult]] = defaultdict(deque)
        self._runs_by_key: dict[str, str] = {}
        self._run_seq = 0

    def script(self, method: str, *results: Any) -> None:
        for r in results:
            self._scripted[method].append(r if isinstance(r, RpcResult) else RpcResult.ok(r))

    def calls_for(self, method: str) -> list[RpcCall]:
        return [c for c in self.calls if c.method == method]

    @property
    def methods(self) -> list[str]:
        return [c.method for c in self.calls]

    async def invoke(self, method: str, params: dict[str, Any] | None = None, timeout_ms: int | None = None) -> RpcResult:
        params = dict(params or {})
        self.calls.append(RpcCall(method, params, timeout_ms))
        queued = self._scripted.get(method)
        if queued:
            return queued.popleft()
        handler = self._handlers().get(method)
        if handler is None:
            return RpcResult.failure(f"unknown method: {method}")
        try:
            return RpcResult.ok(handler(params))
        except (KeyError, ValueError) as e:
            return RpcResult.failure(f"{method}: {e}")

    def _handlers(self) -> dict[str, Callable[[dict[str, Any]], Any]]:
        return {
            "agent": self._agent,
            "agent.wait": self._agent_wait,
            "chat.send": self._chat_send,
            "chat.history": self._chat_history,
            "sessions.list": self._sessions_list,
            "sessions.delete": self._sessions_delete,
            "agents.list": self._agents_list,
            "agents.files.get": self._files_get,
            "agents.files.set": self._files_set,
        }

    # -- runs -------------------------------------------------------------

    def _start_run(self, params: dict[str, Any], reply: Callable[[str], str]) -> dict[str, Any]:
        key = params.get("idempotencyKey")
        if key and key in self._runs_by_key:
            return {"runId": self._runs_by_key[key], "status": "accepted"}
        self._run_seq += 1
        run_id = f"mock-run-{self._run_seq}"
        if key:
            self._runs_by_key[key] = run_id
        session = self.sessions.setdefault(params["sessionKey"], [])
        message = str(params.get("message", ""))
        session.append({"role": "user", "content": message})
        session.append({"role": "assistant", "content": reply(run_id)})
        return {"runId": run_id, "status": "accepted"}

    def _agent(self, params: dict[str, Any]) -> dict[str, Any]:
        agent_id = str(params.get("agentId", ""))
        message = str(params.get("message", ""))
        return self._start_run(params, lambda run_id: _mock_report(run_id, agent_id, message))

    def _agent_wait(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"runId": params["runId"], "status": "ok"}

    def _chat_send(self, params: dict[str, Any]) -> dict[str, Any]:
        session_key = str(params["sessionKey"])
        message = str(params.get("message", ""))
        if "roleMetadata" in message:
            agent_id = _agent_id_from_session_key(session_key)
            current = self.files.get(agent_id, {})
            return self._start_run(params, lambda _run_id: _mock_draft(current, message))
        return self._start_run(params, lambda _run_id: f"[MOCK] {_last_line(message)}")

    # -- sessions ---------------------------------------------------------

    def _chat_history(self, params: dict[str, Any]) -> dict[str, Any]:
        limit = int(params.get("limit") or 20)
        return {"messages": list(self.sessions.get(params["sessionKey"], []))[-limit:]}

    def _sessions_list(self, params: dict[str, Any]) -> dict[str, Any]:
        keys = list(self.sessions)
        offset = int(params.get("offset") or 0)
        limit = params.get("limit")
        keys = keys[offset : offset + int(limit)] if limit is not None else keys[offset:]
        return {"sessions": [{"key": k, "messages": len(self.sessions[k])} for k in keys]}

    def _sessions_delete(self, params: dict[str, Any]) -> dict[str, Any]:
        existed = self.sessions.pop(params["key"], None) is not None
        return {"ok": True, "deleted": existed}

    # -- agents -----------------------------------------------------------

    def _agents_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"agents": list(self.agents)}

    def _files_get(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params["name"]
        content = self.files.get(params["agentId"], {}).get(name, "")
        return {"file": {"name": name, "content": content}}

    def _files_set(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params["name"]
        if name not in SUBAGENT_TARGET_FILES:
            raise ValueError(f"unsupported file {name}")
        self.files.setdefault(params["agentId"], {})[name] = params["content"]
        return {"ok": True}


def _last_line(text: str) -> str:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    return lines[-1][:120] if lines else ""


def _agent_id_from_session_key(session_key: str) -> str:
    # agent:<id>:<suffix>
    parts = session_key.split(":")
    return parts[1] if len(parts) > 2 and parts[0] == "agent" else session_key


def _mock_report(run_id: str, agent_id: str, message: str) -> str:
    payload = {
        "reportId": run_id,
        "task_id": "mock-task",
        "agent_id": agent_id,
        "status": "done",
        "result": [f"[mock] {_last_line(message)}"],
    }
    return "REPORT: " + json.dumps(payload, ensure_ascii=False)


def _mock_draft(current: dict[str, str], message: str) -> str:
    instruction = _last_line(message)
    files = []
    for name in SUBAGENT_TARGET_FILES:
        base = current.get(name) or f"# {name}"
        files.append(
            {
                "name": name,
                "content": f"{base}\n- {instruction}",
                "reason": "mock draft",
                "confidence": 0.9,
            }
        )
    return json.dumps(
        {
            "files": files,
            "roleMetadata": {"summary": f"Mock agent: {instruction}", "tags": ["mock", "draft", "offline"]},
        },
        ensure_ascii=False,
    )
