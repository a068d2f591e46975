from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from teamflow.schema.team import SubagentSummary

from .base import GatewayInvoker, rpc

DEFAULT_CHAT_HISTORY_LIMIT = 20


@dataclass(frozen=True)
class AssistantSnapshot:
    text: str = ""
    tool_names: list[str] = field(default_factory=list)

    def fingerprint(self) -> str:
        tools = [t.strip() for t in self.tool_names if t.strip()]
        return f"{self.text}|{','.join(tools)}"


def _role(message: Any) -> str:
    role = (message or {}).get("role") if isinstance(message, dict) else None
    return role.lower() if isinstance(role, str) else ""


def read_chat_message_text(message: Any) -> str:
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for block in content:
            text = block.get("text") if isinstance(block, dict) else None
            texts.append(text if isinstance(text, str) else "")
        return "\n".join(texts)
    return ""


def _tool_names_from_block(block: Any) -> list[str]:
    if not isinstance(block, dict):
        return []
    kind = block.get("type")
    if isinstance(kind, str) and kind.lower() == "tool_use":
        name = block.get("name")
        return [name.strip()] if isinstance(name, str) and name.strip() else []
    tool_name = block.get("tool_name")
    if isinstance(tool_name, str) and tool_name.strip():
        return [tool_name.strip()]
    names: list[str] = []
    for call in block.get("tool_calls") or []:
        fn = (call or {}).get("function") if isinstance(call, dict) else None
        name = (fn or {}).get("name") if isinstance(fn, dict) else None
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names


def read_chat_message_tool_names(message: Any) -> list[str]:
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return []
    return [name for block in content for name in _tool_names_from_block(block)]


def find_latest_assistant_text(messages: list[Any] | None) -> str:
    """Last non-empty assistant text; falls back to the first non-empty message of any role."""
    if not messages:
        return ""
    latest = ""
    for m in messages:
        if _role(m) != "assistant":
            continue
        text = read_chat_message_text(m).strip()
        if text:
            latest = text
    if latest:
        return latest
    for m in messages:
        text = read_chat_message_text(m).strip()
        if text:
            return text
    return ""


def find_latest_assistant_snapshot(messages: list[Any] | None) -> AssistantSnapshot:
    if not messages:
        return AssistantSnapshot()
    for m in reversed(messages):
        if _role(m) != "assistant":
            continue
        text = read_chat_message_text(m).strip()
        tools = read_chat_message_tool_names(m)
        if text or tools:
            return AssistantSnapshot(text=text, tool_names=tools)
    return AssistantSnapshot(text=find_latest_assistant_text(messages))


async def fetch_chat_history(gateway: GatewayInvoker, *, session_key: str, limit: int = DEFAULT_CHAT_HISTORY_LIMIT) -> list[Any]:
    history = await rpc(gateway, "chat.history", {"sessionKey": session_key, "limit": limit})
    messages = (history or {}).get("messages") if isinstance(history, dict) else None
    return messages if isinstance(messages, list) else []


async def fetch_latest_assistant_text(gateway: GatewayInvoker, *, session_key: str, limit: int = DEFAULT_CHAT_HISTORY_LIMIT) -> str:
    return find_latest_assistant_text(await fetch_chat_history(gateway, session_key=session_key, limit=limit))


async def fetch_latest_assistant_snapshot(
    gateway: GatewayInvoker, *, session_key: str, limit: int = DEFAULT_CHAT_HISTORY_LIMIT
) -> AssistantSnapshot:
    return find_latest_assistant_snapshot(await fetch_chat_history(gateway, session_key=session_key, limit=limit))


async def send_chat_message(
    gateway: GatewayInvoker,
    *,
    session_key: str,
    message: str,
    deliver: bool | None = None,
    idempotency_key: str | None = None,
    timeout_ms: int | None = None,
) -> Any:
    params: dict[str, Any] = {"sessionKey": session_key, "message": message}
    if deliver is not None:
        params["deliver"] = deliver
    if idempotency_key:
        params["idempotencyKey"] = idempotency_key
    return await rpc(gateway, "chat.send", params, timeout_ms)


async def delete_session(gateway: GatewayInvoker, *, key: str, delete_transcript: bool = True) -> None:
    await rpc(gateway, "sessions.delete", {"key": key, "deleteTranscript": delete_transcript})


async def list_sessions(gateway: GatewayInvoker, *, limit: int | None = None, offset: int | None = None) -> list[Any]:
    params: dict[str, Any] = {}
    if limit is not None:
        params["limit"] = limit
    if offset is not None:
        params["offset"] = offset
    result = await rpc(gateway, "sessions.list", params)
    sessions = (result or {}).get("sessions") if isinstance(result, dict) else None
    return sessions if isinstance(sessions, list) else []


async def list_agents(gateway: GatewayInvoker) -> list[SubagentSummary]:
    result = await rpc(gateway, "agents.list")
    rows = result.get("agents") if isinstance(result, dict) else None
    agents: list[SubagentSummary] = []
    for row in rows if isinstance(rows, list) else []:
        if isinstance(row, dict) and isinstance(row.get("id"), str):
            agents.append(SubagentSummary.model_validate(row))
    return agents
