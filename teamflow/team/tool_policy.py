from __future__ import annotations

# Deliberation phases must not touch sessions, agents, the gateway, nodes or schedules.
_DELIBERATION_FORBIDDEN = ("sessions_", "subagents", "agent", "gateway", "nodes", "cron")

PHASE_FORBIDDEN_TOOL_PREFIXES: dict[str, tuple[str, ...]] = {
    "discussion": _DELIBERATION_FORBIDDEN,
    "planning": _DELIBERATION_FORBIDDEN,
    "convergence": _DELIBERATION_FORBIDDEN,
}


def normalize_tool_name(name: str) -> str:
    return name.strip().lower()


def find_forbidden_tools(phase: str, used_tools: list[str]) -> list[str]:
    """Normalized, deduplicated tool names (first-seen order) that `phase` forbids. Advisory only."""
    prefixes = PHASE_FORBIDDEN_TOOL_PREFIXES.get(phase, ())
    if not prefixes:
        return []
    out: list[str] = []
    for name in used_tools:
        normalized = normalize_tool_name(name)
        if normalized.startswith(prefixes) and normalized not in out:
            out.append(normalized)
    return out
