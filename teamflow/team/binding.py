from __future__ import annotations


def build_team_session_key(agent_id: str, team_id: str) -> str:
    return f"agent:{agent_id}:team:{team_id}"


def filter_missing_agents(team_agent_ids: list[str], existing_agent_ids: list[str]) -> list[str]:
    existing = set(existing_agent_ids)
    return [a for a in team_agent_ids if a not in existing]
