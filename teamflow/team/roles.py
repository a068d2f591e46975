from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from teamflow.schema.draft import DraftRoleMetadata
from teamflow.schema.team import RoleMetadataEntry, SubagentSummary
from teamflow.utils.json_extract import fenced_object_candidates, first_object_candidate, load_objects

logger = logging.getLogger(__name__)

ROLES_METADATA_TITLE = "# ROLES_METADATA"
ROLES_METADATA_VERSION = 1


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def normalize_tags(tags: list[str]) -> list[str]:
    out: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in out:
            out.append(tag)
    return out


def default_role_summary(agent: SubagentSummary) -> str:
    return f"{agent.name if agent.name is not None else agent.id} handles tasks in its specialty and reports outcomes."


def _core(entry: RoleMetadataEntry) -> tuple:
    return (
        entry.agent_id,
        entry.name,
        entry.role,
        entry.summary,
        (entry.model or "").strip() or None,
        (entry.emoji or "").strip() or None,
        tuple(normalize_tags(entry.tags)),
    )


def roles_equivalent(current: list[RoleMetadataEntry], updated: list[RoleMetadataEntry]) -> bool:
    """Same agents with the same core fields; `updated_at` is ignored."""
    if len(current) != len(updated):
        return False
    by_id = {e.agent_id: _core(e) for e in current}
    return all(by_id.get(e.agent_id) == _core(e) for e in updated)


def _normalize_row(row: Any) -> RoleMetadataEntry | None:
    if not isinstance(row, dict):
        return None
    agent_id = _string(row.get("agentId"))
    if not agent_id:
        return None
    name = _string(row.get("name")) or agent_id
    return RoleMetadataEntry(
        agent_id=agent_id,
        name=name,
        role=_string(row.get("role")) or name,
        summary=_string(row.get("summary")),
        tags=_string_list(row.get("tags")),
        model=_string(row.get("model")) or None,
        emoji=_string(row.get("emoji")) or None,
        updated_at=_string(row.get("updatedAt")) or _now_iso(),
    )


def parse_roles_metadata(content: str) -> list[RoleMetadataEntry]:
    """Rows of the JSON block in a roles-metadata document; anything unreadable yields []."""
    fenced = fenced_object_candidates(content)
    candidates = fenced[:1] if fenced else [c for c in [first_object_candidate(content.strip())] if c]
    objs = load_objects(candidates)
    roles = objs[0].get("roles") if objs else None
    if not isinstance(roles, list):
        return []
    return [e for e in (_normalize_row(row) for row in roles) if e]


def build_roles_metadata_markdown(entries: list[RoleMetadataEntry]) -> str:
    payload = {
        "version": ROLES_METADATA_VERSION,
        "updatedAt": _now_iso(),
        "roles": [e.model_dump(by_alias=True, exclude_none=True) for e in entries],
    }
    return "\n".join(
        [
            ROLES_METADATA_TITLE,
            "",
            "Multi-agent role metadata (not read by the agent runtime).",
            "",
            "```json",
            json.dumps(payload, indent=2, ensure_ascii=False),
            "```",
            "",
        ]
    )


def merge_roles_from_agents(current: list[RoleMetadataEntry], agents: list[SubagentSummary]) -> list[RoleMetadataEntry]:
    """
    One entry per registered agent, in registry order.

    Name, model and emoji follow the registry; role, summary and tags are kept from the
    existing entry. `updated_at` only moves when a core field changed.
    """
    by_id = {e.agent_id: e for e in current}
    now = _now_iso()
    merged: list[RoleMetadataEntry] = []
    for agent in agents:
        prev = by_id.get(agent.id)
        emoji = agent.identity.emoji if agent.identity else None
        entry = RoleMetadataEntry(
            agent_id=agent.id,
            name=agent.name if agent.name is not None else agent.id,
            role=(prev.role if prev else "") or agent.name or agent.id,
            summary=(prev.summary if prev else "") or default_role_summary(agent),
            tags=normalize_tags(prev.tags if prev else []),
            model=agent.model if agent.model is not None else (prev.model if prev else None),
            emoji=emoji if emoji is not None else (prev.emoji if prev else None),
            updated_at=now,
        )
        if prev and _core(prev) == _core(entry):
            entry.updated_at = prev.updated_at or now
        merged.append(entry)
    return merged


def upsert_role_metadata(
    current: list[RoleMetadataEntry],
    agents: list[SubagentSummary],
    agent_id: str,
    metadata: DraftRoleMetadata,
) -> list[RoleMetadataEntry]:
    merged = merge_roles_from_agents(current, agents)
    for entry in merged:
        if entry.agent_id == agent_id:
            entry.summary = metadata.summary
            entry.tags = list(metadata.tags)
            entry.updated_at = _now_iso()
    return merged


class RolesMetadataFile:
    """Roles-metadata markdown document on disk."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> list[RoleMetadataEntry]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return parse_roles_metadata(content)

    def write(self, entries: list[RoleMetadataEntry]) -> bool:
        """Write the document unless it already holds equivalent entries. Returns True on write."""
        if roles_equivalent(self.read(), entries):
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(build_roles_metadata_markdown(entries), encoding="utf-8")
        logger.info("roles metadata written path=%s roles=%d", self.path, len(entries))
        return True
