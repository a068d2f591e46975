"""
Tests for team/roles.py

Validates:
- The markdown document round-trips through its JSON block
- Unreadable documents yield no entries
- Merge follows registry order and keeps role/summary/tags
- Draft metadata overrides summary and tags for one agent only
- Writes are skipped when nothing changed
"""

import json

from teamflow.schema import DraftRoleMetadata, RoleMetadataEntry, SubagentSummary
from teamflow.schema.team import AgentIdentitySummary
from teamflow.team.roles import (
    RolesMetadataFile,
    build_roles_metadata_markdown,
    merge_roles_from_agents,
    parse_roles_metadata,
    roles_equivalent,
    upsert_role_metadata,
)


def entry(agent_id, **kw):
    data = {"agent_id": agent_id, "name": agent_id.title(), "role": agent_id, "updated_at": "2026-01-01T00:00:00+00:00"}
    data.update(kw)
    return RoleMetadataEntry(**data)


def test_markdown_document_parses_back():
    doc = build_roles_metadata_markdown([entry("dev", summary="builds", tags=["py"], model="m1")])
    assert doc.startswith("# ROLES_METADATA\n")
    (parsed,) = parse_roles_metadata(doc)
    assert (parsed.agent_id, parsed.summary, parsed.tags, parsed.model, parsed.emoji) == ("dev", "builds", ["py"], "m1", None)


def test_parse_falls_back_to_raw_object_and_fills_names():
    content = 'notes {"roles": [{"agentId": " qa "}, {"name": "no id"}, "junk"]}'
    (row,) = parse_roles_metadata(content)
    assert (row.agent_id, row.name, row.role) == ("qa", "qa", "qa")
    assert row.updated_at


def test_parse_unreadable_documents():
    assert parse_roles_metadata("") == []
    assert parse_roles_metadata("```json\n{not json}\n```") == []
    assert parse_roles_metadata(json.dumps({"roles": {}})) == []


def test_merge_follows_registry_and_keeps_role_fields():
    current = [entry("dev", role="backend", summary="builds apis", tags=["py", "py", " api "]), entry("gone")]
    agents = [
        SubagentSummary(id="lead", name="Lead", identity=AgentIdentitySummary(emoji="*")),
        SubagentSummary(id="dev", name="Dev"),
    ]

    merged = merge_roles_from_agents(current, agents)

    assert [e.agent_id for e in merged] == ["lead", "dev"]
    lead, dev = merged
    assert lead.summary == "Lead handles tasks in its specialty and reports outcomes."
    assert (lead.role, lead.emoji) == ("Lead", "*")
    assert (dev.name, dev.role, dev.summary, dev.tags) == ("Dev", "backend", "builds apis", ["py", "api"])


def test_merge_keeps_timestamp_when_nothing_changed():
    current = [entry("dev", name="Dev", role="Dev", summary="s", tags=["a"])]
    (merged,) = merge_roles_from_agents(current, [SubagentSummary(id="dev", name="Dev")])
    assert merged.updated_at == "2026-01-01T00:00:00+00:00"


def test_upsert_only_touches_target_agent():
    agents = [SubagentSummary(id="lead", name="Lead"), SubagentSummary(id="dev", name="Dev")]
    current = [entry("lead", summary="plans", tags=["pm"])]

    out = upsert_role_metadata(current, agents, "dev", DraftRoleMetadata(summary="Writes code", tags=["py", "tests", "ci"]))

    by_id = {e.agent_id: e for e in out}
    assert (by_id["dev"].summary, by_id["dev"].tags) == ("Writes code", ["py", "tests", "ci"])
    assert (by_id["lead"].summary, by_id["lead"].tags) == ("plans", ["pm"])


def test_roles_equivalent_ignores_timestamps():
    a = [entry("dev", tags=["x"])]
    b = [entry("dev", tags=["x"], updated_at="later")]
    assert roles_equivalent(a, b)
    assert not roles_equivalent(a, [entry("dev", tags=["y"])])
    assert not roles_equivalent(a, [])


def test_file_write_skips_equivalent_content(tmp_path):
    roles = RolesMetadataFile(tmp_path / "meta" / "ROLES_METADATA.md")
    assert roles.read() == []

    assert roles.write([entry("dev", summary="s")]) is True
    first = roles.path.read_text(encoding="utf-8")
    assert roles.write([entry("dev", summary="s", updated_at="later")]) is False
    assert roles.path.read_text(encoding="utf-8") == first
    assert roles.write([entry("dev", summary="changed")]) is True
