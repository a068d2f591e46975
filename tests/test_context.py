"""
Tests for team/context.py

Validates:
- Member projection falls back to the raw id for unknown agents
- Decisions and reports are windowed to the most recent entries
- The wrapped message layout
"""

import json

from teamflow.schema import SubagentSummary, Team, TeamContext, TeamReport
from teamflow.team.context import build_team_context_envelope, wrap_message_with_team_context


def make_report(i: int) -> TeamReport:
    return TeamReport(report_id=f"r{i}", task_id="t", agent_id="dev", status="done", result=[f"item {i}"])


def test_members_follow_team_order_with_names(team, agents):
    env = build_team_context_envelope(team=team, phase="discussion", agents=agents)
    assert [(m.agent_id, m.name, m.model) for m in env.members] == [("lead", "Lead", "m-large"), ("dev", "Dev", None)]


def test_unknown_member_degrades_to_raw_id():
    team = Team(id="t1", name="Alpha", controller_id="ghost", member_ids=["ghost"])
    env = build_team_context_envelope(team=team, phase="planning", agents=[])
    assert env.members[0].agent_id == "ghost"
    assert env.members[0].name == "ghost"
    assert env.members[0].model is None


def test_empty_registry_name_is_kept():
    team = Team(id="t1", name="Alpha", controller_id="anon", member_ids=["anon"])
    env = build_team_context_envelope(team=team, phase="discussion", agents=[SubagentSummary(id="anon", name="")])
    assert env.members[0].name == ""


def test_defaults_without_context_or_reports(team, agents):
    env = build_team_context_envelope(team=team, phase="discussion", agents=agents)
    assert env.goal == ""
    assert env.shared_summary == ""
    assert env.open_questions == []
    assert env.latest_reports == []


def test_shared_summary_keeps_last_eight_decisions(team, agents):
    ctx = TeamContext(goal="ship it", decisions=[f"d{i}" for i in range(12)], open_questions=["q?"])
    env = build_team_context_envelope(team=team, phase="convergence", agents=agents, context=ctx)
    assert env.goal == "ship it"
    assert env.shared_summary.split("\n") == [f"d{i}" for i in range(4, 12)]
    assert env.open_questions == ["q?"]


def test_latest_reports_keeps_last_ten(team, agents):
    reports = [make_report(i) for i in range(15)]
    env = build_team_context_envelope(team=team, phase="execution", agents=agents, reports=reports)
    assert [r.report_id for r in env.latest_reports] == [f"r{i}" for i in range(5, 15)]
    assert env.latest_reports[-1].result == ["item 14"]


def test_wrap_message_layout(team, agents):
    env = build_team_context_envelope(team=team, phase="discussion", agents=agents)
    wrapped = wrap_message_with_team_context("  what next?  \n", env)
    head, _, tail = wrapped.partition("\n\n[USER_MESSAGE]\n")
    assert head.startswith("[TEAM_CONTEXT]\n")
    assert tail == "what next?"
    payload = json.loads(head[len("[TEAM_CONTEXT]\n") :])
    assert payload["team_id"] == "t1"
    assert payload["phase"] == "discussion"
    # optional model omitted when unknown
    assert "model" not in payload["members"][1]
