"""
Tests for team/tool_policy.py and team/message.py
"""

import pytest

from teamflow.team.message import detect_message_kind
from teamflow.team.tool_policy import find_forbidden_tools, normalize_tool_name

# ---------------------------------------------------------------------------
# Tool policy
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("phase", ["discussion", "planning", "convergence"])
def test_deliberation_phases_forbid_control_tools(phase):
    used = ["read_file", "sessions_spawn", "Gateway_restart", "web_search", "cron.add"]
    assert find_forbidden_tools(phase, used) == ["sessions_spawn", "gateway_restart", "cron.add"]


@pytest.mark.parametrize("phase", ["execution", "team-setup", "done"])
def test_other_phases_forbid_nothing(phase):
    assert find_forbidden_tools(phase, ["sessions_spawn", "agent_run", "nodes.list"]) == []


def test_names_are_trimmed_and_lowercased():
    assert find_forbidden_tools("discussion", ["  Subagents_List  "]) == ["subagents_list"]


def test_duplicates_reported_once():
    assert find_forbidden_tools("planning", ["cron", "CRON", " cron "]) == ["cron"]


def test_prefix_match_includes_agent_prefixed_names():
    assert find_forbidden_tools("discussion", ["agents_list", "read"]) == ["agents_list"]


def test_no_tools_used():
    assert find_forbidden_tools("discussion", []) == []


def test_normalize_tool_name():
    assert normalize_tool_name("  Nodes_Invoke ") == "nodes_invoke"


# ---------------------------------------------------------------------------
# Message kind
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text,kind",
    [
        ('REPORT: {"status": "done"}', "report"),
        ('   report:{"status": "done"}', "report"),
        ("PLAN: draft the tasks", "plan"),
        ("plan: lowercase works too", "plan"),
        ("Here is my REPORT: {}", "normal"),
        ("REPORT {}", "normal"),
        ("", "normal"),
        ("PLANNING: later", "normal"),
    ],
)
def test_detect_message_kind(text, kind):
    assert detect_message_kind(text) == kind
