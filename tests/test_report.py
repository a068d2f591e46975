"""
Tests for team/report.py

Validates:
- Only report-classified messages are parsed
- Fenced JSON wins over raw objects; nested `report` wrappers are unwrapped
- Field aliases and defaults
- Malformed payloads yield None
"""

import pytest

from teamflow.team.report import (
    ReportDefaults,
    build_report_retry_message,
    normalize_report,
    parse_report_from_text,
    validate_team_report,
)

# ---------------------------------------------------------------------------
# parse_report_from_text
# ---------------------------------------------------------------------------


def test_parses_raw_object_after_marker():
    text = 'REPORT: {"reportId": "r1", "task_id": "t1", "agent_id": "dev", "status": "done", "result": ["ok"]} trailing'
    report = parse_report_from_text(text)
    assert report is not None
    assert (report.report_id, report.task_id, report.agent_id, report.status) == ("r1", "t1", "dev", "done")
    assert report.result == ["ok"]


def test_prefers_fenced_block():
    text = 'REPORT:\n```json\n{"task_id": "t1", "agent_id": "dev", "status": "partial", "result": []}\n```'
    report = parse_report_from_text(text)
    assert report is not None
    assert report.status == "partial"
    assert report.report_id == "t1:dev:generated"


def test_non_report_message_is_ignored():
    assert parse_report_from_text('Here is the plan {"task_id": "t1", "agent_id": "dev", "status": "done"}') is None


def test_malformed_json_is_none():
    assert parse_report_from_text('REPORT: {"task_id": "t1", "status": }') is None


def test_missing_status_is_none():
    assert parse_report_from_text('REPORT: {"task_id": "t1", "agent_id": "dev"}') is None


def test_nested_report_wrapper_is_unwrapped():
    text = 'REPORT: {"report": {"taskId": "t9", "agentId": "qa", "state": "blocked", "summary": "waiting on api"}}'
    report = parse_report_from_text(text)
    assert report is not None
    assert report.task_id == "t9"
    assert report.status == "blocked"
    assert report.result == ["waiting on api"]


def test_defaults_fill_missing_ids():
    report = parse_report_from_text('REPORT: {"status": "done"}', ReportDefaults(task_id="t1", agent_id="dev", report_id="run-1"))
    assert report is not None
    assert (report.report_id, report.task_id, report.agent_id) == ("run-1", "t1", "dev")


def test_braces_inside_strings_do_not_break_extraction():
    text = 'REPORT: {"task_id": "t1", "agent_id": "dev", "status": "done", "result": ["use {x} here"]}'
    report = parse_report_from_text(text)
    assert report is not None
    assert report.result == ["use {x} here"]


# ---------------------------------------------------------------------------
# normalize_report
# ---------------------------------------------------------------------------


def test_non_string_result_items_are_json_encoded():
    report = normalize_report({"task_id": "t", "agent_id": "a", "status": "done", "results": [{"k": 1}, 2, None, " x "]})
    assert report is not None
    assert report.result == ['{"k":1}', "2", "x"]


def test_nested_result_items_use_compact_json():
    report = normalize_report({"task_id": "t", "agent_id": "a", "status": "done", "result": [{"files": ["a.py", "b.py"], "ok": True}]})
    assert report is not None
    assert report.result == ['{"files":["a.py","b.py"],"ok":true}']


def test_optional_lists_absent_when_empty():
    report = normalize_report({"task_id": "t", "agent_id": "a", "status": "done", "evidence": [], "nextSteps": ["n"]})
    assert report is not None
    assert report.evidence is None
    assert report.next_steps == ["n"]
    assert "evidence" not in report.to_payload()


def test_normalize_rejects_non_dict():
    assert normalize_report(["done"]) is None


# ---------------------------------------------------------------------------
# validate / retry
# ---------------------------------------------------------------------------


def test_validate_missing_report():
    assert validate_team_report(None) == (False, "REPORT missing or unparsable")


def test_validate_with_allowed_statuses():
    report = normalize_report({"task_id": "t", "agent_id": "a", "status": "Weird"})
    assert validate_team_report(report) == (True, None)
    ok, error = validate_team_report(report, allowed_statuses=frozenset({"done", "partial", "blocked"}))
    assert ok is False
    assert "Weird" in error


@pytest.mark.parametrize("task_id,agent_id", [("t1", "dev"), ("build-api", "qa")])
def test_retry_message_names_task_and_agent(task_id, agent_id):
    msg = build_report_retry_message(task_id=task_id, agent_id=agent_id)
    assert 'prefixed with "REPORT: "' in msg
    assert f'"task_id": "{task_id}"' in msg
    assert f'"agent_id": "{agent_id}"' in msg
