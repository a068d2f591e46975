"""
Tests for team/room.py
"""

import pytest

from teamflow.schema import TeamReport
from teamflow.team.binding import filter_missing_agents
from teamflow.team.protocol import ControllerDecision, ConvergenceDigest, ExecutionBlueprint
from teamflow.team.room import TeamRoom


@pytest.fixture
def room(team):
    return TeamRoom(team=team)


def test_room_starts_in_discussion(room):
    assert room.phase == "discussion"


def test_transition_goes_through_table(room):
    assert room.transition_to("planning").ok
    assert room.phase == "planning"
    assert room.events[-1]["message"] == "discussion -> planning"
    assert room.events[-1]["accepted"] is True


def test_rejected_transition_keeps_phase(room):
    res = room.transition_to("done")
    assert res.ok is False
    assert res.error == "Invalid phase transition: discussion -> done"
    assert room.phase == "discussion"
    assert room.events[-1]["accepted"] is False


def test_self_transition_records_nothing(room):
    assert room.transition_to("discussion").ok
    assert room.events == []


def test_full_walk_to_done(room):
    for phase in ("planning", "team-setup", "convergence", "execution", "done"):
        assert room.transition_to(phase).ok, phase
    assert room.phase == "done"


def test_decisions_and_questions(room):
    room.add_decision("  use REST  ")
    room.add_decision("   ")
    room.add_open_question("auth?")
    room.add_open_question("auth?")
    assert room.context.decisions == ["use REST"]
    assert room.context.open_questions == ["auth?"]
    assert room.resolve_open_question("auth?") is True
    assert room.resolve_open_question("auth?") is False


def test_reports_are_kept_and_envelope_windows_them(room, agents):
    for i in range(12):
        room.append_report(TeamReport(report_id=f"r{i}", task_id="t", agent_id="dev", status="done"))
    assert len(room.reports) == 12
    env = room.envelope(agents)
    assert len(env.latest_reports) == 10
    assert env.phase == "discussion"


def test_session_key_defaults_to_team_binding(room):
    assert room.session_key_for("dev") == "agent:dev:team:t1"
    room.session_keys["dev"] = "custom"
    assert room.session_key_for("dev") == "custom"


def test_snapshot_includes_phase(room):
    room.transition_to("convergence")
    snap = room.snapshot()
    assert snap["phase"] == "convergence"
    assert snap["team"]["controllerId"] == "lead"


def test_filter_missing_agents_keeps_team_order():
    assert filter_missing_agents(["lead", "ghost", "dev", "phantom"], ["dev", "lead"]) == ["ghost", "phantom"]
    assert filter_missing_agents([], ["dev"]) == []


def test_controller_decision_drives_phase(room):
    decision = ControllerDecision(action="ready_for_planning", reply="enough info")
    res = room.apply_controller_decision(decision)
    assert res is not None and res.ok
    assert room.phase == "planning"
    assert [e["type"] for e in room.events] == ["controller-decision", "phase-transition"]


def test_ask_user_records_questions_and_stays(room):
    decision = ControllerDecision(action="ask_user", reply="need input", questions=["budget?", "deadline?"])
    assert room.apply_controller_decision(decision) is None
    assert room.phase == "discussion"
    assert room.context.open_questions == ["budget?", "deadline?"]


def test_execution_blueprint_goes_through_table(room):
    blueprint = ExecutionBlueprint(action="ready_to_execute", reply="go", required_decisions_resolved=True)
    res = room.apply_execution_blueprint(blueprint)
    assert res is not None and res.ok is False
    assert room.phase == "discussion"

    room.transition_to("convergence")
    assert room.apply_execution_blueprint(blueprint).ok
    assert room.phase == "execution"


def test_convergence_digest_feeds_context(room):
    digest = ConvergenceDigest(status="ready", summary="aligned", agreements=["rest api"], open_questions=["auth?"])
    room.apply_convergence_digest(digest)
    assert room.context.decisions == ["rest api"]
    assert room.context.open_questions == ["auth?"]
    assert room.events[-1]["status"] == "ready"
