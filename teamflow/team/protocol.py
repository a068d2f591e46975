from __future__ import annotations

import re
from typing import Any, Callable, Literal, TypeVar

from pydantic import BaseModel, Field

from teamflow.utils.json_extract import fenced_object_candidates, first_object_candidate, labelled_object_candidates, load_objects

ControllerDecisionAction = Literal["keep_research", "ask_user", "ready_for_planning", "ready_for_convergence"]
ReviewVerdict = Literal["approve", "revise", "blocked"]
ExecutionBlueprintAction = Literal["revise_plan", "ready_to_execute", "ask_user"]
ConvergenceDigestStatus = Literal["continue", "ready"]

CONTROLLER_DECISION_ACTIONS = ("keep_research", "ask_user", "ready_for_planning", "ready_for_convergence")
REVIEW_VERDICTS = ("approve", "revise", "blocked")
EXECUTION_BLUEPRINT_ACTIONS = ("revise_plan", "ready_to_execute", "ask_user")
CONVERGENCE_DIGEST_STATUSES = ("continue", "ready")

T = TypeVar("T")


class RequiredDecision(BaseModel):
    key: str
    question: str
    default_value: str | None = None
    options: list[str] = Field(default_factory=list)


class ControllerDecision(BaseModel):
    action: ControllerDecisionAction
    reply: str
    reason: str | None = None
    questions: list[str] = Field(default_factory=list)
    missing_info: list[str] = Field(default_factory=list)
    ready_reason: str | None = None


class TeamReview(BaseModel):
    agent_id: str
    verdict: ReviewVerdict
    summary: str
    blockers: list[str] = Field(default_factory=list)
    required_decisions: list[RequiredDecision] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class ExecutionBlueprint(BaseModel):
    action: ExecutionBlueprintAction
    reply: str
    reason: str | None = None
    must_fix: list[str] = Field(default_factory=list)
    required_decisions_resolved: bool
    assumptions: list[str] = Field(default_factory=list)


class ConvergenceDigest(BaseModel):
    status: ConvergenceDigestStatus
    summary: str
    agreements: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)


def _string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def _first(row: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if row.get(k) is not None:
            return row[k]
    return None


def _first_truthy(row: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if row.get(k):
            return row[k]
    return None


def decision_key(text: str) -> str:
    slug = re.sub(r"[^a-z0-9\u4e00-\u9fff]+", "-", text.strip().lower()).strip("-")
    return slug or "decision"


def normalize_required_decisions(value: Any) -> list[RequiredDecision]:
    """Decisions from plain question strings or `{key, question, default_value, options}` rows; keys are unique."""
    if not isinstance(value, list):
        return []
    seen: set[str] = set()
    out: list[RequiredDecision] = []
    for index, item in enumerate(value):
        if isinstance(item, str):
            question = item.strip()
            if not question:
                continue
            key = f"{decision_key(question)}-{index + 1}"
            if key not in seen:
                seen.add(key)
                out.append(RequiredDecision(key=key, question=question))
            continue
        if not isinstance(item, dict):
            continue
        question = _string(_first(item, "question", "prompt", "title", "summary"))
        if not question:
            continue
        key = _string(_first(item, "key", "id", "name")) or decision_key(question)
        if key in seen:
            continue
        seen.add(key)
        out.append(
            RequiredDecision(
                key=key,
                question=question,
                default_value=_string(_first(item, "default_value", "defaultValue", "default")) or None,
                options=_string_list(_first(item, "options", "choices")),
            )
        )
    return out


def normalize_controller_decision(raw: Any) -> ControllerDecision | None:
    if not isinstance(raw, dict):
        return None
    action = _string(raw.get("action")).lower()
    if action not in CONTROLLER_DECISION_ACTIONS:
        return None
    reply = _string(_first_truthy(raw, "reply", "user_message", "message", "question", "summary"))
    if not reply:
        return None
    return ControllerDecision(
        action=action,
        reply=reply,
        reason=_string(raw.get("reason")) or None,
        questions=_string_list(_first(raw, "questions", "open_questions", "openQuestions")),
        missing_info=_string_list(_first(raw, "missing_info", "missingInfo")),
        ready_reason=_string(_first(raw, "ready_reason", "readyReason")) or None,
    )


def normalize_review(raw: Any) -> TeamReview | None:
    if not isinstance(raw, dict):
        return None
    agent_id = _string(_first(raw, "agent_id", "agentId"))
    verdict = _string(raw.get("verdict")).lower()
    if not agent_id or verdict not in REVIEW_VERDICTS:
        return None
    summary = _string(_first_truthy(raw, "summary", "reply", "comment"))
    if not summary:
        return None
    blockers = _string_list(_first(raw, "blockers", "issues"))
    required = normalize_required_decisions(_first(raw, "required_decisions", "requiredDecisions", "questions"))
    # An approval that still carries blockers or open decisions is contradictory.
    if verdict == "approve" and (blockers or required):
        return None
    return TeamReview(
        agent_id=agent_id,
        verdict=verdict,
        summary=summary,
        blockers=blockers,
        required_decisions=required,
        suggestions=_string_list(raw.get("suggestions")),
    )


def normalize_execution_blueprint(raw: Any) -> ExecutionBlueprint | None:
    if not isinstance(raw, dict):
        return None
    action = _string(raw.get("action")).lower()
    if action not in EXECUTION_BLUEPRINT_ACTIONS:
        return None
    reply = _string(_first_truthy(raw, "reply", "user_message", "message", "summary"))
    if not reply:
        return None
    resolved = _first(raw, "required_decisions_resolved", "requiredDecisionsResolved")
    if not isinstance(resolved, bool):
        return None
    return ExecutionBlueprint(
        action=action,
        reply=reply,
        reason=_string(raw.get("reason")) or None,
        must_fix=_string_list(_first(raw, "must_fix", "mustFix")),
        required_decisions_resolved=resolved,
        assumptions=_string_list(raw.get("assumptions")),
    )


def normalize_convergence_digest(raw: Any) -> ConvergenceDigest | None:
    if not isinstance(raw, dict):
        return None
    status = _string(raw.get("status")).lower()
    if status not in CONVERGENCE_DIGEST_STATUSES:
        return None
    summary = _string(_first_truthy(raw, "summary", "reply", "message"))
    if not summary:
        return None
    return ConvergenceDigest(
        status=status,
        summary=summary,
        agreements=_string_list(raw.get("agreements")),
        conflicts=_string_list(raw.get("conflicts")),
        open_questions=_string_list(_first(raw, "open_questions", "openQuestions")),
    )


def _parse_labelled(text: str, labels: list[str], normalize: Callable[[Any], T | None]) -> T | None:
    """
    Scan `LABEL:` objects, then fenced blocks, then the first raw object.

    The first candidate that normalizes wins; a `payload`/`data`/`result` wrapper is unwrapped.
    """
    trimmed = text.strip()
    if not trimmed:
        return None
    candidates = labelled_object_candidates(trimmed, labels)
    candidates += fenced_object_candidates(trimmed)
    generic = first_object_candidate(trimmed)
    if generic:
        candidates.append(generic)
    for obj in load_objects(candidates):
        parsed = normalize(obj)
        if parsed is None:
            parsed = normalize(_first(obj, "payload", "data", "result"))
        if parsed is not None:
            return parsed
    return None


def parse_controller_decision_from_text(text: str) -> ControllerDecision | None:
    return _parse_labelled(text, ["CONTROLLER_DECISION"], normalize_controller_decision)


def parse_team_review_from_text(text: str) -> TeamReview | None:
    return _parse_labelled(text, ["REVIEW_JSON", "REVIEW"], normalize_review)


def parse_execution_blueprint_from_text(text: str) -> ExecutionBlueprint | None:
    return _parse_labelled(text, ["EXECUTION_BLUEPRINT", "BLUEPRINT"], normalize_execution_blueprint)


def parse_convergence_digest_from_text(text: str) -> ConvergenceDigest | None:
    return _parse_labelled(text, ["CONVERGENCE_DIGEST_JSON", "CONVERGENCE_DIGEST", "DIGEST"], normalize_convergence_digest)


# Phase each protocol outcome asks for; None means stay in the current phase.
_DECISION_PHASES = {"ready_for_planning": "planning", "ready_for_convergence": "convergence"}


def controller_decision_target_phase(decision: ControllerDecision) -> str | None:
    return _DECISION_PHASES.get(decision.action)


def execution_blueprint_target_phase(blueprint: ExecutionBlueprint) -> str | None:
    if blueprint.action == "ready_to_execute" and blueprint.required_decisions_resolved and not blueprint.must_fix:
        return "execution"
    return None


def build_controller_decision_retry_message() -> str:
    return "\n".join(
        [
            "Previous output failed CONTROLLER_DECISION validation.",
            "Return exactly one JSON object only. No markdown, no extra text.",
            "Semantics:",
            "- ask_user: use when user input is required; include questions and no phase jump.",
            "- keep_research: use for internal research only; do not ask user questions.",
            "- ready_for_planning: only when information is sufficient; reply must not contain questions.",
            "- ready_for_convergence: only when plan is ready for member review; reply must not contain questions.",
            "Format:",
            "{",
            '  "action": "keep_research | ask_user | ready_for_planning | ready_for_convergence",',
            '  "reply": "one sentence for user",',
            '  "reason": "optional decision rationale",',
            '  "questions": ["optional question to user"],',
            '  "missing_info": ["optional missing item"],',
            '  "ready_reason": "optional readiness evidence"',
            "}",
        ]
    )


def build_review_retry_message(agent_id: str) -> str:
    return "\n".join(
        [
            "Previous output failed REVIEW_JSON validation.",
            "Return exactly one JSON object only. No markdown, no extra text.",
            "Rules:",
            "- blockers: hard blockers that must be fixed before execution.",
            "- required_decisions: user decisions needed before execution; include default values when possible.",
            "- suggestions: optional improvements, non-blocking.",
            "- verdict=approve ONLY when blockers=[] and required_decisions=[].",
            "Format:",
            "{",
            f'  "agent_id": "{agent_id}",',
            '  "verdict": "approve | revise | blocked",',
            '  "summary": "one sentence review conclusion",',
            '  "blockers": ["blocking issue 1"],',
            '  "required_decisions": [{"key":"api-provider","question":"Choose default provider",'
            '"default_value":"a","options":["a","b"]}],',
            '  "suggestions": ["optional suggestion 1"]',
            "}",
        ]
    )


def build_execution_blueprint_retry_message() -> str:
    return "\n".join(
        [
            "Previous output failed EXECUTION_BLUEPRINT validation.",
            "Return exactly one JSON object only. No markdown, no extra text.",
            "Format:",
            "{",
            '  "action": "revise_plan | ready_to_execute | ask_user",',
            '  "reply": "one sentence for user",',
            '  "reason": "optional decision rationale",',
            '  "must_fix": ["blocking issue 1"],',
            '  "required_decisions_resolved": true,',
            '  "assumptions": ["use default decision X"]',
            "}",
        ]
    )


def build_convergence_digest_retry_message() -> str:
    return "\n".join(
        [
            "Previous output failed CONVERGENCE_DIGEST_JSON validation.",
            "Return exactly one JSON object only. No markdown, no extra text.",
            "Format:",
            "{",
            '  "status": "continue | ready",',
            '  "summary": "one sentence digest",',
            '  "agreements": ["agreement 1"],',
            '  "conflicts": ["conflict 1"],',
            '  "open_questions": ["open question 1"]',
            "}",
        ]
    )
