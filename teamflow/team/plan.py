from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from teamflow.schema.team import TeamPlan, TeamPlanTask
from teamflow.utils.json_extract import (
    extract_balanced_object,
    fenced_object_candidates,
    first_object_candidate,
    labelled_object_candidates,
    load_objects,
)

DEFAULT_OBJECTIVE = "Untitled objective"


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


def _normalize_task(row: Any, index: int) -> TeamPlanTask | None:
    if not isinstance(row, dict):
        return None
    instruction = _string(_first(row, "instruction", "task", "description", "task_description"))
    agent_id = _string(_first(row, "agentId", "agent_id")) or None
    role = _string(_first(row, "role", "agent_role")) or None
    if not instruction or not (agent_id or role):
        return None
    return TeamPlanTask(
        task_id=_string(_first(row, "taskId", "task_id")) or f"task-{index + 1}",
        agent_id=agent_id,
        role=role,
        instruction=instruction,
        acceptance=_string_list(_first(row, "acceptance", "acceptance_criteria")),
        depends_on=_string_list(_first(row, "dependsOn", "depends_on")),
    )


def normalize_plan(payload: Any) -> TeamPlan | None:
    if not isinstance(payload, dict):
        return None
    raw_tasks = _first(payload, "tasks", "assignments", "memberAssignments")
    if not isinstance(raw_tasks, list):
        return None
    tasks = [t for t in (_normalize_task(row, i) for i, row in enumerate(raw_tasks)) if t]
    if not tasks:
        return None
    try:
        return TeamPlan(
            objective=_string(_first(payload, "objective", "goal", "target")) or DEFAULT_OBJECTIVE,
            scope=_string_list(_first(payload, "scope", "inScope")),
            tasks=tasks,
            risks=_string_list(_first(payload, "risks", "riskList")),
        )
    except ValidationError:
        return None


def parse_team_plan_from_text(text: str) -> TeamPlan | None:
    """Find a plan in agent output: a bare object, `PLAN:`/`PLAN_JSON:` labels, fenced blocks, then any object."""
    trimmed = text.strip()
    candidates: list[str] = []
    if trimmed.startswith("{"):
        frag = extract_balanced_object(trimmed, 0)
        if frag:
            candidates.append(frag)
    candidates += labelled_object_candidates(trimmed, ["PLAN(?:_JSON)?"])
    candidates += fenced_object_candidates(trimmed)
    generic = first_object_candidate(trimmed)
    if generic:
        candidates.append(generic)

    for obj in load_objects(candidates):
        plan = normalize_plan(obj)
        if plan:
            return plan
    return None


def validate_team_plan(plan: TeamPlan | None) -> tuple[bool, str | None]:
    if plan is None:
        return False, "PLAN is empty"
    if not plan.objective.strip():
        return False, "PLAN.objective is required"
    if not plan.tasks:
        return False, "PLAN.tasks is required"
    for task in plan.tasks:
        if not task.task_id.strip():
            return False, "PLAN.tasks[].taskId is required"
        if not task.instruction.strip():
            return False, f"PLAN.tasks[{task.task_id}].instruction is required"
        if not (task.agent_id or task.role):
            return False, f"PLAN.tasks[{task.task_id}] requires agentId or role"
    return True, None


def looks_like_plan_intent(text: str) -> bool:
    normalized = text.strip().lower()
    if not normalized:
        return False
    return "plan" in normalized or '"tasks"' in normalized
