from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from teamflow.schema.team import TeamReport
from teamflow.utils.json_extract import extract_balanced_object, fenced_object_candidates, load_objects

from .message import detect_message_kind

_REPORT_PREFIX = re.compile(r"REPORT\s*:\s*", flags=re.IGNORECASE)


@dataclass(frozen=True)
class ReportDefaults:
    task_id: str | None = None
    agent_id: str | None = None
    report_id: str | None = None


def _string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        if isinstance(item, str):
            text = item.strip()
        elif item is None:
            text = ""
        else:
            try:
                text = json.dumps(item, ensure_ascii=False, separators=(",", ":"))
            except (TypeError, ValueError):
                text = ""
        if text:
            out.append(text)
    return out


def _first(row: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if row.get(k) is not None:
            return row[k]
    return None


def _report_candidates(text: str) -> list[str]:
    m = _REPORT_PREFIX.search(text)
    if not m:
        return []
    tail = text[m.end() :].strip()
    candidates = fenced_object_candidates(tail)
    frag = extract_balanced_object(tail, tail.find("{"))
    if frag:
        candidates.append(frag)
    return candidates


def normalize_report(payload: Any, defaults: ReportDefaults | None = None) -> TeamReport | None:
    if not isinstance(payload, dict):
        return None
    defaults = defaults or ReportDefaults()
    task_id = _string(_first(payload, "task_id", "taskId")) or _string(defaults.task_id)
    agent_id = _string(_first(payload, "agent_id", "agentId")) or _string(defaults.agent_id)
    status = _string(_first(payload, "status", "state"))
    if not task_id or not agent_id or not status:
        return None

    report_id = (
        _string(_first(payload, "reportId", "report_id"))
        or _string(defaults.report_id)
        or f"{task_id}:{agent_id}:generated"
    )
    result = _string_list(_first(payload, "result", "results", "output"))
    summary = _string(payload.get("summary"))
    if not result and summary:
        result = [summary]

    try:
        return TeamReport(
            report_id=report_id,
            task_id=task_id,
            agent_id=agent_id,
            status=status,
            result=result,
            evidence=_string_list(payload.get("evidence")) or None,
            next_steps=_string_list(_first(payload, "next_steps", "nextSteps")) or None,
            risks=_string_list(payload.get("risks")) or None,
        )
    except ValidationError:
        return None


def parse_report_from_text(text: str, defaults: ReportDefaults | None = None) -> TeamReport | None:
    """
    Parse the JSON that follows a `REPORT:` marker.

    Only messages classified as reports are considered. Fenced blocks win over the first raw
    object; a `{"report": {...}}` wrapper is unwrapped. Anything unparsable yields None.
    """
    if detect_message_kind(text) != "report":
        return None
    for obj in load_objects(_report_candidates(text)):
        report = normalize_report(obj, defaults) or normalize_report(obj.get("report"), defaults)
        if report:
            return report
    return None


def validate_team_report(
    report: TeamReport | None, *, allowed_statuses: frozenset[str] | None = None
) -> tuple[bool, str | None]:
    # Status vocabulary belongs to the caller's agent contract; unrestricted by default.
    if report is None:
        return False, "REPORT missing or unparsable"
    if allowed_statuses is not None and report.status.lower() not in allowed_statuses:
        return False, f"REPORT.status is invalid: {report.status}"
    return True, None


def build_report_retry_message(*, task_id: str, agent_id: str) -> str:
    return "\n".join(
        [
            "Previous output failed REPORT validation.",
            'Return exactly one JSON object prefixed with "REPORT: ".',
            "No markdown, no extra text.",
            "Required fields:",
            "{",
            f'  "task_id": "{task_id}",',
            f'  "agent_id": "{agent_id}",',
            '  "status": "done | partial | blocked",',
            '  "result": ["short bullet 1"]',
            "}",
        ]
    )
