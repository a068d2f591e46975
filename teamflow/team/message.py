from __future__ import annotations

from teamflow.schema.team import TeamMessageKind


def detect_message_kind(text: str) -> TeamMessageKind:
    normalized = text.strip().upper()
    if normalized.startswith("REPORT:"):
        return "report"
    if normalized.startswith("PLAN:"):
        return "plan"
    return "normal"
