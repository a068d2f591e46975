from .context import TeamContextEnvelope, build_team_context_envelope, wrap_message_with_team_context
from .fsm import ALLOWED_PHASE_TRANSITIONS, PhaseTransition, available_transitions, can_transition, ensure_transition
from .message import detect_message_kind
from .orchestrator import WaitPolicy, run_agent_and_collect_report
from .protocol import (
    parse_controller_decision_from_text,
    parse_convergence_digest_from_text,
    parse_execution_blueprint_from_text,
    parse_team_review_from_text,
)
from .report import parse_report_from_text
from .roles import RolesMetadataFile
from .room import TeamRoom
from .tool_policy import find_forbidden_tools

__all__ = [
    "ALLOWED_PHASE_TRANSITIONS",
    "PhaseTransition",
    "RolesMetadataFile",
    "TeamContextEnvelope",
    "TeamRoom",
    "WaitPolicy",
    "available_transitions",
    "build_team_context_envelope",
    "can_transition",
    "detect_message_kind",
    "ensure_transition",
    "find_forbidden_tools",
    "parse_controller_decision_from_text",
    "parse_convergence_digest_from_text",
    "parse_execution_blueprint_from_text",
    "parse_report_from_text",
    "parse_team_review_from_text",
    "run_agent_and_collect_report",
    "wrap_message_with_team_context",
]
