from .drafts import AgentDraftState, DraftApplyError, DraftError, DraftStore, DraftTimeouts, build_draft_session_key
from .prompt import DraftParseError, build_subagent_prompt_payload, parse_draft_payload

__all__ = [
    "AgentDraftState",
    "DraftApplyError",
    "DraftError",
    "DraftParseError",
    "DraftStore",
    "DraftTimeouts",
    "build_draft_session_key",
    "build_subagent_prompt_payload",
    "parse_draft_payload",
]
