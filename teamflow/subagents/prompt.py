from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from teamflow.schema.draft import SUBAGENT_TARGET_FILES, DraftByFile, DraftOutput, DraftRoleMetadata
from teamflow.utils.json_extract import extract_balanced_object, fenced_object_candidates, load_objects

FILE_RESPONSIBILITIES: dict[str, str] = {
    "AGENTS.md": "overall behaviour rules, workflow and execution constraints",
    "SOUL.md": "personality, tone, values and interaction style",
    "TOOLS.md": "tool usage strategy, authorization boundaries and call preferences",
    "IDENTITY.md": "identity, role, name and persona",
    "USER.md": "user preferences, communication habits and personal conventions",
}

DRAFT_OUTPUT_SHAPE = '{"files":[{"name","content","reason","confidence"}],"roleMetadata":{"summary","tags"}}'

ITERATION_RULES = "\n".join(
    [
        "Always iterate on the previous draft in this same session.",
        "If there is no previous draft yet, write a first draft from scratch.",
        "Treat the user input as an incremental edit instruction (which files to change and how).",
        "When the user only asks to improve some files, keep the other files unchanged.",
        "Rewrite incrementally: keep what already works and only rewrite weak parts.",
        "Every round, check AGENTS.md / SOUL.md / TOOLS.md / IDENTITY.md / USER.md for consistency.",
        "Prefer concrete, actionable statements over vague ones.",
        f"The output must always be JSON: {DRAFT_OUTPUT_SHAPE}.",
        "Each file item must contain name, content, reason and confidence.",
        "roleMetadata.summary is required: summarize the agent's responsibilities and strengths.",
        "roleMetadata.tags is required: an array of 3-8 short tags.",
        "confidence must be a number in [0, 1].",
        'Escape double quotes inside content as \\".',
        "Do not use ``` code fences inside content; use plain or indented text for examples.",
        "Check that the JSON parses before answering; fix it first if it does not.",
        "Return JSON only, without Markdown fences or extra explanation.",
    ]
)

FORMAT_RETRY_MESSAGE = "\n".join(
    [
        "The previous output could not be parsed as valid JSON.",
        "Return exactly one JSON object, no Markdown fences and no extra explanation.",
        f"Use this structure strictly: {DRAFT_OUTPUT_SHAPE}.",
        "roleMetadata.summary is required.",
        "roleMetadata.tags is required, with at least 3 short tags.",
        'Do not use ``` inside content; escape double quotes as \\".',
        "Keep the content short so that all 5 files are complete and closed.",
    ]
)

MAX_BASELINE_FILE_CHARS = 6000

_FILES_OBJECT = re.compile(r'\{\s*"files"\s*:')


class DraftParseError(ValueError):
    """Model output is not a valid draft payload."""


@dataclass(frozen=True)
class PromptPayload:
    system_prompt: str
    user_prompt: str

    def as_message(self) -> str:
        return f"{self.system_prompt}\n\n{self.user_prompt}"


@dataclass(frozen=True)
class ParsedDraft:
    draft_by_file: DraftByFile
    role_metadata: DraftRoleMetadata


def trim_baseline_content(content: str) -> str:
    if len(content) <= MAX_BASELINE_FILE_CHARS:
        return content
    head_size = int(MAX_BASELINE_FILE_CHARS * 0.75)
    tail_size = MAX_BASELINE_FILE_CHARS - head_size
    return f"{content[:head_size]}\n\n[...truncated, head and tail kept...]\n\n{content[-tail_size:]}"


def _baseline_section(persisted: dict[str, str]) -> str | None:
    if not any(name in persisted for name in SUBAGENT_TARGET_FILES):
        return None
    sections = ["Files currently on disk (baseline for this round):"]
    for name in SUBAGENT_TARGET_FILES:
        sections += [f"\n### {name}", "```md", trim_baseline_content(persisted.get(name, "")) or "(empty)", "```"]
    return "\n".join(sections)


def build_subagent_prompt_payload(prompt: str, persisted: dict[str, str] | None = None) -> PromptPayload:
    rules = "\n".join(f"- {name}: {FILE_RESPONSIBILITIES[name]}" for name in SUBAGENT_TARGET_FILES)
    baseline = _baseline_section(persisted or {})
    system_prompt = "\n".join(
        [
            "You split an agent configuration into files.",
            f"Only these 5 target files may be produced: {', '.join(SUBAGENT_TARGET_FILES)}.",
            f"Return strict JSON: {DRAFT_OUTPUT_SHAPE}, with no extra text.",
            "confidence must be between 0 and 1.",
        ]
    )
    user_lines = ["Iteration rules (added automatically):", ITERATION_RULES, "", "Draft the files by responsibility:", rules, ""]
    if baseline:
        user_lines += [baseline, ""]
    user_lines += ["User prompt:", prompt.strip()]
    return PromptPayload(system_prompt=system_prompt, user_prompt="\n".join(user_lines))


def extract_chat_send_output(result: Any) -> str | None:
    """Inline model text from a `chat.send` result, or None when the reply must be read from history."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        for key in ("output", "message", "text", "response", "content"):
            value = result.get(key)
            if isinstance(value, str):
                return value
    return None


def _draft_candidates(output: str) -> list[dict[str, Any]]:
    candidates = [output.strip()]
    candidates += fenced_object_candidates(output)
    for m in _FILES_OBJECT.finditer(output):
        frag = extract_balanced_object(output, m.start())
        if frag:
            candidates.append(frag)
    return load_objects(candidates)


def parse_draft_payload(output: str) -> ParsedDraft:
    objs = _draft_candidates(output)
    if not objs:
        raise DraftParseError("Invalid JSON output from model")
    try:
        parsed = DraftOutput.model_validate(objs[0])
    except ValidationError as e:
        raise DraftParseError(f"Invalid output schema: {e.errors()[0].get('msg', e)}") from e
    return ParsedDraft(draft_by_file=parsed.draft_by_file(), role_metadata=parsed.role_metadata)

