from __future__ import annotations

import json
import re
from typing import Any

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```", flags=re.IGNORECASE)


def extract_balanced_object(s: str, start_idx: int) -> str | None:
    """
    Return the smallest substring starting at start_idx that forms a balanced JSON object.
    Handles strings/escapes so braces inside strings don't count.
    """
    if start_idx < 0 or start_idx >= len(s) or s[start_idx] != "{":
        return None
    depth = 0
    in_str = False
    esc = False
    for j in range(start_idx, len(s)):
        ch = s[j]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return s[start_idx : j + 1]
    return None


def fenced_object_candidates(text: str) -> list[str]:
    out: list[str] = []
    for m in _FENCED.finditer(text):
        block = (m.group(1) or "").strip()
        frag = extract_balanced_object(block, block.find("{"))
        if frag:
            out.append(frag)
    return out


def labelled_object_candidates(text: str, labels: list[str]) -> list[str]:
    """Objects that follow `LABEL:` markers, in label order then position order."""
    out: list[str] = []
    for label in labels:
        for m in re.finditer(rf"{label}\s*:\s*", text, flags=re.IGNORECASE):
            frag = extract_balanced_object(text, text.find("{", m.end()))
            if frag:
                out.append(frag)
    return out


def first_object_candidate(text: str) -> str | None:
    return extract_balanced_object(text, text.find("{"))


def load_objects(candidates: list[str]) -> list[dict[str, Any]]:
    """Decode every candidate that parses to a JSON object; malformed ones are skipped."""
    objs: list[dict[str, Any]] = []
    for frag in candidates:
        try:
            obj = json.loads(frag)
        except ValueError:
            continue
        if isinstance(obj, dict):
            objs.append(obj)
    return objs
