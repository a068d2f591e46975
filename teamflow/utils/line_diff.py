from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

LineDiffType = Literal["keep", "add", "remove"]

_LINE_BREAK = re.compile(r"\r?\n")


@dataclass(frozen=True)
class LineDiffEntry:
    type: LineDiffType
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "value": self.value}


def split_lines(text: str) -> list[str]:
    if not text:
        return []
    return _LINE_BREAK.split(text)


def build_line_diff(original: str, next_text: str) -> list[LineDiffEntry]:
    """
    Line-level LCS diff of two short documents.

    On a mismatch where dropping the left line keeps the LCS as long as
    dropping the right one, `remove` is emitted before `add`.
    """
    left = split_lines(original)
    right = split_lines(next_text)
    rows, cols = len(left), len(right)

    dp = [[0] * (cols + 1) for _ in range(rows + 1)]
    for i in range(rows - 1, -1, -1):
        for j in range(cols - 1, -1, -1):
            if left[i] == right[j]:
                dp[i][j] = dp[i + 1][j + 1] + 1
            else:
                dp[i][j] = max(dp[i + 1][j], dp[i][j + 1])

    out: list[LineDiffEntry] = []
    i = j = 0
    while i < rows and j < cols:
        if left[i] == right[j]:
            out.append(LineDiffEntry("keep", left[i]))
            i += 1
            j += 1
        elif dp[i + 1][j] >= dp[i][j + 1]:
            out.append(LineDiffEntry("remove", left[i]))
            i += 1
        else:
            out.append(LineDiffEntry("add", right[j]))
            j += 1

    out.extend(LineDiffEntry("remove", line) for line in left[i:])
    out.extend(LineDiffEntry("add", line) for line in right[j:])
    return out


def apply_line_diff(entries: list[LineDiffEntry]) -> list[str]:
    """Replay a diff: the lines of the `next` side, in order."""
    return [e.value for e in entries if e.type != "remove"]
