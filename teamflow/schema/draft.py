from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from teamflow.utils.line_diff import LineDiffEntry

SubagentTargetFile = Literal["AGENTS.md", "SOUL.md", "TOOLS.md", "IDENTITY.md", "USER.md"]

SUBAGENT_TARGET_FILES: tuple[str, ...] = ("AGENTS.md", "SOUL.md", "TOOLS.md", "IDENTITY.md", "USER.md")

NEEDS_REVIEW_BELOW = 0.6


class SubagentDraftFile(BaseModel):
    name: SubagentTargetFile
    content: str
    reason: str
    confidence: float
    needs_review: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def require_number(cls, v):
        # Numeric strings and booleans are not confidences.
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("confidence must be a number")
        return v

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if math.isnan(v):
            raise ValueError("confidence must be a number")
        return v


class DraftRoleMetadata(BaseModel):
    summary: str
    tags: list[str]

    @field_validator("summary")
    @classmethod
    def validate_summary(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("roleMetadata.summary is required")
        if "```" in v:
            raise ValueError("roleMetadata.summary cannot contain code fences")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v) -> list[str]:
        if not isinstance(v, list):
            raise ValueError("roleMetadata.tags is required")
        seen: list[str] = []
        for t in v:
            if isinstance(t, str) and t.strip() and t.strip() not in seen:
                seen.append(t.strip())
        if not seen:
            raise ValueError("roleMetadata.tags is required")
        return seen[:8]


class DraftOutput(BaseModel):
    """Strict contract for the draft-generation agent output."""

    files: list[SubagentDraftFile]
    role_metadata: DraftRoleMetadata = Field(alias="roleMetadata")

    @field_validator("files", mode="before")
    @classmethod
    def validate_files(cls, files):
        if not isinstance(files, list):
            raise ValueError("files must be an array")
        out = []
        for f in files:
            if isinstance(f, dict):
                f = dict(f)
                f.pop("needs_review", None)
                f.pop("needsReview", None)
            out.append(f)
        return out

    @field_validator("files")
    @classmethod
    def mark_needs_review(cls, files: list[SubagentDraftFile]) -> list[SubagentDraftFile]:
        for f in files:
            f.needs_review = f.confidence < NEEDS_REVIEW_BELOW
        return files

    def draft_by_file(self) -> DraftByFile:
        # Later entries for the same file win.
        return {f.name: f for f in self.files}


DraftByFile = dict[str, SubagentDraftFile]
PreviewDiffByFile = dict[str, list[LineDiffEntry]]
