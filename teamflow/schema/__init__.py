from .draft import (
    SUBAGENT_TARGET_FILES,
    DraftByFile,
    DraftOutput,
    DraftRoleMetadata,
    PreviewDiffByFile,
    SubagentDraftFile,
)
from .team import (
    TEAM_PHASES,
    RoleMetadataEntry,
    SubagentSummary,
    Team,
    TeamContext,
    TeamMessageKind,
    TeamPhase,
    TeamPlan,
    TeamPlanTask,
    TeamReport,
)

__all__ = [
    "SUBAGENT_TARGET_FILES",
    "TEAM_PHASES",
    "DraftByFile",
    "DraftOutput",
    "DraftRoleMetadata",
    "PreviewDiffByFile",
    "RoleMetadataEntry",
    "SubagentDraftFile",
    "SubagentSummary",
    "Team",
    "TeamContext",
    "TeamMessageKind",
    "TeamPhase",
    "TeamPlan",
    "TeamPlanTask",
    "TeamReport",
]
