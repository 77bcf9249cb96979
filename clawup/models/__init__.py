"""Domain models for clawup."""

from clawup.models.domain import (
    AgentMode,
    AgentRunResult,
    Checklist,
    ChecklistItem,
    Comment,
    FollowUpItem,
    LockRecord,
    Mergeability,
    PRState,
    PullRequestOptions,
    ReviewComment,
    ReviewDecision,
    Task,
    TaskCreator,
    TaskOutcome,
    TaskStatus,
)

__all__ = [
    "AgentMode",
    "AgentRunResult",
    "Checklist",
    "ChecklistItem",
    "Comment",
    "FollowUpItem",
    "LockRecord",
    "Mergeability",
    "PRState",
    "PullRequestOptions",
    "ReviewComment",
    "ReviewDecision",
    "Task",
    "TaskCreator",
    "TaskOutcome",
    "TaskStatus",
]
