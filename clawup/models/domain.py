"""
Domain models for the task orchestration engine.

These dataclasses and enums are the normalized internal representation of
tracker tasks, comments, pull requests and agent runs. Provider clients
convert their wire formats into these models; the engine never sees raw
tracker or host payloads.

Status is the only durable state and it lives in the tracker. Nothing in
this module is persisted locally except ``LockRecord``.

Example:
    Creating a task from tracker data::

        task = Task(
            id="86afmf42h",
            title="Add login page",
            description="Users need to be able to sign in",
            url="https://app.clickup.com/t/86afmf42h",
            status=TaskStatus.TODO,
            creator=TaskCreator(id=42, username="jdoe"),
        )
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Lifecycle status of a tracker task.

    The typical happy path is:
    TODO -> IN_PROGRESS -> IN_REVIEW -> APPROVED -> COMPLETED

    The tracker's display names for these values are configurable; providers
    map between display names and these members.
    """

    TODO = "todo"
    """Waiting to be picked up (fresh or returning)."""

    IN_PROGRESS = "in_progress"
    """An engine instance is working on the task."""

    IN_REVIEW = "in_review"
    """Pull request ready, waiting for a reviewer to approve."""

    REQUIRE_INPUT = "require_input"
    """The agent needs more information from the task creator."""

    BLOCKED = "blocked"
    """Processing failed and requires human attention."""

    APPROVED = "approved"
    """Reviewer approved; the engine will merge the pull request."""

    COMPLETED = "completed"
    """Pull request merged."""


class PRState(str, Enum):
    """Observed pull request state."""

    OPEN = "open"
    DRAFT = "draft"
    CLOSED = "closed"
    MERGED = "merged"


class Mergeability(str, Enum):
    """Host-computed predicate on whether a pull request merges cleanly."""

    MERGEABLE = "MERGEABLE"
    CONFLICTING = "CONFLICTING"
    UNKNOWN = "UNKNOWN"


class ReviewDecision(str, Enum):
    """Aggregate review decision reported by the PR host."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    NONE = "NONE"


class AgentMode(str, Enum):
    """How the coding agent is asked to approach a task."""

    FRESH = "fresh"
    """First implementation attempt on a new branch."""

    CONTINUATION = "continuation"
    """Continue work on an existing branch with no new feedback."""

    REVIEW_FEEDBACK = "review_feedback"
    """Address reviewer feedback on an existing pull request."""


@dataclass
class TaskCreator:
    """Identity of the user who created a task."""

    id: int | str
    username: str | None = None


@dataclass
class ChecklistItem:
    name: str
    resolved: bool = False


@dataclass
class Checklist:
    """A named checklist attached to a task."""

    name: str
    items: list[ChecklistItem] = field(default_factory=list)


@dataclass
class Task:
    """A unit of requested work tracked by the external tracker.

    ``id`` is opaque and tracker-assigned; it must pass
    :func:`clawup.utils.text.is_valid_task_id` before it is used in a branch
    name or any subprocess argument.
    """

    id: str
    title: str
    description: str = ""
    url: str = ""
    status: TaskStatus | None = None
    creator: TaskCreator | None = None
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    checklists: list[Checklist] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass
class Comment:
    """A comment on a tracker task, oldest first when listed."""

    id: str
    text: str
    author: str | None = None
    created_at: datetime | None = None


@dataclass
class ReviewComment:
    """A pull request review or inline code comment.

    Inline comments carry the ``path`` (and ``line`` when known) they were
    left on; top-level reviews leave both as None.
    """

    author: str
    body: str
    created_at: datetime | None = None
    path: str | None = None
    line: int | None = None

    @property
    def location(self) -> str | None:
        """Return ``path:line`` for inline comments, ``path`` if no line."""
        if self.path is None:
            return None
        return f"{self.path}:{self.line}" if self.line else self.path


@dataclass
class PullRequestOptions:
    """Arguments for opening a pull request."""

    title: str
    body: str
    branch_name: str
    base_branch: str | None = None
    draft: bool = False


@dataclass
class AgentRunResult:
    """Outcome of one coding-agent invocation. Consumed immediately."""

    success: bool
    output: str = ""
    needs_input: bool = False
    error: str | None = None


@dataclass
class FollowUpItem:
    """Work discovered mid-task, deferred into a new tracker task."""

    title: str
    description: str | None = None


@dataclass
class TaskOutcome:
    """Result of processing one task through the state machine.

    Attributes:
        status: Status the task was moved to, or None when the task was
            skipped without any mutation.
        merged: True when a pull request was merged during processing,
            which requests a relaunch against the new base.
    """

    status: TaskStatus | None = None
    merged: bool = False

    @classmethod
    def skipped(cls) -> "TaskOutcome":
        return cls()


@dataclass
class LockRecord:
    """Contents of the workspace lock file."""

    pid: int
    started_at: str

    def to_json(self) -> str:
        return json.dumps({"pid": self.pid, "startedAt": self.started_at})

    @classmethod
    def from_json(cls, raw: str) -> "LockRecord":
        """Parse lock file content.

        Raises:
            ValueError: If the content is not a JSON object with an integer pid.
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("lock content is not an object")
        pid = data.get("pid")
        if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
            raise ValueError(f"invalid pid in lock: {pid!r}")
        return cls(pid=pid, started_at=str(data.get("startedAt", "")))
