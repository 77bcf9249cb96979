"""
Abstract base classes for the engine's external collaborators.

The engine only talks to the outside world through these three interfaces:

- ``TaskTracker``: the task queue and the comment thread of each task.
- ``VCSProvider``: the local working tree plus the pull request host.
- ``CodingAgent``: the subprocess that edits code.

All methods are async; the engine awaits every call sequentially. Failures
are reported by raising (``TrackerError``, ``GitOperationError``) and are
converted to task status changes at the engine's task boundary. The agent is
the exception: ``CodingAgent.run`` reports failures in its result instead of
raising.
"""

from abc import ABC, abstractmethod

from clawup.models.domain import (
    AgentMode,
    AgentRunResult,
    Comment,
    Mergeability,
    PRState,
    PullRequestOptions,
    ReviewComment,
    ReviewDecision,
    Task,
    TaskCreator,
    TaskStatus,
)


class TaskTracker(ABC):
    """Interface to the external task tracker."""

    @abstractmethod
    async def list_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        """Return tasks in ``status``, highest priority first.

        The engine treats the first returned task as the next to process.
        """

    @abstractmethod
    async def get_task(self, task_id: str) -> Task:
        """Fetch a single task by id."""

    @abstractmethod
    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        """Move a task to ``status``."""

    @abstractmethod
    async def add_comment(self, task_id: str, text: str) -> None:
        """Post a comment visible to everyone following the task."""

    @abstractmethod
    async def notify_creator(self, task_id: str, creator: TaskCreator | None, text: str) -> None:
        """Post a comment addressed to the task creator.

        Falls back to a plain comment when the creator is unknown.
        """

    @abstractmethod
    async def get_comments(self, task_id: str) -> list[Comment]:
        """Return the task's comments, oldest first."""

    @abstractmethod
    async def find_linked_pr_url(self, task_id: str) -> str | None:
        """Scan the task's comments, newest first, for a posted PR URL.

        This is the only persistent link between a task and its pull request.
        """

    @abstractmethod
    async def create_task(self, title: str, description: str | None = None) -> Task:
        """Create a new task in the TODO status."""

    async def validate_statuses(self) -> list[str]:
        """Return configured status names missing from the tracker.

        Default implementation assumes every status exists.
        """
        return []


class VCSProvider(ABC):
    """Interface to the working tree and the pull request host.

    Branch operations act on the single shared working tree; the engine
    serializes them by processing one task at a time.
    """

    @abstractmethod
    async def detect_repo(self) -> str:
        """Return the ``owner/name`` of the hosted repository."""

    @abstractmethod
    async def create_branch(self, task_id: str, slug: str) -> str:
        """Create and check out the task branch from the freshly synced base.

        If a branch for ``task_id`` already exists it is checked out and its
        name returned instead.
        """

    @abstractmethod
    async def find_branch_for_task(self, task_id: str) -> str | None:
        """Find a local or remote branch carrying the task's id marker."""

    @abstractmethod
    async def checkout(self, branch: str) -> None:
        """Check out an existing branch, tracking the remote if needed."""

    @abstractmethod
    async def sync_base(self) -> None:
        """Fetch the base branch and reset the local base ref to the remote tip."""

    @abstractmethod
    async def merge_base_into_current(self) -> bool:
        """Merge the remote base into the current branch.

        Returns:
            True if the merge completed cleanly, False if it stopped on
            conflicts (the merge is left in progress).
        """

    @abstractmethod
    async def conflicted_files(self) -> list[str]:
        """Paths with unmerged entries in the index."""

    @abstractmethod
    async def files_with_conflict_markers(self, paths: list[str]) -> list[str]:
        """Subset of ``paths`` whose working-tree content still has conflict markers."""

    @abstractmethod
    async def abort_merge(self) -> None:
        """Abort an in-progress merge."""

    @abstractmethod
    async def has_uncommitted_changes(self) -> bool:
        """True if the working tree or index differs from HEAD."""

    @abstractmethod
    async def is_working_tree_clean(self) -> bool:
        """True if there are no modifications to tracked files."""

    @abstractmethod
    async def commit(self, message: str, allow_empty: bool = False) -> str:
        """Stage everything and commit. Returns the short hash."""

    @abstractmethod
    async def push(self, branch: str) -> None:
        """Push ``branch`` to the remote, setting upstream."""

    @abstractmethod
    async def head_hash(self) -> str:
        """Full hash of HEAD."""

    @abstractmethod
    async def changed_files(self) -> list[str]:
        """Files changed between the base branch and HEAD."""

    @abstractmethod
    async def commits_ahead_of_base(self) -> int:
        """Number of commits on HEAD that are not on the base branch."""

    @abstractmethod
    async def branch_is_pushed(self, branch: str) -> bool:
        """True if the remote has a ref for ``branch``."""

    @abstractmethod
    async def create_pr(self, opts: PullRequestOptions) -> str:
        """Open a pull request and return its URL."""

    @abstractmethod
    async def find_existing_pr(self, branch: str) -> str | None:
        """URL of the pull request whose head is ``branch``, if any."""

    @abstractmethod
    async def pr_state(self, url: str) -> PRState:
        """Observed state of the pull request."""

    @abstractmethod
    async def pr_mergeability(self, url: str) -> Mergeability:
        """Host-computed mergeability of the pull request."""

    @abstractmethod
    async def mark_ready(self, url: str) -> None:
        """Take the pull request out of draft."""

    @abstractmethod
    async def update_pr(self, url: str, body: str) -> None:
        """Replace the pull request description."""

    @abstractmethod
    async def merge_pr(self, url: str) -> None:
        """Merge the pull request with the configured strategy."""

    @abstractmethod
    async def close_pr(self, url: str) -> None:
        """Close the pull request without merging."""

    @abstractmethod
    async def review_decision(self, url: str) -> ReviewDecision:
        """Aggregate review decision of the pull request."""

    @abstractmethod
    async def review_comments(self, url: str) -> list[ReviewComment]:
        """Top-level review bodies left on the pull request."""

    @abstractmethod
    async def inline_comments(self, url: str) -> list[ReviewComment]:
        """Code-level review comments left on the pull request diff."""

    @abstractmethod
    async def delete_local_branch(self, branch: str) -> None:
        """Delete a local branch. Missing branches are not an error."""

    @abstractmethod
    async def delete_remote_branch(self, branch: str) -> None:
        """Delete a branch on the remote. Missing branches are not an error."""

    @abstractmethod
    async def return_to_base(self) -> None:
        """Discard any dirty state (merge, uncommitted changes) and check out base."""


class CodingAgent(ABC):
    """Interface to the external coding agent."""

    @abstractmethod
    async def run(
        self,
        prompt: str,
        mode: AgentMode,
        allowed_tools: list[str],
        task_id: str | None = None,
    ) -> AgentRunResult:
        """Run the agent once on the working tree.

        The agent may commit directly when it has shell access. Failures
        (non-zero exit, timeout, spawn errors) are reported in the result,
        never raised.
        """
