"""
Merge-conflict resolution for task branches.

The resolver merges the remote base into a task branch. A clean merge is
pushed immediately. On conflict the coding agent is given exactly the
conflicted paths, and the result is verified before anything is pushed:

1. Resync base, check out the branch, merge base into it.
2. On conflict, post a notice listing the files and run the agent.
3. Compare HEAD before and after to learn whether the agent committed,
   then drain the follow-up file.
4. A failed agent run that did not commit aborts the merge. Conflict
   markers left in any file make the resolution fail; the merge is
   aborted only if the agent made no commit, otherwise the partial state
   stays on the branch for manual inspection.
5. A clean resolution the agent did not commit is committed here, then
   pushed.

Every exit returns the working tree to the base branch. A failure there is
logged and never replaces the original outcome or exception.
"""

from dataclasses import dataclass, field

import structlog

from clawup.engine.todo_sink import TodoSink
from clawup.models.domain import AgentMode, Task
from clawup.providers.base import CodingAgent, TaskTracker, VCSProvider
from clawup.rendering.prompts import PromptBuilder

log = structlog.get_logger(__name__)


@dataclass
class ConflictResolution:
    """Outcome of bringing a branch up to date with base.

    Attributes:
        success: Branch is merged with base, marker-free and pushed.
        conflicted_files: Paths that conflicted in the merge.
        remaining_files: Paths still carrying conflict markers on failure.
        agent_invoked: Whether the coding agent was run.
        error: Agent error text when the agent run itself failed.
    """

    success: bool
    conflicted_files: list[str] = field(default_factory=list)
    remaining_files: list[str] = field(default_factory=list)
    agent_invoked: bool = False
    error: str | None = None

    def describe_failure(self, help_url: str | None = None) -> str:
        """Tracker comment text explaining an unresolved conflict."""
        files = self.remaining_files or self.conflicted_files
        lines = ["❌ Automation could not resolve merge conflicts automatically."]
        if self.error:
            lines.extend(["", f"Error: `{self.error}`"])
        if files:
            lines.extend(["", "Files with unresolved conflicts:"])
            lines.extend(f"- `{path}`" for path in files)
        lines.extend(["", "Please resolve the conflicts manually and move the task back when done."])
        if help_url:
            lines.append(f"Guide: {help_url}")
        return "\n".join(lines)


class ConflictResolver:
    """Merges base into task branches, delegating conflicts to the agent."""

    def __init__(
        self,
        tracker: TaskTracker,
        vcs: VCSProvider,
        agent: CodingAgent,
        prompts: PromptBuilder,
        todo_sink: TodoSink,
        allowed_tools: list[str],
        base_branch: str = "main",
    ):
        self.tracker = tracker
        self.vcs = vcs
        self.agent = agent
        self.prompts = prompts
        self.todo_sink = todo_sink
        self.allowed_tools = allowed_tools
        self.base_branch = base_branch

    async def resolve(self, task: Task, branch: str) -> ConflictResolution:
        """Bring ``branch`` in sync with base and push it.

        Raises:
            ClawupError: Collaborator failures propagate after the working
                tree has been returned to base.
        """
        try:
            return await self._resolve(task, branch)
        finally:
            try:
                await self.vcs.return_to_base()
            except Exception as e:
                log.warning("return_to_base_failed", task_id=task.id, branch=branch, error=str(e))

    async def _resolve(self, task: Task, branch: str) -> ConflictResolution:
        log.info("conflict_resolution_started", task_id=task.id, branch=branch)
        await self.vcs.sync_base()
        await self.vcs.checkout(branch)

        if await self.vcs.merge_base_into_current():
            await self.vcs.push(branch)
            log.info("branch_synced", task_id=task.id, branch=branch)
            return ConflictResolution(success=True)

        files = await self.vcs.conflicted_files()
        log.warning("merge_conflicts_found", task_id=task.id, branch=branch, files=files)
        await self.tracker.add_comment(
            task.id,
            f"🔀 PR has merge conflicts with `{self.base_branch}`. Automation is attempting to resolve them.\n\n"
            + "\n".join(f"- `{path}`" for path in files),
        )

        head_before = await self.vcs.head_hash()
        result = await self.agent.run(
            self.prompts.conflict_prompt(branch, files),
            AgentMode.CONTINUATION,
            self.allowed_tools,
            task_id=task.id,
        )
        agent_committed = head_before != await self.vcs.head_hash()
        await self.todo_sink.drain()

        if not result.success:
            log.error(
                "conflict_agent_failed",
                task_id=task.id,
                agent_committed=agent_committed,
                error=result.error,
                needs_input=result.needs_input,
            )
            if not agent_committed:
                await self.vcs.abort_merge()
            return ConflictResolution(
                success=False,
                conflicted_files=files,
                remaining_files=files,
                agent_invoked=True,
                error=result.error or "The coding agent could not resolve the conflicts",
            )

        unmerged = await self.vcs.conflicted_files()
        remaining = await self.vcs.files_with_conflict_markers(sorted(set(files) | set(unmerged)))
        if remaining:
            log.error("conflict_markers_remain", task_id=task.id, files=remaining, agent_committed=agent_committed)
            if not agent_committed:
                await self.vcs.abort_merge()
            return ConflictResolution(
                success=False,
                conflicted_files=files,
                remaining_files=remaining,
                agent_invoked=True,
            )

        if not agent_committed:
            await self.vcs.commit(f"Merge {self.base_branch} into {branch}")

        await self.vcs.push(branch)
        log.info("conflicts_resolved", task_id=task.id, branch=branch, files=files)
        return ConflictResolution(success=True, conflicted_files=files, agent_invoked=True)
