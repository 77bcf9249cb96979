"""
Per-task lifecycle: intake, continuation and merge.

Task status in the tracker is the state variable. Every decision is derived
from the status, the task's comments and what exists in the repository
(task branch, pull request), so each entry point can be re-run after a crash.

Entry points:
    process_new_task: TODO task with no pull request yet.
    process_returning_task: TODO task that already has a linked PR.
    process_approved_task: APPROVED task whose PR should be merged.

Agent outcomes:
    needs input             -> REQUIRE_INPUT
    failure with changes    -> partial work pushed, BLOCKED
    failure without changes -> BLOCKED
    success without changes -> REQUIRE_INPUT
    success with changes    -> PR updated and ready, IN_REVIEW or merged

For a fresh intake a discarded attempt closes the draft PR and deletes the
branch. A returning task's branch and PR carry reviewed work and are kept.

Collaborator exceptions are caught at the task boundary: the creator is
notified with the error text and the task is set BLOCKED. Every path ends by
returning the working tree to base and draining the follow-up file.
"""

import structlog

from clawup.config.settings import ClawupSettings
from clawup.engine.conflict_resolver import ConflictResolver
from clawup.engine.feedback import build_review_feedback, new_feedback_comments
from clawup.engine.todo_sink import TodoSink
from clawup.models.domain import (
    AgentMode,
    AgentRunResult,
    Mergeability,
    PRState,
    PullRequestOptions,
    Task,
    TaskOutcome,
    TaskStatus,
)
from clawup.providers.base import CodingAgent, TaskTracker, VCSProvider
from clawup.providers.claude_agent import extract_needs_input_reason
from clawup.rendering.prompts import PromptBuilder
from clawup.utils.text import generate_commit_message, generate_work_summary, is_valid_task_id, slugify

log = structlog.get_logger(__name__)


class TaskStateMachine:
    """Drives a single task through one step of its lifecycle.

    Attributes:
        tracker: Task tracker client.
        vcs: Working tree and pull request host.
        agent: Coding agent.
        prompts: Prompt and PR body builder.
        todo_sink: Follow-up file drain.
        resolver: Conflict resolver for syncing branches with base.
    """

    def __init__(
        self,
        settings: ClawupSettings,
        tracker: TaskTracker,
        vcs: VCSProvider,
        agent: CodingAgent,
        prompts: PromptBuilder | None = None,
        todo_sink: TodoSink | None = None,
        resolver: ConflictResolver | None = None,
    ) -> None:
        self.settings = settings
        self.tracker = tracker
        self.vcs = vcs
        self.agent = agent
        self.base_branch = settings.git.base_branch
        self.allowed_tools = settings.agent.effective_tools
        self.prompts = prompts or PromptBuilder(
            settings.project_root,
            base_branch=self.base_branch,
            todo_file=settings.workflow.todo_file,
            custom_prompt=settings.agent.prompt,
        )
        self.todo_sink = todo_sink or TodoSink(settings.todo_path, tracker)
        self.resolver = resolver or ConflictResolver(
            tracker,
            vcs,
            agent,
            self.prompts,
            self.todo_sink,
            self.allowed_tools,
            base_branch=self.base_branch,
        )

    def _status_name(self, status: TaskStatus) -> str:
        return self.settings.statuses.name_for(status)

    async def _set_status(self, task: Task, status: TaskStatus) -> TaskOutcome:
        await self.tracker.set_status(task.id, status)
        log.info("task_status_changed", task_id=task.id, status=status.value)
        return TaskOutcome(status=status)

    async def process_new_task(self, task: Task) -> TaskOutcome:
        """Intake a TODO task: branch, draft PR, agent run, outcome handling."""
        if not is_valid_task_id(task.id):
            log.error("invalid_task_id", task_id=task.id)
            return TaskOutcome.skipped()

        log.info("task_intake", task_id=task.id, title=task.title, url=task.url)
        branch: str | None = None
        pr_url: str | None = None
        agent_started = False
        try:
            await self.tracker.set_status(task.id, TaskStatus.IN_PROGRESS)
            branch = await self.vcs.create_branch(task.id, slugify(task.title))

            pr_url = await self.vcs.find_existing_pr(branch)
            if pr_url:
                state = await self.vcs.pr_state(pr_url)
                if state is PRState.MERGED:
                    return await self._record_already_merged(task, pr_url)
                if state is PRState.CLOSED:
                    log.info("closed_pr_ignored", task_id=task.id, pr_url=pr_url)
                    pr_url = None
                else:
                    log.info("pr_reused", task_id=task.id, pr_url=pr_url)

            if pr_url is None:
                await self.vcs.commit(f"[CU-{task.id}] Starting work on: {task.title}", allow_empty=True)
                await self.vcs.push(branch)
                pr_url = await self.vcs.create_pr(
                    PullRequestOptions(
                        title=f"[CU-{task.id}] {task.title}",
                        body=self.prompts.draft_pr_body(task),
                        branch_name=branch,
                        base_branch=self.base_branch,
                        draft=True,
                    )
                )

            await self.tracker.add_comment(
                task.id,
                f"🤖 Automation picked up this task and is now working on it.\n\nPR: {pr_url}",
            )

            comments = await self.tracker.get_comments(task.id)
            prompt = self.prompts.task_prompt(task, comments, AgentMode.FRESH)
            agent_started = True
            return await self._run_agent(task, branch, pr_url, prompt, AgentMode.FRESH, returning=False)
        except Exception as e:
            return await self._handle_task_error(task, e, pr_url, discard_branch=branch if not agent_started else None)
        finally:
            await self._cleanup(task)

    async def process_returning_task(self, task: Task, pr_url: str) -> TaskOutcome:
        """Continue a TODO task that already has a pull request."""
        if not is_valid_task_id(task.id):
            log.error("invalid_task_id", task_id=task.id)
            return TaskOutcome.skipped()

        log.info("task_returning", task_id=task.id, pr_url=pr_url)
        try:
            state = await self.vcs.pr_state(pr_url)
            if state is PRState.MERGED:
                return await self._record_already_merged(task, pr_url)
            if state is not PRState.CLOSED:
                return await self._continue_task(task, pr_url)
        except Exception as e:
            return await self._handle_task_error(task, e, pr_url)
        finally:
            await self._cleanup(task)

        log.info("pr_closed_restarting", task_id=task.id, pr_url=pr_url)
        return await self.process_new_task(task)

    async def process_approved_task(self, task: Task) -> TaskOutcome:
        """Merge the PR of an APPROVED task."""
        if not is_valid_task_id(task.id):
            log.error("invalid_task_id", task_id=task.id)
            return TaskOutcome.skipped()

        log.info("task_approved", task_id=task.id)
        pr_url: str | None = None
        try:
            pr_url = await self.tracker.find_linked_pr_url(task.id)
            if not pr_url:
                await self.tracker.notify_creator(
                    task.id,
                    task.creator,
                    "⚠️ Automation could not find a pull request URL in this task's comments.\n\n"
                    "Please add a comment with the PR URL and move the task back to "
                    f'"{self._status_name(TaskStatus.APPROVED)}".',
                )
                return await self._set_status(task, TaskStatus.BLOCKED)
            return await self._merge(task, pr_url)
        except Exception as e:
            return await self._handle_task_error(task, e, pr_url)
        finally:
            await self._cleanup(task)

    async def _continue_task(self, task: Task, pr_url: str) -> TaskOutcome:
        await self.tracker.set_status(task.id, TaskStatus.IN_PROGRESS)

        branch = await self.vcs.find_branch_for_task(task.id)
        if branch is None:
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                f"❌ Automation could not find the branch for this task's pull request:\n{pr_url}",
            )
            return await self._set_status(task, TaskStatus.BLOCKED)

        resolution = await self.resolver.resolve(task, branch)
        if not resolution.success:
            await self.tracker.notify_creator(
                task.id, task.creator, resolution.describe_failure(self.settings.workflow.conflict_help_url)
            )
            return await self._set_status(task, TaskStatus.BLOCKED)

        # the resolver leaves the tree on base
        await self.vcs.checkout(branch)

        decision = await self.vcs.review_decision(pr_url)
        reviews = await self.vcs.review_comments(pr_url)
        inline = await self.vcs.inline_comments(pr_url)
        comments = await self.tracker.get_comments(task.id)
        feedback = build_review_feedback(decision, reviews, inline, new_feedback_comments(comments))

        mode = AgentMode.REVIEW_FEEDBACK if feedback else AgentMode.CONTINUATION
        log.info("task_continuation", task_id=task.id, mode=mode.value, review_decision=decision.value)
        activity = "addressing review feedback" if feedback else "continuing work"
        await self.tracker.add_comment(task.id, f"🤖 Automation is {activity} on this task.\n\nPR: {pr_url}")

        prompt = self.prompts.task_prompt(task, comments, mode, feedback)
        return await self._run_agent(task, branch, pr_url, prompt, mode, returning=True)

    async def _run_agent(
        self,
        task: Task,
        branch: str,
        pr_url: str,
        prompt: str,
        mode: AgentMode,
        returning: bool,
    ) -> TaskOutcome:
        head_before = await self.vcs.head_hash()
        result = await self.agent.run(prompt, mode, self.allowed_tools, task_id=task.id)
        agent_committed = head_before != await self.vcs.head_hash()

        # before any fallback commit could capture the follow-up file
        await self.todo_sink.drain()
        uncommitted = await self.vcs.has_uncommitted_changes()

        log.info(
            "agent_finished",
            task_id=task.id,
            success=result.success,
            needs_input=result.needs_input,
            agent_committed=agent_committed,
            uncommitted=uncommitted,
        )

        if result.needs_input:
            return await self._handle_needs_input(task, branch, pr_url, result, returning)
        if not result.success:
            return await self._handle_agent_failure(
                task, branch, pr_url, result, agent_committed, uncommitted, returning
            )
        if not agent_committed and not uncommitted:
            return await self._handle_no_changes(task, branch, pr_url, returning)
        return await self._handle_success(task, branch, pr_url, result, uncommitted)

    async def _handle_needs_input(
        self,
        task: Task,
        branch: str,
        pr_url: str,
        result: AgentRunResult,
        returning: bool,
    ) -> TaskOutcome:
        reason = extract_needs_input_reason(result.output)
        log.info("task_needs_input", task_id=task.id, reason=reason)
        await self.tracker.notify_creator(
            task.id,
            task.creator,
            f"🔍 Automation needs more information to complete this task:\n\n{reason}\n\n"
            f'Please add the requested details and move this task back to "{self._status_name(TaskStatus.TODO)}" '
            "to retry.",
        )
        outcome = await self._set_status(task, TaskStatus.REQUIRE_INPUT)
        if not returning:
            await self._discard(task, branch, pr_url)
        return outcome

    async def _handle_agent_failure(
        self,
        task: Task,
        branch: str,
        pr_url: str,
        result: AgentRunResult,
        agent_committed: bool,
        uncommitted: bool,
        returning: bool,
    ) -> TaskOutcome:
        error = result.error or "Unknown error"
        log.error("agent_failed", task_id=task.id, error=error)

        if agent_committed or uncommitted:
            if uncommitted:
                await self.vcs.commit(f"[CU-{task.id}] WIP: {task.title} (partial, automation error)")
            await self.vcs.push(branch)
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                "⚠️ Automation encountered an error but made partial changes.\n\n"
                f"Error: `{error}`\n\n"
                "Partial changes have been pushed to the PR for manual review.\n"
                f"PR: {pr_url}\n"
                "Please complete the work manually or provide more details and retry.",
            )
        else:
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                f"❌ Automation encountered an error:\n\n```\n{error}\n```\n\n"
                f'The task has been moved to "{self._status_name(TaskStatus.BLOCKED)}". '
                "Please investigate and retry.",
            )
            if not returning:
                await self._discard(task, branch, pr_url)

        return await self._set_status(task, TaskStatus.BLOCKED)

    async def _handle_no_changes(self, task: Task, branch: str, pr_url: str, returning: bool) -> TaskOutcome:
        log.warning("agent_no_changes", task_id=task.id, returning=returning)
        if returning:
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                "⚠️ Automation finished but produced no new changes on the pull request.\n\n"
                f"PR: {pr_url}\n\n"
                "If further changes are needed, please leave more specific feedback and move the task back to "
                f'"{self._status_name(TaskStatus.TODO)}". If the PR is complete as it is, move the task to '
                f'"{self._status_name(TaskStatus.APPROVED)}".',
            )
            return await self._set_status(task, TaskStatus.REQUIRE_INPUT)

        await self.tracker.notify_creator(
            task.id,
            task.creator,
            "⚠️ Automation completed but no code changes were produced. This may mean:\n"
            "- The task was already done\n"
            "- The task description wasn't actionable\n"
            "- The agent couldn't determine what changes to make\n\n"
            "Please review and provide more specific instructions if needed.",
        )
        outcome = await self._set_status(task, TaskStatus.REQUIRE_INPUT)
        await self._discard(task, branch, pr_url)
        return outcome

    async def _handle_success(
        self,
        task: Task,
        branch: str,
        pr_url: str,
        result: AgentRunResult,
        uncommitted: bool,
    ) -> TaskOutcome:
        if uncommitted:
            await self.vcs.commit(generate_commit_message(task.id, task.title, result.output))
        await self.vcs.push(branch)

        files = await self.vcs.changed_files()
        await self.vcs.update_pr(pr_url, self.prompts.pr_body(task, files))
        if await self.vcs.pr_state(pr_url) is PRState.DRAFT:
            await self.vcs.mark_ready(pr_url)

        if self.settings.workflow.auto_approve:
            log.info("auto_approve_merge", task_id=task.id, pr_url=pr_url)
            return await self._merge(task, pr_url)

        outcome = await self._set_status(task, TaskStatus.IN_REVIEW)
        summary = generate_work_summary(result.output, files)
        await self.tracker.add_comment(
            task.id,
            "✅ Automation completed! The pull request is ready for review:\n\n"
            f"{pr_url}\n\n"
            f"Branch: `{branch}`\n"
            f"Files changed: {len(files)}\n\n"
            + (f"{summary}\n\n" if summary else "")
            + f'Please review the PR. When ready, move this task to "{self._status_name(TaskStatus.APPROVED)}" '
            "and the automation will merge it.",
        )
        log.info("task_ready_for_review", task_id=task.id, pr_url=pr_url, files=len(files))
        return outcome

    async def _merge(self, task: Task, pr_url: str) -> TaskOutcome:
        state = await self.vcs.pr_state(pr_url)
        if state is PRState.MERGED:
            return await self._record_already_merged(task, pr_url)
        if state is PRState.DRAFT:
            await self.vcs.mark_ready(pr_url)
        elif state is not PRState.OPEN:
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                f'⚠️ Automation expected the pull request to be open but it is "{state.value}":\n{pr_url}\n\n'
                f'Please check the PR and move the task back to "{self._status_name(TaskStatus.APPROVED)}" '
                "when it is ready.",
            )
            return await self._set_status(task, TaskStatus.BLOCKED)

        if await self.vcs.pr_mergeability(pr_url) is Mergeability.CONFLICTING:
            branch = await self.vcs.find_branch_for_task(task.id)
            if branch is None:
                await self.tracker.notify_creator(
                    task.id,
                    task.creator,
                    f"❌ Automation found merge conflicts on {pr_url} but could not find the task branch.",
                )
                return await self._set_status(task, TaskStatus.BLOCKED)

            resolution = await self.resolver.resolve(task, branch)
            if not resolution.success:
                await self.tracker.notify_creator(
                    task.id, task.creator, resolution.describe_failure(self.settings.workflow.conflict_help_url)
                )
                return await self._set_status(task, TaskStatus.BLOCKED)

        await self.vcs.merge_pr(pr_url)
        await self.tracker.set_status(task.id, TaskStatus.COMPLETED)
        await self.tracker.add_comment(task.id, f"✅ PR merged successfully: {pr_url}\n\nTask complete.")
        log.info("task_merged", task_id=task.id, pr_url=pr_url)
        return TaskOutcome(status=TaskStatus.COMPLETED, merged=True)

    async def _record_already_merged(self, task: Task, pr_url: str) -> TaskOutcome:
        log.info("pr_already_merged", task_id=task.id, pr_url=pr_url)
        await self.tracker.add_comment(task.id, f"✅ PR was already merged: {pr_url}\n\nMoving task to complete.")
        return await self._set_status(task, TaskStatus.COMPLETED)

    async def _discard(self, task: Task, branch: str, pr_url: str | None) -> None:
        """Close the PR and delete the branch locally and on the remote.

        Best-effort: failures are logged and the task keeps the status it
        was already given.
        """
        if pr_url:
            try:
                await self.vcs.close_pr(pr_url)
            except Exception as e:
                log.warning("pr_close_failed", task_id=task.id, pr_url=pr_url, error=str(e))
        try:
            await self.vcs.return_to_base()
            await self.vcs.delete_local_branch(branch)
            await self.vcs.delete_remote_branch(branch)
        except Exception as e:
            log.warning("branch_cleanup_failed", task_id=task.id, branch=branch, error=str(e))

    async def _handle_task_error(
        self,
        task: Task,
        error: Exception,
        pr_url: str | None,
        discard_branch: str | None = None,
    ) -> TaskOutcome:
        log.error("task_processing_failed", task_id=task.id, error=str(error), exc_info=True)
        try:
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                f"❌ Automation encountered an error:\n\n```\n{error}\n```\n\n"
                f'The task has been moved to "{self._status_name(TaskStatus.BLOCKED)}". Please investigate and retry.'
                + (f"\n\nPR: {pr_url}" if pr_url else ""),
            )
            await self.tracker.set_status(task.id, TaskStatus.BLOCKED)
        except Exception as e:
            log.error("task_block_failed", task_id=task.id, error=str(e))

        if discard_branch:
            await self._discard(task, discard_branch, pr_url)
        return TaskOutcome(status=TaskStatus.BLOCKED)

    async def _cleanup(self, task: Task) -> None:
        try:
            await self.vcs.return_to_base()
        except Exception as e:
            log.warning("return_to_base_failed", task_id=task.id, error=str(e))
        try:
            await self.todo_sink.drain()
        except Exception as e:
            log.warning("follow_up_drain_failed", task_id=task.id, error=str(e))
