"""Startup reconciliation of tasks left IN_PROGRESS by a previous run."""

import structlog

from clawup.engine.state_machine import TaskStateMachine
from clawup.models.domain import PRState, PullRequestOptions, Task, TaskStatus
from clawup.providers.base import TaskTracker, VCSProvider

log = structlog.get_logger(__name__)


class CrashRecovery:
    """Reconciles orphaned IN_PROGRESS tasks against the repository.

    A live engine holds the process lock, so any task still IN_PROGRESS at
    startup was interrupted by a crash. Its branch decides what happens:

    - no branch: back to TODO for a clean retry
    - branch without commits ahead of base: branch deleted, full intake
    - branch with commits: pushed, PR reused or created, IN_REVIEW
    """

    def __init__(self, machine: TaskStateMachine):
        self.machine = machine
        self.tracker: TaskTracker = machine.tracker
        self.vcs: VCSProvider = machine.vcs

    async def recover(self) -> bool:
        """Recover every orphaned task.

        Returns:
            True when a recovered task ended with a merge (relaunch needed).
        """
        tasks = await self.tracker.list_tasks_by_status(TaskStatus.IN_PROGRESS)
        if not tasks:
            log.info("recovery_nothing_to_do")
            return False

        log.info("recovery_started", count=len(tasks))
        relaunch = False
        for task in tasks:
            try:
                outcome = await self._recover_task(task)
                relaunch = relaunch or outcome
            except Exception as e:
                log.error("recovery_failed", task_id=task.id, error=str(e), exc_info=True)
                await self._block(task, e)
            finally:
                try:
                    await self.vcs.return_to_base()
                except Exception as e:
                    log.warning("return_to_base_failed", task_id=task.id, error=str(e))

        log.info("recovery_finished", count=len(tasks), relaunch=relaunch)
        return relaunch

    async def _recover_task(self, task: Task) -> bool:
        branch = await self.vcs.find_branch_for_task(task.id)
        if branch is None:
            log.info("recovery_no_branch", task_id=task.id)
            await self.tracker.set_status(task.id, TaskStatus.TODO)
            await self.tracker.add_comment(
                task.id,
                "🔄 Automation restarted - no prior work found. Retrying task.",
            )
            return False

        await self.vcs.sync_base()
        await self.vcs.checkout(branch)
        ahead = await self.vcs.commits_ahead_of_base()

        if ahead == 0:
            log.info("recovery_empty_branch", task_id=task.id, branch=branch)
            await self.vcs.return_to_base()
            await self.vcs.delete_local_branch(branch)
            await self.tracker.add_comment(
                task.id,
                "🔄 Automation restarted - found an empty branch from the previous run. Restarting task.",
            )
            outcome = await self.machine.process_new_task(task)
            return outcome.merged

        log.info("recovery_prior_work", task_id=task.id, branch=branch, commits=ahead)
        if not await self.vcs.branch_is_pushed(branch):
            await self.vcs.push(branch)

        pr_url = await self.tracker.find_linked_pr_url(task.id) or await self.vcs.find_existing_pr(branch)
        state = await self.vcs.pr_state(pr_url) if pr_url else None
        if state is PRState.CLOSED:
            log.info("recovery_closed_pr_replaced", task_id=task.id, pr_url=pr_url)
        if pr_url is None or state is PRState.CLOSED:
            pr_url = await self.vcs.create_pr(
                PullRequestOptions(
                    title=f"[CU-{task.id}] {task.title}",
                    body=self.machine.prompts.pr_body(task, await self.vcs.changed_files()),
                    branch_name=branch,
                    base_branch=self.machine.base_branch,
                )
            )
        elif state is PRState.MERGED:
            await self.tracker.set_status(task.id, TaskStatus.COMPLETED)
            await self.tracker.add_comment(task.id, f"✅ PR was already merged: {pr_url}\n\nMoving task to complete.")
            log.info("recovery_already_merged", task_id=task.id, pr_url=pr_url)
            return False

        await self.tracker.set_status(task.id, TaskStatus.IN_REVIEW)
        await self.tracker.add_comment(
            task.id,
            "🔄 Automation restarted and recovered prior work from the previous run.\n\n"
            f"PR: {pr_url}\n\n"
            "Please review the changes.",
        )
        log.info("recovery_moved_to_review", task_id=task.id, pr_url=pr_url)
        return False

    async def _block(self, task: Task, error: Exception) -> None:
        try:
            await self.tracker.notify_creator(
                task.id,
                task.creator,
                f"❌ Automation could not recover this task after a restart:\n\n```\n{error}\n```",
            )
            await self.tracker.set_status(task.id, TaskStatus.BLOCKED)
        except Exception as e:
            log.error("task_block_failed", task_id=task.id, error=str(e))
