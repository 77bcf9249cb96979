"""Tests for engine/scheduler.py."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from clawup.engine.scheduler import PollScheduler, RunExit, SchedulerState
from clawup.exceptions import TrackerError
from clawup.models.domain import Task, TaskOutcome, TaskStatus

PR_URL = "https://github.com/acme/widgets/pull/7"


@pytest.fixture
def fake_machine(tracker: AsyncMock, vcs: AsyncMock) -> MagicMock:
    machine = MagicMock()
    machine.tracker = tracker
    machine.vcs = vcs
    machine.process_new_task = AsyncMock(return_value=TaskOutcome(status=TaskStatus.IN_REVIEW))
    machine.process_returning_task = AsyncMock(return_value=TaskOutcome(status=TaskStatus.IN_REVIEW))
    machine.process_approved_task = AsyncMock(return_value=TaskOutcome(status=TaskStatus.COMPLETED, merged=True))
    return machine


@pytest.fixture
def recovery() -> AsyncMock:
    mock = AsyncMock()
    mock.recover.return_value = False
    return mock


@pytest.fixture
def scheduler(settings, fake_machine, recovery) -> PollScheduler:
    return PollScheduler(settings, fake_machine, recovery=recovery)


def queues(tracker: AsyncMock, approved: list[Task], todo: list[Task]) -> None:
    async def list_tasks(status: TaskStatus) -> list[Task]:
        return {TaskStatus.APPROVED: approved, TaskStatus.TODO: todo}.get(status, [])

    tracker.list_tasks_by_status.side_effect = list_tasks


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_fresh_todo_goes_to_intake(self, scheduler, tracker, fake_machine):
        first, second = Task(id="t1", title="First"), Task(id="t2", title="Second")
        queues(tracker, [], [first, second])

        await scheduler.poll_once()

        fake_machine.process_new_task.assert_awaited_once_with(first)
        fake_machine.process_returning_task.assert_not_called()
        assert scheduler.state is SchedulerState.IDLE
        assert not scheduler.relaunch_requested

    @pytest.mark.asyncio
    async def test_todo_with_linked_pr_is_returning(self, scheduler, tracker, fake_machine):
        task = Task(id="t1", title="First")
        queues(tracker, [], [task])
        tracker.find_linked_pr_url.return_value = PR_URL

        await scheduler.poll_once()

        fake_machine.process_returning_task.assert_awaited_once_with(task, PR_URL)
        fake_machine.process_new_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_id_not_looked_up(self, scheduler, tracker, fake_machine):
        task = Task(id="bad id", title="x")
        queues(tracker, [], [task])

        await scheduler.poll_once()

        tracker.find_linked_pr_url.assert_not_called()
        fake_machine.process_new_task.assert_awaited_once_with(task)

    @pytest.mark.asyncio
    async def test_merge_skips_todo_and_requests_relaunch(self, scheduler, tracker, fake_machine):
        approved = [Task(id="a1", title="A"), Task(id="a2", title="B")]
        queues(tracker, approved, [Task(id="t1", title="T")])

        await scheduler.poll_once()

        assert fake_machine.process_approved_task.await_count == 2
        fake_machine.process_new_task.assert_not_called()
        assert scheduler.relaunch_requested

    @pytest.mark.asyncio
    async def test_unmerged_approval_continues_to_todo(self, scheduler, tracker, fake_machine):
        fake_machine.process_approved_task.return_value = TaskOutcome(status=TaskStatus.BLOCKED)
        queues(tracker, [Task(id="a1", title="A")], [Task(id="t1", title="T")])

        await scheduler.poll_once()

        fake_machine.process_new_task.assert_awaited_once()
        assert not scheduler.relaunch_requested

    @pytest.mark.asyncio
    async def test_skipped_while_processing(self, scheduler, tracker):
        scheduler.state = SchedulerState.PROCESSING

        await scheduler.poll_once()

        tracker.list_tasks_by_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_skipped_after_shutdown(self, scheduler, tracker):
        scheduler.request_shutdown()

        await scheduler.poll_once()

        tracker.list_tasks_by_status.assert_not_called()
        assert scheduler.state is SchedulerState.STOPPING

    @pytest.mark.asyncio
    async def test_queue_failure_is_logged_not_raised(self, scheduler, tracker):
        tracker.list_tasks_by_status.side_effect = TrackerError("ClickUp API error", status_code=502)

        await scheduler.poll_once()

        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_shutdown_during_cycle_finishes_current_task(self, scheduler, tracker, fake_machine):
        async def process(task):
            scheduler.request_shutdown()
            return TaskOutcome(status=TaskStatus.BLOCKED)

        fake_machine.process_approved_task.side_effect = process
        queues(tracker, [Task(id="a1", title="A"), Task(id="a2", title="B")], [Task(id="t1", title="T")])

        await scheduler.poll_once()

        assert fake_machine.process_approved_task.await_count == 1
        fake_machine.process_new_task.assert_not_called()
        assert scheduler.state is SchedulerState.STOPPING


class TestRun:
    @pytest.mark.asyncio
    async def test_merge_triggers_relaunch_after_sync(self, scheduler, tracker, vcs, recovery):
        queues(tracker, [Task(id="a1", title="A")], [])

        result = await scheduler.run()

        assert result is RunExit.RELAUNCH
        recovery.recover.assert_awaited_once()
        vcs.sync_base.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_recovery_merge_relaunches_without_polling(self, scheduler, tracker, vcs, recovery):
        recovery.recover.return_value = True

        result = await scheduler.run()

        assert result is RunExit.RELAUNCH
        tracker.list_tasks_by_status.assert_not_called()
        vcs.sync_base.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_stops_loop(self, scheduler, tracker, vcs, fake_machine):
        async def process(task):
            scheduler.request_shutdown()
            return TaskOutcome(status=TaskStatus.IN_REVIEW)

        fake_machine.process_new_task.side_effect = process
        queues(tracker, [], [Task(id="t1", title="T")])

        result = await scheduler.run()

        assert result is RunExit.STOP
        vcs.sync_base.assert_not_called()

    @pytest.mark.asyncio
    async def test_relaunch_interval_elapsed(self, settings, fake_machine, recovery, tracker, vcs):
        settings.workflow.relaunch_interval_seconds = 60
        ticks = iter([0.0, 30.0, 61.0])
        scheduler = PollScheduler(settings, fake_machine, recovery=recovery, clock=lambda: next(ticks))
        scheduler._sleep = AsyncMock()

        result = await scheduler.run()

        assert result is RunExit.RELAUNCH
        assert tracker.list_tasks_by_status.await_count == 4
        scheduler._sleep.assert_awaited_once_with(30.0)
        vcs.sync_base.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_failure_still_relaunches(self, scheduler, vcs, recovery):
        recovery.recover.return_value = True
        vcs.sync_base.side_effect = RuntimeError("network down")

        assert await scheduler.run() is RunExit.RELAUNCH

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_shutdown(self, scheduler):
        scheduler.request_shutdown()

        await scheduler._sleep(3600)

        assert scheduler.shutdown.is_set()
