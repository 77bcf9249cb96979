"""
Poll loop that feeds tracker queues into the task state machine.

One cycle drains the APPROVED queue, then takes at most one TODO task. A
cycle never overlaps another and a shutdown request is honored only between
tasks, so an in-flight task always reaches its cleanup stage.

A successful merge changes the base branch under every other open task, so
it requests a relaunch: the TODO queue is skipped for that cycle, the base is
resynced and ``run()`` returns ``RunExit.RELAUNCH`` for the caller to restart
the process. The same happens when ``relaunch_interval_seconds`` elapses.
"""

import asyncio
import time
from collections.abc import Callable
from enum import Enum

import structlog

from clawup.config.settings import ClawupSettings
from clawup.engine.recovery import CrashRecovery
from clawup.engine.state_machine import TaskStateMachine
from clawup.models.domain import TaskOutcome, TaskStatus
from clawup.utils.text import is_valid_task_id

log = structlog.get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPING = "stopping"


class RunExit(str, Enum):
    """Why ``PollScheduler.run`` returned."""

    STOP = "stop"
    RELAUNCH = "relaunch"


class PollScheduler:
    """Single-flight scheduler around a ``TaskStateMachine``.

    Attributes:
        state: Current scheduler state.
        shutdown: Set once a shutdown has been requested.
        relaunch_requested: Set after a merge or when the relaunch interval
            has elapsed.
    """

    def __init__(
        self,
        settings: ClawupSettings,
        machine: TaskStateMachine,
        recovery: CrashRecovery | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.machine = machine
        self.tracker = machine.tracker
        self.recovery = recovery or CrashRecovery(machine)
        self.clock = clock
        self.poll_interval = settings.workflow.poll_interval_seconds
        self.relaunch_interval = settings.workflow.relaunch_interval_seconds

        self.state = SchedulerState.IDLE
        self.shutdown = asyncio.Event()
        self.relaunch_requested = False

    def request_shutdown(self) -> None:
        """Stop after the current task; safe to call from a signal handler."""
        if not self.shutdown.is_set():
            log.info("shutdown_requested", state=self.state.value)
        self.shutdown.set()
        if self.state is SchedulerState.IDLE:
            self.state = SchedulerState.STOPPING

    async def poll_once(self) -> None:
        """Run one cycle unless a cycle is in flight or shutdown was requested."""
        if self.state is not SchedulerState.IDLE or self.shutdown.is_set():
            log.debug("poll_skipped", state=self.state.value)
            return

        self.state = SchedulerState.PROCESSING
        try:
            await self._process_approved()
            if self.relaunch_requested:
                log.info("todo_queue_skipped", reason="relaunch_requested")
            elif not self.shutdown.is_set():
                await self._process_next_todo()
        except Exception as e:
            # task errors are handled by the state machine; this is a queue read failure
            log.error("poll_failed", error=str(e), exc_info=True)
        finally:
            self.state = SchedulerState.STOPPING if self.shutdown.is_set() else SchedulerState.IDLE

    async def _process_approved(self) -> None:
        tasks = await self.tracker.list_tasks_by_status(TaskStatus.APPROVED)
        if tasks:
            log.info("approved_tasks_found", count=len(tasks))
        for task in tasks:
            if self.shutdown.is_set():
                break
            self._record(await self.machine.process_approved_task(task))

    async def _process_next_todo(self) -> None:
        tasks = await self.tracker.list_tasks_by_status(TaskStatus.TODO)
        if not tasks:
            log.debug("todo_queue_empty")
            return

        task = tasks[0]
        pr_url = await self.tracker.find_linked_pr_url(task.id) if is_valid_task_id(task.id) else None
        if pr_url:
            self._record(await self.machine.process_returning_task(task, pr_url))
        else:
            self._record(await self.machine.process_new_task(task))

    def _record(self, outcome: TaskOutcome) -> None:
        if outcome.merged:
            log.info("relaunch_requested", reason="merge")
            self.relaunch_requested = True

    async def run(self) -> RunExit:
        """Recover orphaned tasks, then poll until shutdown or relaunch."""
        log.info(
            "scheduler_started",
            poll_interval=self.poll_interval,
            relaunch_interval=self.relaunch_interval,
        )
        if await self.recovery.recover():
            log.info("relaunch_requested", reason="recovery_merge")
            self.relaunch_requested = True

        started = self.clock()
        while not self.shutdown.is_set() and not self.relaunch_requested:
            await self.poll_once()
            if self.relaunch_requested or self.shutdown.is_set():
                break

            wait = self.poll_interval
            if self.relaunch_interval is not None:
                remaining = self.relaunch_interval - (self.clock() - started)
                if remaining <= 0:
                    log.info("relaunch_requested", reason="interval_elapsed")
                    self.relaunch_requested = True
                    break
                wait = min(wait, remaining)
            await self._sleep(wait)

        if self.shutdown.is_set():
            self.state = SchedulerState.STOPPING
            log.info("scheduler_stopped")
            return RunExit.STOP

        self.state = SchedulerState.STOPPING
        try:
            await self.machine.vcs.sync_base()
        except Exception as e:
            log.warning("relaunch_sync_failed", error=str(e))
        log.info("scheduler_relaunching")
        return RunExit.RELAUNCH

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self.shutdown.wait(), timeout=seconds)
        except TimeoutError:
            pass
