"""CLI entry point for clawup."""

import asyncio
import signal
import subprocess
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import FrameType

import click
import structlog

from clawup.config.settings import ClawupSettings
from clawup.engine.process_lock import ProcessLock
from clawup.engine.scheduler import PollScheduler, RunExit
from clawup.engine.state_machine import TaskStateMachine
from clawup.exceptions import ClawupError, ConfigurationError, InvalidTaskIdError, LockContentionError
from clawup.models.domain import TaskOutcome, TaskStatus
from clawup.providers.claude_agent import ClaudeCodeAgent
from clawup.providers.clickup_rest import ClickUpTracker
from clawup.providers.github_cli import GitHubCLIProvider
from clawup.utils.logging_config import configure_logging
from clawup.utils.text import is_valid_task_id

log = structlog.get_logger(__name__)

EXIT_ERROR = 1
EXIT_INTERRUPTED = 130
# EX_TEMPFAIL: the runner asks its supervisor to start it again
EXIT_RELAUNCH = 75


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str | None = None


@click.group()
@click.option("--config", default="clawup.yaml", help="Path to configuration file")
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str, json_logs: bool) -> None:
    """clawup: turn ClickUp tasks into reviewed, merged pull requests."""
    configure_logging(log_level, json_output=json_logs)
    ctx.obj = {"config": config, "log_level": log_level, "json_logs": json_logs, "settings": None}

    # supervise only re-executes the runner, which loads the config itself
    if ctx.invoked_subcommand == "supervise":
        return

    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(EXIT_ERROR)

    try:
        ctx.obj["settings"] = ClawupSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(EXIT_ERROR)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Poll the tracker and process tasks until stopped.

    Exits with code 75 when a relaunch is requested (after a merge or when
    the relaunch interval elapses); use ``clawup supervise`` to restart
    automatically.
    """
    settings: ClawupSettings = ctx.obj["settings"]
    lock = ProcessLock(settings.lock_path)
    with _interrupt_on_sigterm():
        _acquire_or_exit(lock)
        try:
            result = asyncio.run(_run_engine(settings))
        except ClawupError as e:
            click.echo(f"Error: {e.message}", err=True)
            log.debug("run_error", exc_info=True)
            sys.exit(EXIT_ERROR)
        except KeyboardInterrupt:
            click.echo("\nInterrupted", err=True)
            sys.exit(EXIT_INTERRUPTED)
        except Exception as e:
            click.echo(f"Unexpected error: {e}", err=True)
            log.error("run_unexpected", exc_info=True)
            sys.exit(EXIT_ERROR)
        finally:
            lock.release()

    if result is RunExit.RELAUNCH:
        click.echo("Relaunch requested")
        sys.exit(EXIT_RELAUNCH)
    click.echo("Stopped")


@cli.command()
@click.argument("task_id")
@click.pass_context
def once(ctx: click.Context, task_id: str) -> None:
    """Process a single task by ID, whatever queue it is in."""
    settings: ClawupSettings = ctx.obj["settings"]
    lock = ProcessLock(settings.lock_path)
    with _interrupt_on_sigterm():
        _acquire_or_exit(lock)
        try:
            outcome = asyncio.run(_process_single_task(settings, task_id))
        except ClawupError as e:
            click.echo(f"Error: {e.message}", err=True)
            log.debug("once_error", exc_info=True)
            sys.exit(EXIT_ERROR)
        except KeyboardInterrupt:
            click.echo("\nInterrupted", err=True)
            sys.exit(EXIT_INTERRUPTED)
        except Exception as e:
            click.echo(f"Unexpected error: {e}", err=True)
            log.error("once_unexpected", exc_info=True)
            sys.exit(EXIT_ERROR)
        finally:
            lock.release()

    status = outcome.status.value if outcome.status else "skipped"
    click.echo(f"Task {task_id}: {status}")


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Run startup checks without processing any task."""
    settings: ClawupSettings = ctx.obj["settings"]
    try:
        results = asyncio.run(_check(settings))
    except ClawupError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_ERROR)

    click.echo("Startup checks:")
    for result in results:
        _print_check(result)
    if not all(result.ok for result in results):
        sys.exit(EXIT_ERROR)


@cli.command()
@click.pass_context
def supervise(ctx: click.Context) -> None:
    """Run the engine, restarting it whenever it requests a relaunch."""
    command = [
        sys.executable,
        "-m",
        "clawup",
        "--config",
        ctx.obj["config"],
        "--log-level",
        ctx.obj["log_level"],
    ]
    if ctx.obj["json_logs"]:
        command.append("--json-logs")
    command.append("run")

    while True:
        log.info("supervisor_starting_runner")
        try:
            code = subprocess.call(command)
        except KeyboardInterrupt:
            click.echo("\nInterrupted by user", err=True)
            sys.exit(EXIT_INTERRUPTED)
        if code != EXIT_RELAUNCH:
            log.info("supervisor_runner_exited", code=code)
            sys.exit(code)
        log.info("supervisor_relaunching")


def _raise_interrupt(signum: int, frame: FrameType | None) -> None:
    raise KeyboardInterrupt


@contextmanager
def _interrupt_on_sigterm() -> Iterator[None]:
    """Deliver SIGTERM as KeyboardInterrupt so the lock is released in ``finally``.

    While the poll loop runs, ``_run_engine`` replaces this with a
    cooperative shutdown handler and restores it afterwards.
    """
    previous = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _acquire_or_exit(lock: ProcessLock) -> None:
    try:
        lock.acquire()
    except LockContentionError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_ERROR)


def _print_check(result: CheckResult) -> None:
    if result.ok:
        click.echo(f"  {click.style('[OK]', fg='green')} {result.name}")
    else:
        click.echo(f"  {click.style('[FAIL]', fg='red')} {result.name}")
    if result.detail:
        click.echo(f"       {result.detail}")


def _build_machine(settings: ClawupSettings, tracker: ClickUpTracker) -> TaskStateMachine:
    vcs = GitHubCLIProvider(
        settings.git,
        settings.project_root,
        local_paths=[settings.workflow.lock_file, settings.workflow.todo_file],
    )
    agent = ClaudeCodeAgent(settings.agent, settings.project_root)
    return TaskStateMachine(settings, tracker, vcs, agent)


async def _preflight(machine: TaskStateMachine) -> list[CheckResult]:
    """Check the repository, tracker statuses and working tree."""
    results = []
    try:
        repo = await machine.vcs.detect_repo()
        results.append(CheckResult("GitHub repository", True, repo))
    except ClawupError as e:
        results.append(CheckResult("GitHub repository", False, e.message))

    try:
        missing = await machine.tracker.validate_statuses()
        if missing:
            results.append(CheckResult("Tracker statuses", False, "Missing: " + ", ".join(missing)))
        else:
            results.append(CheckResult("Tracker statuses", True))
    except ClawupError as e:
        results.append(CheckResult("Tracker statuses", False, e.message))

    try:
        clean = await machine.vcs.is_working_tree_clean()
        results.append(
            CheckResult("Clean working tree", clean, None if clean else "Commit or stash your changes first")
        )
    except ClawupError as e:
        results.append(CheckResult("Clean working tree", False, e.message))

    return results


async def _check(settings: ClawupSettings) -> list[CheckResult]:
    async with ClickUpTracker(settings.tracker, settings.statuses) as tracker:
        return await _preflight(_build_machine(settings, tracker))


async def _run_engine(settings: ClawupSettings) -> RunExit:
    async with ClickUpTracker(settings.tracker, settings.statuses) as tracker:
        machine = _build_machine(settings, tracker)

        failed = [result for result in await _preflight(machine) if not result.ok]
        if failed:
            details = "; ".join(f"{r.name}: {r.detail}" if r.detail else r.name for r in failed)
            raise ConfigurationError(f"Startup checks failed: {details}")

        scheduler = PollScheduler(settings, machine)
        loop = asyncio.get_running_loop()
        previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
        for sig in previous:
            loop.add_signal_handler(sig, scheduler.request_shutdown)
        try:
            return await scheduler.run()
        finally:
            # remove_signal_handler resets to the default action
            for sig, handler in previous.items():
                loop.remove_signal_handler(sig)
                signal.signal(sig, handler)


async def _process_single_task(settings: ClawupSettings, task_id: str) -> TaskOutcome:
    if not is_valid_task_id(task_id):
        raise InvalidTaskIdError(task_id)

    log.info("processing_single_task", task_id=task_id)
    async with ClickUpTracker(settings.tracker, settings.statuses) as tracker:
        machine = _build_machine(settings, tracker)
        task = await tracker.get_task(task_id)

        if task.status is TaskStatus.APPROVED:
            return await machine.process_approved_task(task)

        pr_url = await tracker.find_linked_pr_url(task.id)
        if pr_url:
            return await machine.process_returning_task(task, pr_url)
        return await machine.process_new_task(task)
