"""Coding agent provider that runs the Claude Code CLI as a subprocess."""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path

import structlog

from clawup.config.settings import AgentConfig
from clawup.exceptions import AgentTimeoutError
from clawup.models.domain import AgentMode, AgentRunResult
from clawup.providers.agent_events import StreamDisplay, StreamParser
from clawup.providers.base import CodingAgent

log = structlog.get_logger(__name__)

NEEDS_INPUT_MARKERS = [
    "NEEDS_MORE_INFO",
    "REQUIRE_INPUT",
    "NEED_CLARIFICATION",
    "BLOCKED:",
    "I need more information",
    "I need clarification",
    "could you clarify",
    "could you provide",
    "I cannot proceed without",
    "insufficient information",
    "the task description is unclear",
]

DEFAULT_NEEDS_INPUT_REASON = "The coding agent indicated it needs more information to complete this task."

# stream-json lines carry whole messages
_STREAM_LIMIT = 16 * 1024 * 1024
_STDERR_TAIL = 2000


def detect_needs_input(output: str) -> bool:
    lowered = output.lower()
    return any(marker.lower() in lowered for marker in NEEDS_INPUT_MARKERS)


def extract_needs_input_reason(output: str) -> str:
    """Return up to five non-empty lines starting at the first needs-input marker."""
    lowered = output.lower()
    for marker in NEEDS_INPUT_MARKERS:
        index = lowered.find(marker.lower())
        if index != -1:
            lines = [line for line in output[index:].splitlines() if line.strip()]
            return "\n".join(lines[:5])
    return DEFAULT_NEEDS_INPUT_REASON


class ClaudeCodeAgent(CodingAgent):
    """Runs ``claude -p`` in the project root and streams its output.

    The process gets a hard wall-clock timeout; on expiry it is killed and
    a failed result is returned. Spawn failures and non-zero exits are also
    reported as failed results rather than raised.
    """

    def __init__(
        self,
        config: AgentConfig,
        working_dir: Path | str,
        write: Callable[[str], None] | None = None,
    ):
        self.config = config
        self.working_dir = Path(working_dir)
        self.write = write

    def build_args(self, prompt: str, allowed_tools: list[str]) -> list[str]:
        args = [
            "-p",
            prompt,
            "--verbose",
            "--output-format",
            "stream-json",
            "--include-partial-messages",
            "--max-turns",
            str(self.config.max_turns),
        ]
        if allowed_tools:
            args.extend(["--allowedTools", *allowed_tools])
        args.extend(self.config.extra_args)
        return args

    async def run(
        self,
        prompt: str,
        mode: AgentMode,
        allowed_tools: list[str],
        task_id: str | None = None,
    ) -> AgentRunResult:
        args = self.build_args(prompt, allowed_tools)
        log.info(
            "agent_start",
            task_id=task_id,
            mode=mode.value,
            tools=allowed_tools,
            prompt_length=len(prompt),
        )

        try:
            process = await asyncio.create_subprocess_exec(
                self.config.command,
                *args,
                cwd=self.working_dir,
                env={**os.environ, "CLAUDE_CODE_ENTRYPOINT": "cli"},
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            log.error("agent_spawn_failed", task_id=task_id, error=str(e))
            return AgentRunResult(success=False, error=f"Failed to run {self.config.command}: {e}")

        display = StreamDisplay(self.write)
        stderr_chunks: list[str] = []

        try:
            returncode = await asyncio.wait_for(
                self._communicate(process, display, stderr_chunks),
                timeout=self.config.timeout_seconds,
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            error = AgentTimeoutError(self.config.timeout_seconds, task_id)
            log.warning("agent_timeout", task_id=task_id, timeout=self.config.timeout_seconds)
            return AgentRunResult(success=False, output=display.output, error=error.message)
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        output = display.output
        if detect_needs_input(output):
            log.info("agent_needs_input", task_id=task_id)
            return AgentRunResult(success=False, output=output, needs_input=True)

        if returncode != 0:
            stderr_tail = "".join(stderr_chunks).strip()[-_STDERR_TAIL:]
            log.warning("agent_exit_nonzero", task_id=task_id, returncode=returncode)
            error = f"Exited with code {returncode}"
            if stderr_tail:
                error = f"{error}: {stderr_tail}"
            return AgentRunResult(success=False, output=output, error=error)

        log.info("agent_complete", task_id=task_id, output_length=len(output))
        return AgentRunResult(success=True, output=output)

    async def _communicate(
        self,
        process: asyncio.subprocess.Process,
        display: StreamDisplay,
        stderr_chunks: list[str],
    ) -> int:
        parser = StreamParser()

        async def read_stdout() -> None:
            assert process.stdout is not None
            async for raw in process.stdout:
                for event in parser.feed(raw.decode("utf-8", errors="replace").rstrip("\n")):
                    display.handle(event)

        async def read_stderr() -> None:
            assert process.stderr is not None
            async for raw in process.stderr:
                stderr_chunks.append(raw.decode("utf-8", errors="replace"))

        await asyncio.gather(read_stdout(), read_stderr())
        return await process.wait()
