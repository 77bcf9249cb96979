"""
Typed events for the coding agent's ``stream-json`` output.

The agent writes one JSON object per line. ``StreamParser`` turns those
lines into a closed set of events:

- ``TextDelta``: new assistant text since the last partial message update.
- ``ToolUse``: a tool invocation, emitted once per tool-use id.
- ``ResultEvent``: the final result, with cost and turn count when reported.
- ``RawLine``: a line that was not JSON, passed through unchanged.

``StreamDisplay`` renders events for a live terminal view and accumulates the
agent's text output, which is what needs-input detection and commit message
generation work from.
"""

import functools
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, assert_never

import click


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolUse:
    tool_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResultEvent:
    text: str = ""
    cost_usd: float | None = None
    num_turns: int | None = None
    is_error: bool = False


@dataclass(frozen=True)
class RawLine:
    text: str


AgentEvent = TextDelta | ToolUse | ResultEvent | RawLine


def _text_of(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    return "".join(
        block.get("text", "") for block in content if isinstance(block, dict) and block.get("type") == "text"
    )


class StreamParser:
    """Stateful parser for the agent's JSON lines.

    With partial messages enabled the agent re-sends the whole message on
    every update, so text is tracked per message id and only the unseen
    suffix is emitted.
    """

    def __init__(self) -> None:
        self._message_id = ""
        self._text_length = 0
        self._seen_tool_ids: set[str] = set()

    def feed(self, line: str) -> list[AgentEvent]:
        """Parse one output line into zero or more events."""
        if not line.strip():
            return []
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            return [RawLine(line)]
        if not isinstance(payload, dict):
            return [RawLine(line)]

        kind = payload.get("type")
        if kind == "assistant":
            return self._assistant(payload.get("message") or {})
        if kind == "result":
            return [self._result(payload)]
        return []

    def _assistant(self, message: dict[str, Any]) -> list[AgentEvent]:
        content = message.get("content")
        if not isinstance(content, list):
            return []

        message_id = message.get("id") or ""
        if message_id and message_id != self._message_id:
            self._message_id = message_id
            self._text_length = 0

        events: list[AgentEvent] = []
        full_text = _text_of(content)
        if len(full_text) > self._text_length:
            events.append(TextDelta(full_text[self._text_length :]))
            self._text_length = len(full_text)

        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            tool_id = block.get("id")
            if tool_id and tool_id not in self._seen_tool_ids:
                self._seen_tool_ids.add(tool_id)
                events.append(ToolUse(tool_id=tool_id, name=block.get("name", "tool"), input=block.get("input") or {}))
        return events

    def _result(self, payload: dict[str, Any]) -> ResultEvent:
        result = payload.get("result")
        if isinstance(result, str):
            full_text = result
        elif isinstance(result, dict):
            full_text = _text_of(result.get("content"))
        else:
            full_text = ""

        # only the part not already streamed through the last message
        text = full_text[self._text_length :] if len(full_text) > self._text_length else ""
        cost = payload.get("cost_usd", payload.get("total_cost_usd"))
        return ResultEvent(
            text=text,
            cost_usd=float(cost) if isinstance(cost, int | float) else None,
            num_turns=payload.get("num_turns"),
            is_error=bool(payload.get("is_error", False)),
        )


def format_tool_use(event: ToolUse) -> str:
    """Tool name plus its most relevant parameter."""
    detail = ""
    if event.input.get("file_path"):
        detail = f" {event.input['file_path']}"
    elif event.input.get("pattern"):
        detail = f" {event.input['pattern']}"
    elif event.input.get("command"):
        command = str(event.input["command"])
        detail = f" {command[:80]}…" if len(command) > 80 else f" {command}"
    return f"\n[{event.name}]{detail}\n"


class StreamDisplay:
    """Writes agent events to the terminal and accumulates the text output."""

    def __init__(self, write: Callable[[str], None] | None = None) -> None:
        self.write = write or functools.partial(click.echo, nl=False)
        self.output = ""
        self.result: ResultEvent | None = None

    def handle(self, event: AgentEvent) -> None:
        if isinstance(event, TextDelta):
            self.output += event.text
            self.write(event.text)
        elif isinstance(event, ToolUse):
            self.write(format_tool_use(event))
        elif isinstance(event, ResultEvent):
            self.result = event
            if event.text:
                self.output += event.text
                self.write(event.text)
            if event.cost_usd:
                turns = event.num_turns if event.num_turns is not None else "?"
                self.write(f"\n[Cost: ${event.cost_usd:.4f} | Turns: {turns}]\n")
        elif isinstance(event, RawLine):
            self.write(event.text + "\n")
        else:
            assert_never(event)
