"""Clients for the engine's external collaborators.

Key Components:
    - TaskTracker, VCSProvider, CodingAgent: abstract interfaces
    - ClickUpTracker: ClickUp REST API v2 (httpx)
    - GitHubCLIProvider: git working tree plus GitHub via the gh CLI
    - ClaudeCodeAgent: Claude Code CLI with stream-json output
"""

from clawup.providers.base import CodingAgent, TaskTracker, VCSProvider
from clawup.providers.claude_agent import ClaudeCodeAgent
from clawup.providers.clickup_rest import ClickUpTracker
from clawup.providers.github_cli import GitHubCLIProvider

__all__ = [
    "ClaudeCodeAgent",
    "ClickUpTracker",
    "CodingAgent",
    "GitHubCLIProvider",
    "TaskTracker",
    "VCSProvider",
]
