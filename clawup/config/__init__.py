"""Configuration for clawup.

Key Components:
    - ClawupSettings: Main configuration container with YAML loading support
    - TrackerConfig: ClickUp list/parent scope and API token
    - GitConfig: Base branch, branch prefix and merge strategy
    - AgentConfig: Coding agent command, timeout and tool profile
    - StatusConfig: Tracker display names for lifecycle statuses
    - WorkflowConfig: Polling, relaunch, auto-approve and workspace files
"""

from clawup.config.settings import (
    AgentConfig,
    ClawupSettings,
    GitConfig,
    StatusConfig,
    TrackerConfig,
    WorkflowConfig,
)

__all__ = [
    "AgentConfig",
    "ClawupSettings",
    "GitConfig",
    "StatusConfig",
    "TrackerConfig",
    "WorkflowConfig",
]
