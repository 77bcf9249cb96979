"""
Configuration system using Pydantic for type-safe settings management.

Settings are resolved from (in priority order) explicit YAML values,
``CLAWUP_``-prefixed environment variables, and defaults. YAML files may
reference environment variables with ``${VAR}`` or ``${VAR:-default}``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clawup.exceptions import ConfigurationError
from clawup.models.domain import TaskStatus

ToolProfileName = Literal["minimal", "standard", "full", "custom"]

TOOL_PROFILES: dict[str, list[str]] = {
    "minimal": ["Edit", "Write", "Read", "Glob", "Grep", "Bash"],
    "standard": ["Edit", "Write", "Read", "Glob", "Grep", "Bash", "Task", "WebFetch", "WebSearch"],
    "full": [
        "Edit",
        "Write",
        "Read",
        "Glob",
        "Grep",
        "Bash",
        "Task",
        "WebFetch",
        "WebSearch",
        "NotebookEdit",
        "TodoWrite",
    ],
}


class TrackerConfig(BaseModel):
    """ClickUp tracker configuration.

    Exactly one of ``list_id`` or ``parent_task_id`` is needed. In parent task
    mode only subtasks of the parent are processed and new follow-up tasks
    are created as its subtasks.
    """

    api_token: SecretStr = Field(..., description="ClickUp personal API token")
    list_id: str | None = Field(default=None, description="List whose tasks are processed")
    parent_task_id: str | None = Field(default=None, description="Restrict processing to subtasks of this task")
    base_url: str = Field(default="https://api.clickup.com/api/v2", description="ClickUp API base URL")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    @model_validator(mode="after")
    def validate_scope(self) -> TrackerConfig:
        """Require a list or a parent task to scope the queues."""
        if not self.list_id and not self.parent_task_id:
            raise ValueError("Either tracker.list_id or tracker.parent_task_id must be set")
        return self


class GitConfig(BaseModel):
    """Version control and pull request host configuration."""

    base_branch: str = Field(default="main", description="Trunk branch tasks branch from and merge into")
    branch_prefix: str = Field(default="auto", description="Prefix for task branches")
    remote: str = Field(default="origin", description="Remote to push to")
    merge_strategy: Literal["squash", "merge", "rebase"] = Field(default="squash")
    command_timeout: float = Field(default=30.0, gt=0, description="Timeout for git/gh commands in seconds")

    @field_validator("branch_prefix")
    @classmethod
    def validate_prefix(cls, value: str) -> str:
        if not re.fullmatch(r"[A-Za-z0-9._-]+(/[A-Za-z0-9._-]+)*", value):
            raise ValueError(f"Invalid branch prefix: {value!r}")
        return value


class AgentConfig(BaseModel):
    """Coding agent (Claude Code CLI) configuration."""

    command: str = Field(default="claude", description="Agent executable")
    timeout_seconds: float = Field(default=600.0, gt=0, description="Hard wall-clock limit per run")
    max_turns: int = Field(default=50, ge=1, description="Maximum agent turns per run")
    tool_profile: ToolProfileName = Field(default="minimal", description="Named set of allowed tools")
    allowed_tools: list[str] = Field(default_factory=list, description="Tools for the custom profile")
    extra_args: list[str] = Field(default_factory=list, description="Extra CLI arguments appended verbatim")
    prompt: str | None = Field(default=None, description="Additional instructions appended to every prompt")

    @model_validator(mode="after")
    def validate_custom_profile(self) -> AgentConfig:
        if self.tool_profile == "custom" and not self.allowed_tools:
            raise ValueError("agent.allowed_tools is required when agent.tool_profile='custom'")
        return self

    @property
    def effective_tools(self) -> list[str]:
        """Tools the agent may use for task work."""
        if self.tool_profile == "custom":
            return list(self.allowed_tools)
        return list(TOOL_PROFILES[self.tool_profile])


class StatusConfig(BaseModel):
    """Display names of the lifecycle statuses in the tracker."""

    todo: str = "to do"
    in_progress: str = "in progress"
    in_review: str = "in review"
    require_input: str = "require input"
    blocked: str = "blocked"
    approved: str = "approved"
    completed: str = "complete"

    def name_for(self, status: TaskStatus) -> str:
        """Tracker display name for a status."""
        return getattr(self, status.value)

    def status_for(self, name: str) -> TaskStatus | None:
        """Map a tracker display name back to a status (case-insensitive)."""
        lowered = name.strip().lower()
        for status in TaskStatus:
            if self.name_for(status).lower() == lowered:
                return status
        return None


class WorkflowConfig(BaseModel):
    """Engine behavior configuration."""

    project_root: str = Field(default=".", description="Working tree the engine operates on")
    poll_interval_seconds: float = Field(default=30.0, gt=0, description="Seconds between poll cycles")
    relaunch_interval_seconds: float | None = Field(
        default=None, gt=0, description="Relaunch after this many seconds (disabled when unset)"
    )
    auto_approve: bool = Field(default=False, description="Merge immediately after a successful run")
    lock_file: str = Field(default=".clawup.lock", description="Lock file path, relative to project_root")
    todo_file: str = Field(default=".clawup.todo.json", description="Follow-up file path, relative to project_root")
    conflict_help_url: str | None = Field(default=None, description="Link to manual conflict resolution guidance")


class ClawupSettings(BaseSettings):
    """Main settings object.

    Combines all configuration sections and provides ``from_yaml`` for
    loading a YAML file with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLAWUP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    tracker: TrackerConfig
    git: GitConfig = Field(default_factory=GitConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    statuses: StatusConfig = Field(default_factory=StatusConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @property
    def project_root(self) -> Path:
        return Path(self.workflow.project_root).resolve()

    @property
    def lock_path(self) -> Path:
        return self.project_root / self.workflow.lock_file

    @property
    def todo_path(self) -> Path:
        return self.project_root / self.workflow.todo_file

    @classmethod
    def from_yaml(cls, config_path: str) -> ClawupSettings:
        """Load settings from YAML file with environment variable interpolation.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ClawupSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Replace ``${VAR}`` and ``${VAR:-default}`` outside comment lines.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)
            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
