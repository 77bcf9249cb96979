"""Tests for config/settings.py."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from clawup.config.settings import TOOL_PROFILES, AgentConfig, ClawupSettings, GitConfig, StatusConfig
from clawup.exceptions import ConfigurationError
from clawup.models.domain import TaskStatus

MINIMAL_YAML = """
tracker:
  api_token: ${CLICKUP_TOKEN}
  list_id: "901"
"""


def write_config(tmp_path: Path, content: str) -> str:
    path = tmp_path / "clawup.yaml"
    path.write_text(content)
    return str(path)


class TestFromYaml:
    """Loading settings from YAML files."""

    def test_minimal_config_with_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLICKUP_TOKEN", "pk_secret")

        settings = ClawupSettings.from_yaml(write_config(tmp_path, MINIMAL_YAML))

        assert settings.tracker.api_token.get_secret_value() == "pk_secret"
        assert settings.tracker.list_id == "901"
        assert settings.git.base_branch == "main"
        assert settings.git.merge_strategy == "squash"
        assert settings.agent.tool_profile == "minimal"
        assert settings.workflow.poll_interval_seconds == 30.0
        assert settings.workflow.relaunch_interval_seconds is None
        assert settings.workflow.auto_approve is False

    def test_env_default_used_when_unset(self, tmp_path, monkeypatch):
        monkeypatch.delenv("BASE_BRANCH", raising=False)
        content = MINIMAL_YAML.replace("${CLICKUP_TOKEN}", "pk_x") + "git:\n  base_branch: ${BASE_BRANCH:-develop}\n"

        settings = ClawupSettings.from_yaml(write_config(tmp_path, content))

        assert settings.git.base_branch == "develop"

    def test_missing_env_var_raises(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CLICKUP_TOKEN", raising=False)

        with pytest.raises(ConfigurationError, match="CLICKUP_TOKEN is not set"):
            ClawupSettings.from_yaml(write_config(tmp_path, MINIMAL_YAML))

    def test_commented_references_ignored(self, tmp_path, monkeypatch):
        monkeypatch.delenv("UNSET_VAR", raising=False)
        content = "# token: ${UNSET_VAR}\n" + MINIMAL_YAML.replace("${CLICKUP_TOKEN}", "pk_x")

        settings = ClawupSettings.from_yaml(write_config(tmp_path, content))

        assert settings.tracker.api_token.get_secret_value() == "pk_x"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ClawupSettings.from_yaml(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ClawupSettings.from_yaml(write_config(tmp_path, "tracker: [unclosed"))

    def test_scalar_document_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="YAML object"):
            ClawupSettings.from_yaml(write_config(tmp_path, "just a string"))

    def test_validation_failure_wrapped(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Failed to validate"):
            ClawupSettings.from_yaml(write_config(tmp_path, "tracker:\n  api_token: pk_x\n"))


class TestValidation:
    def test_tracker_requires_scope(self):
        with pytest.raises(ValidationError, match="list_id or tracker.parent_task_id"):
            ClawupSettings(tracker={"api_token": "pk_x"})

    def test_parent_task_scope_accepted(self):
        settings = ClawupSettings(tracker={"api_token": "pk_x", "parent_task_id": "abc"})

        assert settings.tracker.parent_task_id == "abc"

    @pytest.mark.parametrize("prefix", ["auto", "bots/clawup", "feature.x"])
    def test_valid_branch_prefixes(self, prefix):
        assert GitConfig(branch_prefix=prefix).branch_prefix == prefix

    @pytest.mark.parametrize("prefix", ["", "has space", "trailing/", "a;rm -rf"])
    def test_invalid_branch_prefixes(self, prefix):
        with pytest.raises(ValidationError):
            GitConfig(branch_prefix=prefix)

    def test_custom_profile_requires_tools(self):
        with pytest.raises(ValidationError, match="allowed_tools is required"):
            AgentConfig(tool_profile="custom")

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            AgentConfig(timeout_seconds=0)


class TestDerivedValues:
    def test_effective_tools_for_profiles(self):
        assert AgentConfig().effective_tools == TOOL_PROFILES["minimal"]
        assert AgentConfig(tool_profile="full").effective_tools == TOOL_PROFILES["full"]
        assert AgentConfig(tool_profile="custom", allowed_tools=["Read"]).effective_tools == ["Read"]

    def test_effective_tools_is_a_copy(self):
        AgentConfig().effective_tools.append("Danger")

        assert "Danger" not in TOOL_PROFILES["minimal"]

    def test_paths_relative_to_project_root(self, settings, tmp_path):
        assert settings.project_root == tmp_path.resolve()
        assert settings.lock_path == tmp_path.resolve() / ".clawup.lock"
        assert settings.todo_path == tmp_path.resolve() / ".clawup.todo.json"

    def test_status_mapping_round_trip(self):
        statuses = StatusConfig(completed="done")

        assert statuses.name_for(TaskStatus.COMPLETED) == "done"
        assert statuses.status_for("  In Review ") is TaskStatus.IN_REVIEW
        assert statuses.status_for("DONE") is TaskStatus.COMPLETED
        assert statuses.status_for("archived") is None

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("CLAWUP_GIT__BASE_BRANCH", "trunk")

        settings = ClawupSettings(tracker={"api_token": "pk_x", "list_id": "1"})

        assert settings.git.base_branch == "trunk"
