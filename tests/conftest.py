"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from clawup.config.settings import ClawupSettings
from clawup.engine.state_machine import TaskStateMachine
from clawup.engine.todo_sink import TodoSink
from clawup.models.domain import (
    AgentRunResult,
    Mergeability,
    PRState,
    ReviewDecision,
    Task,
    TaskCreator,
)
from clawup.providers.base import CodingAgent, TaskTracker, VCSProvider

PR_URL = "https://github.com/acme/widgets/pull/7"
BRANCH = "auto/CU-abc123-add-login-page"


@pytest.fixture
def settings(tmp_path: Path) -> ClawupSettings:
    """Settings rooted in a temporary project directory."""
    return ClawupSettings(
        tracker={"api_token": "pk_test", "list_id": "901"},
        workflow={"project_root": str(tmp_path)},
    )


@pytest.fixture
def sample_task() -> Task:
    return Task(
        id="abc123",
        title="Add login page",
        description="Users need a login page with email and password.",
        url="https://app.clickup.com/t/abc123",
        creator=TaskCreator(id=42, username="dana"),
    )


@pytest.fixture
def tracker() -> AsyncMock:
    """Tracker mock with empty queues and no comments."""
    mock = AsyncMock(spec=TaskTracker)
    mock.list_tasks_by_status.return_value = []
    mock.get_comments.return_value = []
    mock.find_linked_pr_url.return_value = None
    mock.validate_statuses.return_value = []
    return mock


@pytest.fixture
def vcs() -> AsyncMock:
    """VCS mock describing a fresh branch whose agent run commits once."""
    mock = AsyncMock(spec=VCSProvider)
    mock.create_branch.return_value = BRANCH
    mock.find_branch_for_task.return_value = BRANCH
    mock.find_existing_pr.return_value = None
    mock.create_pr.return_value = PR_URL
    mock.pr_state.return_value = PRState.DRAFT
    mock.pr_mergeability.return_value = Mergeability.MERGEABLE
    mock.head_hash.side_effect = ["aaa111", "bbb222"]
    mock.has_uncommitted_changes.return_value = False
    mock.merge_base_into_current.return_value = True
    mock.conflicted_files.return_value = []
    mock.files_with_conflict_markers.return_value = []
    mock.changed_files.return_value = ["src/login.py"]
    mock.commits_ahead_of_base.return_value = 1
    mock.branch_is_pushed.return_value = True
    mock.review_decision.return_value = ReviewDecision.NONE
    mock.review_comments.return_value = []
    mock.inline_comments.return_value = []
    mock.commit.return_value = "ccc333"
    return mock


@pytest.fixture
def agent() -> AsyncMock:
    mock = AsyncMock(spec=CodingAgent)
    mock.run.return_value = AgentRunResult(success=True, output="Implemented the login page with validation.")
    return mock


@pytest.fixture
def todo_sink(settings: ClawupSettings, tracker: AsyncMock) -> TodoSink:
    return TodoSink(settings.todo_path, tracker)


@pytest.fixture
def machine(
    settings: ClawupSettings,
    tracker: AsyncMock,
    vcs: AsyncMock,
    agent: AsyncMock,
    todo_sink: TodoSink,
) -> TaskStateMachine:
    return TaskStateMachine(settings, tracker, vcs, agent, todo_sink=todo_sink)
