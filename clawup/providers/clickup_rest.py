"""ClickUp tracker implementation using direct REST API calls."""

import re
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from clawup.config.settings import StatusConfig, TrackerConfig
from clawup.exceptions import TrackerError
from clawup.models.domain import Checklist, ChecklistItem, Comment, Task, TaskCreator, TaskStatus
from clawup.providers.base import TaskTracker
from clawup.utils.retry import async_retry

log = structlog.get_logger(__name__)

PR_URL_PATTERN = re.compile(r"https://github\.com/[^/]+/[^/]+/pull/\d+")

# ClickUp priority ids: 1=urgent, 2=high, 3=normal, 4=low
_NO_PRIORITY = 99


class ClickUpTracker(TaskTracker):
    """ClickUp API v2 client.

    In parent task mode only subtasks of ``parent_task_id`` are listed, and
    new tasks are created as its subtasks. The list id is then resolved from
    the parent task on first use.
    """

    def __init__(
        self,
        config: TrackerConfig,
        statuses: StatusConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the ClickUp client.

        Args:
            config: Tracker section of the settings
            statuses: Mapping of lifecycle statuses to ClickUp status names
            transport: Optional httpx transport, used to stub the API in tests
        """
        self.config = config
        self.statuses = statuses
        self.parent_task_id = config.parent_task_id
        self._list_id = config.list_id
        self.client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers={
                "Authorization": config.api_token.get_secret_value().strip(),
                "Content-Type": "application/json",
            },
            timeout=config.request_timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "ClickUpTracker":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(httpx.TransportError,))
    async def _request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        log.debug("clickup_request", method=method, path=path)
        response = await self.client.request(method, path, params=params, json=json)
        if response.is_error:
            raise TrackerError(
                f"ClickUp API error {method} {path}",
                status_code=response.status_code,
                response_text=response.text,
            )
        if not response.content:
            return None
        return response.json()

    async def list_id(self) -> str:
        """Return the effective list id, resolving it from the parent task if needed."""
        if self._list_id:
            return self._list_id
        if not self.parent_task_id:
            raise TrackerError("Either list_id or parent_task_id must be configured")
        parent = await self._request("GET", f"/task/{self.parent_task_id}")
        self._list_id = str(parent["list"]["id"])
        log.info("list_id_resolved", parent_task_id=self.parent_task_id, list_id=self._list_id)
        return self._list_id

    async def list_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        list_id = await self.list_id()
        params = [
            ("include_closed", "false"),
            ("subtasks", "true"),
            ("order_by", "created"),
            ("reverse", "false"),
            ("statuses[]", self.statuses.name_for(status)),
        ]
        data = await self._request("GET", f"/list/{list_id}/task", params=params)
        raw_tasks: list[dict[str, Any]] = (data or {}).get("tasks") or []

        if self.parent_task_id:
            raw_tasks = [t for t in raw_tasks if t.get("parent") == self.parent_task_id]

        raw_tasks.sort(key=lambda t: (_priority_rank(t), _int_or_zero(t.get("date_created"))))

        log.info("tasks_listed", status=status.value, count=len(raw_tasks), list_id=list_id)
        return [self._parse_task(t) for t in raw_tasks]

    async def get_task(self, task_id: str) -> Task:
        data = await self._request("GET", f"/task/{task_id}")
        return self._parse_task(data)

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        name = self.statuses.name_for(status)
        log.info("task_status_update", task_id=task_id, status=name)
        await self._request("PUT", f"/task/{task_id}", json={"status": name})

    async def add_comment(self, task_id: str, text: str) -> None:
        log.info("task_comment", task_id=task_id)
        await self._request(
            "POST",
            f"/task/{task_id}/comment",
            json={"comment_text": text, "notify_all": True},
        )

    async def notify_creator(self, task_id: str, creator: TaskCreator | None, text: str) -> None:
        if creator is None or not creator.id:
            await self.add_comment(task_id, text)
            return

        mention = f"@{creator.username} " if creator.username else ""
        log.info("task_comment", task_id=task_id, assignee=creator.id)
        await self._request(
            "POST",
            f"/task/{task_id}/comment",
            json={"comment_text": f"{mention}{text}", "assignee": creator.id, "notify_all": False},
        )

    async def get_comments(self, task_id: str) -> list[Comment]:
        data = await self._request("GET", f"/task/{task_id}/comment")
        raw_comments = (data or {}).get("comments") or []
        comments = [self._parse_comment(c) for c in raw_comments]
        # oldest first, whatever order the API used
        comments.sort(key=lambda c: c.created_at or datetime.min.replace(tzinfo=UTC))
        return comments

    async def find_linked_pr_url(self, task_id: str) -> str | None:
        comments = await self.get_comments(task_id)
        for comment in reversed(comments):
            match = PR_URL_PATTERN.search(comment.text)
            if match:
                return match.group(0)
        return None

    async def create_task(self, title: str, description: str | None = None) -> Task:
        list_id = await self.list_id()
        body: dict[str, Any] = {
            "name": title,
            "description": description or "",
            "status": self.statuses.name_for(TaskStatus.TODO),
        }
        if self.parent_task_id:
            body["parent"] = self.parent_task_id

        log.info("task_create", title=title, list_id=list_id)
        data = await self._request("POST", f"/list/{list_id}/task", json=body)
        return self._parse_task(data)

    async def validate_statuses(self) -> list[str]:
        list_id = await self.list_id()
        data = await self._request("GET", f"/list/{list_id}")
        available = {s["status"].lower() for s in data.get("statuses", [])}
        missing = [
            self.statuses.name_for(status)
            for status in TaskStatus
            if self.statuses.name_for(status).lower() not in available
        ]
        if missing:
            log.warning("statuses_missing", missing=missing, available=sorted(available))
        else:
            log.info("statuses_validated", list_name=data.get("name"))
        return missing

    def _parse_task(self, data: dict[str, Any]) -> Task:
        """Convert a ClickUp task payload to a Task."""
        creator_data = data.get("creator") or {}
        creator = None
        if creator_data.get("id"):
            creator = TaskCreator(id=creator_data["id"], username=creator_data.get("username"))

        status_name = (data.get("status") or {}).get("status")
        priority = (data.get("priority") or {}).get("priority")

        return Task(
            id=str(data["id"]),
            title=data.get("name", ""),
            description=data.get("text_content") or data.get("description") or "",
            url=data.get("url", ""),
            status=self.statuses.status_for(status_name) if status_name else None,
            creator=creator,
            priority=priority,
            tags=[t["name"] for t in data.get("tags") or [] if t.get("name")],
            checklists=[
                Checklist(
                    name=cl.get("name", ""),
                    items=[
                        ChecklistItem(name=item.get("name", ""), resolved=bool(item.get("resolved")))
                        for item in cl.get("items") or []
                    ],
                )
                for cl in data.get("checklists") or []
            ],
            created_at=_parse_millis(data.get("date_created")),
        )

    def _parse_comment(self, data: dict[str, Any]) -> Comment:
        return Comment(
            id=str(data.get("id", "")),
            text=data.get("comment_text") or "",
            author=(data.get("user") or {}).get("username"),
            created_at=_parse_millis(data.get("date")),
        )


def _priority_rank(data: dict[str, Any]) -> int:
    priority = data.get("priority")
    if not priority:
        return _NO_PRIORITY
    try:
        return int(priority.get("id"))
    except (TypeError, ValueError):
        return _NO_PRIORITY


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_millis(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError):
        return None
