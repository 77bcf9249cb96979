"""Drains agent-declared follow-up items into new tracker tasks."""

import json
from pathlib import Path

import aiofiles
import structlog

from clawup.models.domain import FollowUpItem
from clawup.providers.base import TaskTracker

log = structlog.get_logger(__name__)


class TodoSink:
    """Turns the agent's follow-up file into tracker tasks.

    The file is deleted after every drain whatever happened while reading
    it or creating tasks, so a malformed file is never processed twice.
    It must be drained before any commit that would capture it.
    """

    def __init__(self, path: Path | str, tracker: TaskTracker):
        self.path = Path(path)
        self.tracker = tracker

    async def drain(self) -> int:
        """Create one task per valid follow-up record.

        Returns:
            Number of tasks created.
        """
        if not self.path.exists():
            return 0

        created = 0
        try:
            items = await self._read_items()
            for item in items:
                try:
                    await self.tracker.create_task(item.title, item.description)
                    created += 1
                    log.info("follow_up_created", title=item.title)
                except Exception as e:
                    log.error("follow_up_create_failed", title=item.title, error=str(e))
        finally:
            self.path.unlink(missing_ok=True)

        log.info("follow_ups_drained", path=str(self.path), created=created)
        return created

    async def _read_items(self) -> list[FollowUpItem]:
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                data = json.loads(await f.read())
        except (OSError, ValueError) as e:
            log.error("follow_up_file_invalid", path=str(self.path), error=str(e))
            return []

        if not isinstance(data, list):
            log.error("follow_up_file_invalid", path=str(self.path), error="expected a JSON array")
            return []

        items = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            title = entry.get("title")
            if not isinstance(title, str) or not title.strip():
                continue
            description = entry.get("description")
            items.append(
                FollowUpItem(
                    title=title.strip(),
                    description=description if isinstance(description, str) else None,
                )
            )
        return items
