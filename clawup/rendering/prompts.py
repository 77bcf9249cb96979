"""Prompt and pull request text construction.

Task content, tracker comments and review feedback are untrusted input.
They are length-limited, scanned for known injection phrases (logged, not
removed) and placed inside ``<task>`` / ``<review-feedback>`` blocks with
closing tags escaped so the content cannot leave its block.
"""

from pathlib import Path

import structlog

from clawup.models.domain import AgentMode, Comment, Task
from clawup.rendering.engine import SecureTemplateEngine
from clawup.utils.text import detect_injection_patterns, sanitize_untrusted

log = structlog.get_logger(__name__)

MAX_DESCRIPTION_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000
MAX_COMMENTS_COUNT = 10
MAX_CHECKLIST_ITEM_LENGTH = 500

PROJECT_CONTEXT_FILE = "CLAUDE.md"


class PromptBuilder:
    """Builds agent prompts and pull request bodies from templates."""

    def __init__(
        self,
        project_root: Path,
        base_branch: str = "main",
        todo_file: str = ".clawup.todo.json",
        custom_prompt: str | None = None,
        engine: SecureTemplateEngine | None = None,
    ):
        self.project_root = Path(project_root)
        self.base_branch = base_branch
        self.todo_file = todo_file
        self.custom_prompt = custom_prompt
        self.engine = engine or SecureTemplateEngine()

    def project_context(self) -> str | None:
        """Contents of the project's CLAUDE.md, if present and readable."""
        path = self.project_root / PROJECT_CONTEXT_FILE
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            log.warning("project_context_unreadable", path=str(path), error=str(e))
            return None

    def format_task(self, task: Task, comments: list[Comment] | None = None) -> str:
        """Render the task, its checklists and recent comments as markdown."""
        comments = [c for c in comments or [] if c.text.strip()]

        untrusted = "\n".join([task.title, task.description, *(c.text for c in comments)])
        matches = detect_injection_patterns(untrusted)
        if matches:
            log.warning("prompt_injection_suspected", task_id=task.id, patterns=matches)

        return self.engine.render(
            "task_content.md.j2",
            {
                "task": task,
                "comments": comments[-MAX_COMMENTS_COUNT:],
                "total_comments": len(comments),
                "max_description": MAX_DESCRIPTION_LENGTH,
                "max_comment": MAX_COMMENT_LENGTH,
                "max_checklist_item": MAX_CHECKLIST_ITEM_LENGTH,
            },
        )

    def task_prompt(
        self,
        task: Task,
        comments: list[Comment] | None = None,
        mode: AgentMode = AgentMode.FRESH,
        feedback: str | None = None,
    ) -> str:
        """Full agent prompt for implementing, continuing or revising a task."""
        if mode is AgentMode.REVIEW_FEEDBACK and not feedback:
            raise ValueError("feedback is required in review feedback mode")

        return self.engine.render(
            "agent_task.md.j2",
            {
                "mode": mode.value,
                "task_id": task.id,
                "base_branch": self.base_branch,
                "todo_file": self.todo_file,
                "project_context": self.project_context(),
                "custom_prompt": self.custom_prompt,
                "feedback": sanitize_untrusted(feedback or ""),
                "task_content": sanitize_untrusted(self.format_task(task, comments)),
            },
        )

    def conflict_prompt(self, branch: str, files: list[str]) -> str:
        return self.engine.render(
            "conflict_resolution.md.j2",
            {"branch": branch, "base_branch": self.base_branch, "files": files},
        )

    def draft_pr_body(self, task: Task) -> str:
        return self.engine.render("draft_pr_body.md.j2", {"task": task})

    def pr_body(self, task: Task, files: list[str]) -> str:
        return self.engine.render("pr_body.md.j2", {"task": task, "files": files})
