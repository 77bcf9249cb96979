"""Sandboxed Jinja2 rendering for agent prompts and pull request text.

Templates live in the package's ``templates`` directory. The environment is
a ``SandboxedEnvironment`` with ``StrictUndefined`` so a template can neither
reach unsafe attributes of the task objects passed to it nor silently render
a missing variable as an empty string.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, cast

from jinja2 import FileSystemLoader, StrictUndefined, TemplateNotFound
from jinja2.sandbox import SandboxedEnvironment

from clawup.utils.text import sanitize_untrusted, truncate


def date_only(value: datetime | str | None) -> str:
    """Format a timestamp as ``YYYY-MM-DD``."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    return str(value).split("T")[0]


class SecureTemplateEngine:
    """Sandboxed Jinja2 environment rooted at a template directory.

    Attributes:
        template_dir: Resolved path to the template directory.
        env: The SandboxedEnvironment instance.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        """Initialize the engine.

        Args:
            template_dir: Root directory for templates. Defaults to the
                package's built-in templates.

        Raises:
            ValueError: If template_dir doesn't exist or isn't a directory.
        """
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"

        self.template_dir = template_dir.resolve()
        if not self.template_dir.is_dir():
            raise ValueError(f"Template directory does not exist: {self.template_dir}")

        self.env = SandboxedEnvironment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self.env.filters.update(
            {
                "truncate_text": truncate,
                "untrusted": sanitize_untrusted,
                "date_only": date_only,
            }
        )

    def validate_template_path(self, template_path: str) -> Path:
        """Resolve a template path, refusing anything outside template_dir.

        Raises:
            ValueError: If the path escapes the template directory.
            TemplateNotFound: If the template file doesn't exist.
        """
        requested_path = (self.template_dir / template_path).resolve()
        try:
            requested_path.relative_to(self.template_dir)
        except ValueError as e:
            raise ValueError(f"Template path escapes template directory: {template_path}") from e

        if not requested_path.exists():
            raise TemplateNotFound(template_path)
        return requested_path

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a template with the given context.

        Raises:
            TemplateNotFound: If the template doesn't exist.
            jinja2.UndefinedError: If the template uses an undefined variable.
        """
        self.validate_template_path(template_path)
        template = self.env.get_template(template_path)
        return cast(str, template.render(**context))

    def list_templates(self, pattern: str = "*.j2") -> list[str]:
        return sorted(
            str(path.relative_to(self.template_dir)) for path in self.template_dir.glob(pattern) if path.is_file()
        )
