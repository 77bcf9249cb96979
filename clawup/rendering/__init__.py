"""Template rendering for agent prompts and pull request descriptions.

Key Exports:
    SecureTemplateEngine: Sandboxed Jinja2 environment over the package templates.
    PromptBuilder: Builds agent prompts and PR bodies from tasks.
"""

from clawup.rendering.engine import SecureTemplateEngine
from clawup.rendering.prompts import PromptBuilder

__all__ = ["PromptBuilder", "SecureTemplateEngine"]
