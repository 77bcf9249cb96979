"""clawup: drives ClickUp tasks through an agent-implemented pull request lifecycle."""

__version__ = "0.1.0"
