"""Custom exception hierarchy for clawup.

Exception Hierarchy:
    ClawupError (base)
    ├── ConfigurationError
    ├── LockContentionError
    ├── InvalidTaskIdError
    ├── GitOperationError
    ├── TrackerError
    └── AgentError
        └── AgentTimeoutError

Errors raised by the collaborator clients (tracker, VCS, agent) propagate up
to the task-processing boundary in the engine, where they are converted into
a ``BLOCKED`` task status plus a notification to the task creator. Only
``LockContentionError`` and ``ConfigurationError`` are fatal to the process.

Example Usage:
    >>> from clawup.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""


class ClawupError(Exception):
    """Base exception for all clawup errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(ClawupError):
    """Configuration file missing, malformed, or failing validation."""

    pass


class LockContentionError(ClawupError):
    """Another live engine instance holds the workspace lock.

    Attributes:
        pid: Process id recorded in the competing lock
        started_at: Start timestamp recorded in the competing lock
    """

    def __init__(self, message: str, pid: int | None = None, started_at: str | None = None) -> None:
        self.pid = pid
        self.started_at = started_at
        super().__init__(message)


class InvalidTaskIdError(ClawupError):
    """Task identifier does not match the accepted format.

    Raised before the identifier is used in a branch name or a subprocess
    argument.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Invalid task ID format: {task_id!r}")


class GitOperationError(ClawupError):
    """A git or gh command failed.

    Attributes:
        command: The command line that failed
        stderr: Captured standard error of the failed command
    """

    def __init__(self, message: str, command: str | None = None, stderr: str | None = None) -> None:
        self.command = command
        self.stderr = stderr
        full_message = message
        if stderr:
            full_message = f"{message}: {stderr.strip()}"
        super().__init__(full_message)
        self.message = message


class TrackerError(ClawupError):
    """Task tracker API errors.

    Attributes:
        status_code: HTTP status code (if applicable)
        response_text: Response body text (if applicable)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class AgentError(ClawupError):
    """Coding agent could not be started or crashed.

    Attributes:
        task_id: Task being worked on when the error occurred
    """

    def __init__(self, message: str, task_id: str | None = None) -> None:
        self.task_id = task_id
        full_message = f"{message} (task: {task_id})" if task_id else message
        super().__init__(full_message)
        self.message = message


class AgentTimeoutError(AgentError):
    """Agent exceeded its wall-clock timeout and was terminated."""

    def __init__(self, timeout_seconds: float, task_id: str | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Agent timed out after {timeout_seconds:g}s", task_id=task_id)
