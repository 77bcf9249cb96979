"""Single-instance lock for a workspace.

The lock file holds ``{"pid": ..., "startedAt": ...}``. A lock is live only
while its owner process is running; a dead owner or unparsable content makes
it stale, and a stale lock is reclaimed with a warning.
"""

import os
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType

import structlog

from clawup.exceptions import LockContentionError
from clawup.models.domain import LockRecord

log = structlog.get_logger(__name__)


def pid_is_running(pid: int) -> bool:
    """Return True if a process with ``pid`` exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    except OSError:
        return False
    return True


class ProcessLock:
    """File-based lock guaranteeing at most one engine per workspace.

    Example:
        >>> with ProcessLock(Path(".clawup.lock")):
        ...     run_engine()
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.pid = os.getpid()
        self.held = False

    def read(self) -> LockRecord | None:
        """Current lock record, or None if missing or unparsable."""
        try:
            return LockRecord.from_json(self.path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            log.warning("lock_unreadable", path=str(self.path), error=str(e))
            return None

    def acquire(self) -> None:
        """Take the lock, reclaiming it if stale.

        Raises:
            LockContentionError: If another live process holds the lock.
        """
        if self.path.exists():
            record = self.read()
            if record is None:
                log.warning("lock_stale_reclaimed", path=str(self.path), reason="unparsable")
            elif record.pid == self.pid:
                log.debug("lock_already_held", path=str(self.path))
            elif pid_is_running(record.pid):
                raise LockContentionError(
                    f"Another instance is already running (PID {record.pid}, started {record.started_at}). "
                    f"Remove {self.path} if it is not.",
                    pid=record.pid,
                    started_at=record.started_at,
                )
            else:
                log.warning("lock_stale_reclaimed", path=str(self.path), reason="owner_dead", stale_pid=record.pid)

        record = LockRecord(pid=self.pid, started_at=datetime.now(UTC).isoformat())
        self.path.write_text(record.to_json())
        self.held = True
        log.info("lock_acquired", path=str(self.path), pid=self.pid)

    def release(self) -> None:
        """Remove the lock file if this process owns it."""
        record = self.read()
        if record is not None and record.pid == self.pid:
            self.path.unlink(missing_ok=True)
            log.info("lock_released", path=str(self.path))
        elif self.path.exists():
            log.warning("lock_not_owned", path=str(self.path), owner=record.pid if record else None)
        self.held = False

    def __enter__(self) -> "ProcessLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
