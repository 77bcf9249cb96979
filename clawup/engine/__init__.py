"""Task orchestration engine.

Key Components:
    - ProcessLock: at most one engine instance per workspace
    - TodoSink: agent follow-up file drained into new tracker tasks
    - ConflictResolver: merges base into task branches, delegating conflicts
    - TaskStateMachine: intake, continuation and merge paths per task
    - CrashRecovery: reconciles orphaned IN_PROGRESS tasks at startup
    - PollScheduler: single-flight poll loop with self-relaunch
"""

from clawup.engine.conflict_resolver import ConflictResolution, ConflictResolver
from clawup.engine.process_lock import ProcessLock
from clawup.engine.recovery import CrashRecovery
from clawup.engine.scheduler import PollScheduler, RunExit, SchedulerState
from clawup.engine.state_machine import TaskStateMachine
from clawup.engine.todo_sink import TodoSink

__all__ = [
    "ConflictResolution",
    "ConflictResolver",
    "CrashRecovery",
    "PollScheduler",
    "ProcessLock",
    "RunExit",
    "SchedulerState",
    "TaskStateMachine",
    "TodoSink",
]
