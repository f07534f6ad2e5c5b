"""Contracts for the supervisor's external collaborators.

The supervisor only depends on these protocols. Concrete adapters for the
workflow log and state file live alongside them; the task queue, rule
checker and desktop notifications are provided by the host application.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from workflow_supervision.events.models import Event, EventHandler
from workflow_supervision.intervention.models import AnomalyType, Priority

logger = logging.getLogger(__name__)

# Task sources recorded on queued tasks
SOURCE_LOG_MONITOR = "log-monitor"
SOURCE_RULE_MONITOR = "iron-law-monitor"


@dataclass(frozen=True)
class RuleViolation:
    """
    A process rule violation reported by the rule compliance checker.

    Attributes:
        law: Numeric identifier of the violated rule
        type: Violation category (e.g., "iron_law_tdd")
        message: Human-readable description
        corrective_action: Optional instruction for fixing the violation
    """

    law: int
    type: str
    message: str
    corrective_action: str | None = None

    @property
    def signature(self) -> str:
        """Deduplication key, namespaced apart from analyzer issues."""
        return f"rule:{self.type}:{self.message}"


@dataclass(frozen=True)
class TaskInput:
    """Input for adding a remediation task to the task queue."""

    priority: Priority
    source: str
    anomaly_type: AnomalyType
    prompt: str
    suggested_agent: str
    context: dict[str, Any] = field(default_factory=dict)


class EventSource(Protocol):
    """Append-only workflow event stream."""

    async def read_all(self) -> list[Event]:
        """Replay every event currently in the log."""
        ...

    def tail(self, on_event: EventHandler) -> None:
        """Push each newly appended event to a callback."""
        ...

    def stop_tail(self) -> None:
        """Stop the live tail."""
        ...


@runtime_checkable
class RuleChecker(Protocol):
    """Independent auditor of process rules.

    check() may be a coroutine function or a plain blocking function; blocking
    checkers are run in a worker thread.
    """

    def check(self) -> Any:
        """Return the current list of RuleViolation objects."""
        ...


class TaskQueue(Protocol):
    """Sink for automated remediation tasks."""

    async def add_task(self, task: TaskInput) -> Any:
        """Add a task and return the queued task."""
        ...


class Notifier(Protocol):
    """Sink for user-facing notifications."""

    def notify(self, title: str, message: str, sound: str) -> None:
        """Deliver a notification."""
        ...


class StateStore(Protocol):
    """Byte store for the persisted workflow state snapshot."""

    async def read(self) -> bytes | None:
        """Return the stored bytes, or None if nothing is stored."""
        ...

    async def write(self, data: bytes) -> None:
        """Replace the stored bytes."""
        ...


class LoggingNotifier:
    """Notifier that writes notifications to the log.

    Alert sounds are logged as warnings, everything else as info.
    """

    def __init__(self, alert_sounds: frozenset[str] = frozenset({"Basso"})) -> None:
        self.alert_sounds = alert_sounds

    def notify(self, title: str, message: str, sound: str) -> None:
        level = logging.WARNING if sound in self.alert_sounds else logging.INFO
        logger.log(level, f"{title}: {message}", extra={"title": title, "sound": sound})
