"""Event data models and types for the workflow log."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from workflow_supervision.exceptions import MalformedEventError


class EventKind(Enum):
    """Lifecycle event kinds written to the workflow log."""

    START = "START"
    PHASE_START = "PHASE_START"
    MILESTONE = "MILESTONE"
    PHASE_COMPLETE = "PHASE_COMPLETE"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    AGENT_SPAWN = "AGENT_SPAWN"
    AGENT_COMPLETE = "AGENT_COMPLETE"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp, treating naive values as UTC.

    Args:
        value: ISO string (a trailing "Z" is accepted) or datetime

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the value is not a parseable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the workflow log writes it."""
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Event:
    """
    Immutable workflow log entry.

    Events are never modified once appended. Ordering is the append order;
    the timestamp is informational only.

    Attributes:
        timestamp: When the entry was written
        command: Workflow command that emitted it (e.g., "build")
        kind: Lifecycle event kind
        phase: Optional TDD phase ("RED", "GREEN", "REFACTOR")
        payload: Event-specific data
        agent_id: Sub-agent that emitted the entry, if any
        agent_type: Type of that sub-agent, if known
    """

    timestamp: datetime
    command: str
    kind: EventKind
    phase: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    agent_id: str | None = None
    agent_type: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """
        Build an Event from a parsed log line.

        Expected shape: {"ts", "cmd", "event", "phase"?, "data"?, "agent"?}

        Raises:
            MalformedEventError: If required fields are missing or invalid
        """
        if not isinstance(data, dict):
            raise MalformedEventError(f"Log entry must be an object, got {type(data).__name__}")

        for key in ("ts", "cmd", "event"):
            if key not in data:
                raise MalformedEventError(f"Log entry is missing '{key}'")

        try:
            timestamp = parse_timestamp(data["ts"])
        except ValueError as e:
            raise MalformedEventError(f"Invalid timestamp {data['ts']!r}: {e}") from e

        try:
            kind = EventKind(data["event"])
        except ValueError as e:
            raise MalformedEventError(f"Unknown event kind {data['event']!r}") from e

        command = data["cmd"]
        if not isinstance(command, str):
            raise MalformedEventError(f"Command must be a string, got {command!r}")

        phase = data.get("phase")
        if phase is not None and not isinstance(phase, str):
            raise MalformedEventError(f"Phase must be a string, got {phase!r}")

        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise MalformedEventError("Event data must be an object")

        agent = data.get("agent") or {}
        if not isinstance(agent, dict):
            raise MalformedEventError("Agent info must be an object")

        return cls(
            timestamp=timestamp,
            command=command,
            kind=kind,
            phase=phase,
            payload=dict(payload),
            agent_id=agent.get("id"),
            agent_type=agent.get("type"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the log line shape."""
        data: dict[str, Any] = {
            "ts": format_timestamp(self.timestamp),
            "cmd": self.command,
            "event": self.kind.value,
            "data": dict(self.payload),
        }
        if self.phase is not None:
            data["phase"] = self.phase
        if self.agent_id is not None:
            data["agent"] = {"id": self.agent_id, "type": self.agent_type}
        return data


class EventHandler(Protocol):
    """
    Callback invoked for each event delivered by a live tail.

    Example:
        def on_event(event: Event) -> None:
            print(f"{event.command}: {event.kind.value}")

        source.tail(on_event)
    """

    def __call__(self, event: Event) -> None:
        """
        Process an event.

        Args:
            event: The event to process
        """
        ...


# Human-readable descriptions of each event kind
EVENT_KIND_DESCRIPTIONS: dict[EventKind, str] = {
    EventKind.START: "Command execution began",
    EventKind.PHASE_START: "TDD phase began",
    EventKind.MILESTONE: "Progress checkpoint reached",
    EventKind.PHASE_COMPLETE: "TDD phase finished",
    EventKind.COMPLETE: "Command execution finished",
    EventKind.FAILED: "Command execution failed",
    EventKind.AGENT_SPAWN: "Sub-agent spawned",
    EventKind.AGENT_COMPLETE: "Sub-agent finished",
}
