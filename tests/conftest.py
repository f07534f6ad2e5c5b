"""Shared fixtures for workflow supervision tests."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from workflow_supervision.events.models import Event, EventHandler, EventKind

EventFactory = Callable[..., Event]


class FakeEventSource:
    """In-memory event source; emit() plays the role of the live tail."""

    def __init__(self, events: list[Event] | None = None):
        self.events = list(events or [])
        self.handler: EventHandler | None = None
        self.read_all_error: Exception | None = None
        self.stop_calls = 0

    async def read_all(self) -> list[Event]:
        if self.read_all_error is not None:
            raise self.read_all_error
        return list(self.events)

    def tail(self, on_event: EventHandler) -> None:
        self.handler = on_event

    def stop_tail(self) -> None:
        self.stop_calls += 1
        self.handler = None

    def emit(self, event: Event) -> None:
        self.events.append(event)
        if self.handler is not None:
            self.handler(event)


class MemoryStateStore:
    """State store keeping the snapshot bytes in memory."""

    def __init__(self, data: bytes | None = None):
        self.data = data
        self.writes: list[bytes] = []

    async def read(self) -> bytes | None:
        return self.data

    async def write(self, data: bytes) -> None:
        self.data = data
        self.writes.append(data)


@pytest.fixture
def base_time() -> datetime:
    """Fixed reference time for event timestamps."""
    return datetime(2025, 1, 15, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def make_event(base_time: datetime) -> EventFactory:
    """Factory building events at an offset (seconds) from base_time."""

    def _make(
        offset: float,
        command: str,
        kind: EventKind,
        phase: str | None = None,
        payload: dict[str, Any] | None = None,
        agent_id: str | None = None,
        agent_type: str | None = None,
    ) -> Event:
        return Event(
            timestamp=base_time + timedelta(seconds=offset),
            command=command,
            kind=kind,
            phase=phase,
            payload=payload or {},
            agent_id=agent_id,
            agent_type=agent_type,
        )

    return _make


@pytest.fixture
def fake_source() -> FakeEventSource:
    return FakeEventSource()


@pytest.fixture
def state_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def task_queue() -> MagicMock:
    """Task queue whose add_task is awaitable."""
    queue = MagicMock()
    queue.add_task = AsyncMock(return_value={"id": "task-1"})
    return queue


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()
