"""Workflow log events, log reading and the observer bus."""

from workflow_supervision.events.bus import OBSERVER_TOPICS, ObserverBus
from workflow_supervision.events.models import (
    EVENT_KIND_DESCRIPTIONS,
    Event,
    EventHandler,
    EventKind,
)
from workflow_supervision.events.source import JsonlEventSource

__all__ = [
    "Event",
    "EventHandler",
    "EventKind",
    "EVENT_KIND_DESCRIPTIONS",
    "JsonlEventSource",
    "ObserverBus",
    "OBSERVER_TOPICS",
]
