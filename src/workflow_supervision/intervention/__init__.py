"""Intervention mapping from workflow issues to notifications and tasks."""

from workflow_supervision.intervention.generator import InterventionGenerator
from workflow_supervision.intervention.models import (
    AnomalyType,
    Intervention,
    Notification,
    Priority,
    QueueTask,
    ResponseType,
)

__all__ = [
    "InterventionGenerator",
    "Intervention",
    "Notification",
    "QueueTask",
    "Priority",
    "ResponseType",
    "AnomalyType",
]
