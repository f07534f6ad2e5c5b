"""Intervention data models produced from workflow issues."""

from dataclasses import dataclass
from enum import Enum

from workflow_supervision.analysis.models import Issue


class ResponseType(Enum):
    """How the supervisor responds to an issue."""

    NOTIFY_ONLY = "notify_only"
    AUTO_REMEDIATE = "auto_remediate"
    ESCALATE = "escalate"


class Priority(Enum):
    """Task queue priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnomalyType(Enum):
    """Anomaly categories understood by the task queue."""

    AGENT_LOOP = "agent_loop"
    AGENT_STUCK = "agent_stuck"
    AGENT_ERROR = "agent_error"
    UNUSUAL_PATTERN = "unusual_pattern"
    RECOMMENDED_INVESTIGATION = "recommended_investigation"


@dataclass(frozen=True)
class Notification:
    """User-facing notification."""

    title: str
    message: str
    sound: str


@dataclass(frozen=True)
class QueueTask:
    """Automated remediation task to hand to the task queue."""

    priority: Priority
    prompt: str
    agent_type: str
    anomaly_type: AnomalyType


@dataclass(frozen=True)
class Intervention:
    """
    Transient dispatch artifact derived 1:1 from an issue.

    Attributes:
        response_type: How the supervisor should respond
        notification: Notification to deliver
        issue: Issue the intervention was generated for
        queue_task: Remediation task, only for auto-remediated issue types
    """

    response_type: ResponseType
    notification: Notification
    issue: Issue
    queue_task: QueueTask | None = None
