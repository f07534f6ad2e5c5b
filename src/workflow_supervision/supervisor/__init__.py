"""Supervisor module - live workflow monitoring and intervention dispatch."""

from workflow_supervision.supervisor.config import (
    MonitorMode,
    SupervisorConfig,
    load_config,
    parse_config,
)
from workflow_supervision.supervisor.interfaces import (
    EventSource,
    LoggingNotifier,
    Notifier,
    RuleChecker,
    RuleViolation,
    StateStore,
    TaskInput,
    TaskQueue,
)
from workflow_supervision.supervisor.state import FileStateStore, WorkflowState
from workflow_supervision.supervisor.supervisor import SupervisorStatus, WorkflowSupervisor

__all__ = [
    "WorkflowSupervisor",
    "SupervisorStatus",
    "SupervisorConfig",
    "MonitorMode",
    "load_config",
    "parse_config",
    "WorkflowState",
    "FileStateStore",
    "EventSource",
    "RuleChecker",
    "RuleViolation",
    "TaskQueue",
    "TaskInput",
    "Notifier",
    "LoggingNotifier",
    "StateStore",
]
