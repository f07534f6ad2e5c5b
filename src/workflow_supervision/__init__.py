"""Workflow supervision - log-driven anomaly detection and intervention dispatch."""

from workflow_supervision.analysis import AnalysisResult, Issue, IssueType, WorkflowAnalyzer
from workflow_supervision.events import Event, EventKind, JsonlEventSource
from workflow_supervision.exceptions import (
    ConfigError,
    MalformedEventError,
    SupervisionError,
    UnmappedIssueError,
)
from workflow_supervision.intervention import InterventionGenerator
from workflow_supervision.logging_manager import configure_logging
from workflow_supervision.supervisor import (
    FileStateStore,
    SupervisorConfig,
    WorkflowState,
    WorkflowSupervisor,
    load_config,
)

__version__ = "0.1.0"

__all__ = [
    "WorkflowSupervisor",
    "SupervisorConfig",
    "load_config",
    "WorkflowState",
    "FileStateStore",
    "JsonlEventSource",
    "Event",
    "EventKind",
    "WorkflowAnalyzer",
    "AnalysisResult",
    "Issue",
    "IssueType",
    "InterventionGenerator",
    "configure_logging",
    "SupervisionError",
    "MalformedEventError",
    "UnmappedIssueError",
    "ConfigError",
]
