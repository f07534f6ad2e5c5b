"""Analysis module for workflow health and issue detection."""

from workflow_supervision.analysis.analyzer import WorkflowAnalyzer
from workflow_supervision.analysis.models import (
    CHAIN_STEPS,
    PHASE_ORDER,
    ActiveAgent,
    AnalysisResult,
    AnalysisThresholds,
    ChainStatus,
    HealthStatus,
    Issue,
    IssueType,
)

__all__ = [
    "WorkflowAnalyzer",
    "AnalysisResult",
    "AnalysisThresholds",
    "ActiveAgent",
    "ChainStatus",
    "HealthStatus",
    "Issue",
    "IssueType",
    "CHAIN_STEPS",
    "PHASE_ORDER",
]
