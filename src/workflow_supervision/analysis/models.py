"""Data models for workflow analysis and issue detection."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Fixed workflow chain, in order
CHAIN_STEPS: tuple[str, ...] = ("ideate", "plan", "build", "ship")

# Expected TDD phase order within a build cycle
PHASE_ORDER: tuple[str, ...] = ("RED", "GREEN", "REFACTOR")


class IssueType(Enum):
    """Closed set of workflow issue types."""

    # Negative signals (presence of bad)
    LOOP_DETECTED = "loop_detected"
    PHASE_STUCK = "phase_stuck"
    REGRESSION = "regression"
    OUT_OF_ORDER = "out_of_order"
    CHAIN_BROKEN = "chain_broken"
    TDD_VIOLATION = "tdd_violation"
    EXPLICIT_FAILURE = "explicit_failure"
    AGENT_FAILED = "agent_failed"

    # Positive signal erosion (absence of good)
    SILENCE = "silence"
    MISSING_MILESTONES = "missing_milestones"
    DECLINING_VELOCITY = "declining_velocity"
    INCOMPLETE_OUTPUTS = "incomplete_outputs"
    AGENT_SILENCE = "agent_silence"

    # Hard stops
    ABRUPT_STOP = "abrupt_stop"
    PARTIAL_COMPLETION = "partial_completion"
    ABANDONED_AGENT = "abandoned_agent"


class HealthStatus(Enum):
    """Overall workflow health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class ChainStatus(Enum):
    """Status of one chain step. Ordered: a step only moves forward."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _CHAIN_RANK[self]


_CHAIN_RANK = {ChainStatus.PENDING: 0, ChainStatus.IN_PROGRESS: 1, ChainStatus.COMPLETE: 2}


def empty_chain_progress() -> dict[str, ChainStatus]:
    """Chain progress with every step pending."""
    return {step: ChainStatus.PENDING for step in CHAIN_STEPS}


@dataclass(frozen=True)
class Issue:
    """
    A detected workflow problem.

    Issues are derived: they are recomputed from the event history on every
    analysis pass and never stored on their own.

    Attributes:
        type: Issue type
        message: Human-readable description, stable for one occurrence
        confidence: Confidence score (0.0-1.0)
        evidence: Supporting data (durations, phases, counts)
    """

    type: IssueType
    message: str
    confidence: float
    evidence: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate confidence score range."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")

    @property
    def signature(self) -> str:
        """Deduplication key identifying this issue instance."""
        return f"{self.type.value}:{self.message}"


@dataclass
class ActiveAgent:
    """Sub-agent lifecycle as reconstructed from the log."""

    id: str
    type: str
    spawn_time: datetime
    started: bool = False
    completed: bool = False


@dataclass(frozen=True)
class AnalysisThresholds:
    """
    Timing and repetition thresholds for issue detection.

    Attributes:
        silence_seconds: Inactivity before a silence warning
        phase_stuck_seconds: Phase runtime without completion before it is stuck
        abrupt_stop_seconds: Inactivity before an abrupt stop with no progress
        agent_silence_seconds: Time for a spawned agent to start producing entries
        agent_abandoned_seconds: Time for a started agent to complete
        loop_window: Number of most recent events inspected for loops
        loop_repeat_bound: Consecutive repeats that count as a loop
        velocity_factor: Multiple of the average gap that flags a slowdown
        velocity_min_milestones: Milestones needed before velocity is judged
    """

    silence_seconds: float = 90.0
    phase_stuck_seconds: float = 240.0
    abrupt_stop_seconds: float = 150.0
    agent_silence_seconds: float = 50.0
    agent_abandoned_seconds: float = 90.0
    loop_window: int = 10
    loop_repeat_bound: int = 3
    velocity_factor: float = 2.0
    velocity_min_milestones: int = 4


@dataclass
class AnalysisResult:
    """
    Result of analyzing the full workflow history.

    Recomputed on every new batch of events; only its WorkflowState
    projection is ever persisted.
    """

    chain_progress: dict[str, ChainStatus]
    milestone_timestamps: list[datetime]
    issues: list[Issue]
    health: HealthStatus
    current_command: str | None = None
    current_phase: str | None = None
    last_activity_time: datetime | None = None
    phase_start_time: datetime | None = None
    active_agents: list[ActiveAgent] = field(default_factory=list)

    def issues_of(self, issue_type: IssueType) -> list[Issue]:
        """Return the issues of one type."""
        return [issue for issue in self.issues if issue.type == issue_type]
