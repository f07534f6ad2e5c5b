"""Workflow analyzer for detecting loops, stalls, ordering and rule problems.

Detects:
- Negative signals (presence of bad): loops, stuck phases, regressions, failures
- Positive signal erosion (absence of good): silence, missing milestones, declining velocity
- Hard stops (positive signals ceased): abrupt stops, partial completion, abandoned agents
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

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
    empty_chain_progress,
)
from workflow_supervision.events.models import Event, EventKind, format_timestamp

logger = logging.getLogger(__name__)

# Commands that require at least one completed predecessor
CHAIN_PREREQUISITES: dict[str, tuple[str, ...]] = {
    "build": ("plan", "ideate"),
    "ship": ("build",),
}

# Commands whose COMPLETE must list outputs
EXPECTED_OUTPUT_COMMANDS = frozenset({"ideate", "plan", "build"})

# Minimum milestones per command and per TDD phase
EXPECTED_COMMAND_MILESTONES: dict[str, int] = {"ideate": 1, "plan": 1, "build": 1}
EXPECTED_PHASE_MILESTONES: dict[str, int] = {"RED": 1, "GREEN": 1, "REFACTOR": 0}

# Phase transitions allowed inside a build cycle; None is "no phase yet"
ALLOWED_PHASE_TRANSITIONS: dict[str | None, frozenset[str]] = {
    None: frozenset({"RED"}),
    "RED": frozenset({"RED", "GREEN"}),
    "GREEN": frozenset({"GREEN", "REFACTOR", "RED"}),
    "REFACTOR": frozenset({"REFACTOR", "RED"}),
}

# Structural violations are not probabilistic
TDD_VIOLATION_CONFIDENCE = 0.95
OUT_OF_ORDER_CONFIDENCE = 0.92


@dataclass
class _ScanState:
    """Fold of the event history used by the time-based detectors."""

    chain_progress: dict[str, ChainStatus] = field(default_factory=empty_chain_progress)
    current_command: str | None = None
    current_phase: str | None = None
    phase_start_time: datetime | None = None
    last_activity_time: datetime | None = None
    milestone_timestamps: list[datetime] = field(default_factory=list)
    agents: dict[str, ActiveAgent] = field(default_factory=dict)
    command_active: bool = False
    command_milestones: int = 0
    phase_complete: bool = False
    completed_phases: list[str] = field(default_factory=list)


def _ms(seconds: float) -> int:
    return int(round(seconds * 1000))


def _milestone_name(event: Event) -> str:
    name = event.payload.get("name")
    if isinstance(name, str) and name:
        return name
    return json.dumps(event.payload, sort_keys=True, default=str)


def _count(value: Any) -> int:
    """Count an outputs-like payload value (list or integer)."""
    if isinstance(value, list | tuple):
        return len(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


class WorkflowAnalyzer:
    """
    Analyzes the full workflow event history and scores health issues.

    The analyzer is a pure function of (events, now): it keeps no state
    between calls and re-scans the entire history every time. All matching
    issues are returned, including ones whose signals overlap.

    Example:
        analyzer = WorkflowAnalyzer()
        result = analyzer.analyze(events, now=datetime.now(UTC))
        if result.health is HealthStatus.CRITICAL:
            ...
    """

    def __init__(self, thresholds: AnalysisThresholds | None = None) -> None:
        """
        Initialize the analyzer.

        Args:
            thresholds: Detection thresholds (defaults if None)
        """
        self.thresholds = thresholds or AnalysisThresholds()

    def analyze(self, events: list[Event], now: datetime | None = None) -> AnalysisResult:
        """
        Analyze the event history and detect issues.

        Args:
            events: Every event observed so far, in append order
            now: Reference clock for time-based detection (defaults to current UTC time)

        Returns:
            AnalysisResult with chain progress, issues and overall health
        """
        if now is None:
            now = datetime.now(UTC)

        state = self._build_state(events)
        issues: list[Issue] = []

        # Negative signals
        self._detect_loops(events, issues)
        self._detect_phase_order(events, issues)
        self._detect_chain_violations(events, issues)
        self._detect_failures(events, issues)
        self._detect_stuck_phase(state, now, issues)

        # Positive signal erosion
        self._detect_completion_gaps(events, issues)
        self._detect_inactivity(state, now, issues)
        self._detect_declining_velocity(state, issues)
        self._detect_agent_problems(events, state, now, issues)

        health = self._calculate_health(issues)

        logger.debug(
            "Workflow analysis completed",
            extra={
                "event_count": len(events),
                "issue_count": len(issues),
                "health": health.value,
            },
        )

        return AnalysisResult(
            chain_progress=dict(state.chain_progress),
            milestone_timestamps=list(state.milestone_timestamps),
            issues=issues,
            health=health,
            current_command=state.current_command,
            current_phase=state.current_phase,
            last_activity_time=state.last_activity_time,
            phase_start_time=state.phase_start_time,
            active_agents=list(state.agents.values()),
        )

    def _build_state(self, events: list[Event]) -> _ScanState:
        state = _ScanState()

        for event in events:
            state.last_activity_time = event.timestamp

            if state.current_command is None and event.command:
                state.current_command = event.command

            if event.kind == EventKind.MILESTONE:
                state.milestone_timestamps.append(event.timestamp)
                state.command_milestones += 1

            if event.kind == EventKind.AGENT_SPAWN:
                agent_id = event.payload.get("agent_id") or event.agent_id
                if agent_id:
                    state.agents[str(agent_id)] = ActiveAgent(
                        id=str(agent_id),
                        type=str(event.payload.get("agent_type") or event.agent_type or "unknown"),
                        spawn_time=event.timestamp,
                    )
                continue

            if event.kind == EventKind.AGENT_COMPLETE:
                agent = state.agents.get(str(event.payload.get("agent_id") or event.agent_id))
                if agent:
                    agent.completed = True
                continue

            # Entries written by a sub-agent show it is alive; they do not
            # drive the parent command's lifecycle
            if event.agent_id is not None:
                agent = state.agents.get(event.agent_id)
                if agent:
                    agent.started = True
                continue

            if event.kind == EventKind.START:
                state.current_command = event.command
                state.current_phase = None
                state.phase_start_time = None
                state.command_active = True
                state.command_milestones = 0
                state.phase_complete = False
                state.completed_phases = []
                status = state.chain_progress.get(event.command)
                if status is not None and status != ChainStatus.COMPLETE:
                    state.chain_progress[event.command] = ChainStatus.IN_PROGRESS

            elif event.kind == EventKind.COMPLETE:
                state.command_active = False
                if event.command in state.chain_progress:
                    state.chain_progress[event.command] = ChainStatus.COMPLETE

            elif event.kind == EventKind.FAILED:
                state.command_active = False

            elif event.kind == EventKind.PHASE_START and event.phase:
                state.current_phase = event.phase
                state.phase_start_time = event.timestamp
                state.phase_complete = False

            elif event.kind == EventKind.PHASE_COMPLETE:
                if event.phase is None or event.phase == state.current_phase:
                    state.phase_complete = True
                if event.phase and event.phase not in state.completed_phases:
                    state.completed_phases.append(event.phase)

        return state

    def _detect_loops(self, events: list[Event], issues: list[Issue]) -> None:
        """Flag the same milestone repeated consecutively in the recent window."""
        # Anchor each run at its first milestone in the full history so the
        # message stays stable while the window slides over a long run
        run_starts: dict[int, Event] = {}
        run_start: Event | None = None
        previous: tuple[str, str | None, str] | None = None
        for event in events:
            if event.kind != EventKind.MILESTONE:
                continue
            key = (event.command, event.phase, _milestone_name(event))
            if key != previous:
                run_start = event
                previous = key
            run_starts[id(event)] = run_start

        window = events[-self.thresholds.loop_window :]
        milestones = [e for e in window if e.kind == EventKind.MILESTONE]

        best_count = 0
        best_key: tuple[str, str | None, str] | None = None
        best_start: Event | None = None
        run_count = 0
        last_key: tuple[str, str | None, str] | None = None

        for event in milestones:
            key = (event.command, event.phase, _milestone_name(event))
            if key == last_key:
                run_count += 1
            else:
                run_count = 1
                last_key = key
            if run_count > best_count:
                best_count = run_count
                best_key = key
                best_start = run_starts[id(event)]

        if best_key is None or best_count < self.thresholds.loop_repeat_bound:
            return

        command, phase, name = best_key
        where = f"{command}/{phase}" if phase else command
        since = format_timestamp(best_start.timestamp)
        confidence = min(0.98, 0.85 + (best_count - self.thresholds.loop_repeat_bound) * 0.03)
        issues.append(
            Issue(
                type=IssueType.LOOP_DETECTED,
                message=f"Milestone '{name}' repeated consecutively in {where} since {since}",
                confidence=confidence,
                evidence={"command": command, "phase": phase, "repeat_count": best_count},
            )
        )

    def _detect_phase_order(self, events: list[Event], issues: list[Issue]) -> None:
        """Flag GREEN before RED and any phase outside RED -> GREEN -> REFACTOR."""
        cycle_start: datetime | None = None
        last_phase: str | None = None
        seen_red = False

        for event in events:
            if event.agent_id is not None:
                continue

            if event.kind == EventKind.START and event.command == "build":
                cycle_start = event.timestamp
                last_phase = None
                seen_red = False
                continue

            if event.kind != EventKind.PHASE_START or event.phase not in PHASE_ORDER:
                continue

            phase = event.phase
            cycle = f" in build cycle started {format_timestamp(cycle_start)}" if cycle_start else ""

            if cycle_start is not None:
                if phase == "RED":
                    seen_red = True
                elif phase == "GREEN" and not seen_red:
                    issues.append(
                        Issue(
                            type=IssueType.TDD_VIOLATION,
                            message=(
                                "GREEN phase started without RED phase first"
                                f"{cycle} (write tests before implementation)"
                            ),
                            confidence=TDD_VIOLATION_CONFIDENCE,
                            evidence={"violation": "green_before_red", "phase": phase},
                        )
                    )

            if phase not in ALLOWED_PHASE_TRANSITIONS[last_phase]:
                previous = last_phase or "no prior phase"
                issues.append(
                    Issue(
                        type=IssueType.OUT_OF_ORDER,
                        message=(
                            f"Phase {phase} started after {previous} at "
                            f"{format_timestamp(event.timestamp)}, expected order: "
                            f"{' → '.join(PHASE_ORDER)}"
                        ),
                        confidence=OUT_OF_ORDER_CONFIDENCE,
                        evidence={"started": phase, "previous": last_phase, "expected": list(PHASE_ORDER)},
                    )
                )

            last_phase = phase

    def _detect_chain_violations(self, events: list[Event], issues: list[Issue]) -> None:
        """Flag restarts of completed steps and steps started without prerequisites."""
        completed: set[str] = set()
        first_step = True

        for event in events:
            if event.agent_id is not None or event.command not in CHAIN_STEPS:
                continue

            if event.kind == EventKind.COMPLETE:
                completed.add(event.command)
                continue

            if event.kind != EventKind.START:
                continue

            started_at = format_timestamp(event.timestamp)

            if event.command in completed:
                issues.append(
                    Issue(
                        type=IssueType.REGRESSION,
                        message=f"Step {event.command} restarted at {started_at} after it had completed",
                        confidence=0.9,
                        evidence={"command": event.command},
                    )
                )

            prerequisites = CHAIN_PREREQUISITES.get(event.command)
            if prerequisites and not completed.intersection(prerequisites):
                # Joining an existing workflow mid-session is plausible for the first step seen
                issues.append(
                    Issue(
                        type=IssueType.CHAIN_BROKEN,
                        message=(
                            f"Command {event.command} started at {started_at} without completing "
                            f"prerequisite: {' or '.join(prerequisites)}"
                        ),
                        confidence=0.6 if first_step else 0.75,
                        evidence={
                            "command": event.command,
                            "expected_prerequisites": list(prerequisites),
                        },
                    )
                )

            first_step = False

    def _detect_failures(self, events: list[Event], issues: list[Issue]) -> None:
        """Flag FAILED events, failed agents and failures after a completed phase."""
        completed_phase: str | None = None

        for event in events:
            if event.kind == EventKind.START and event.agent_id is None:
                completed_phase = None

            elif event.kind == EventKind.PHASE_COMPLETE:
                completed_phase = event.phase or completed_phase

            elif event.kind == EventKind.AGENT_COMPLETE:
                if event.payload.get("status") == "failed":
                    agent = event.payload.get("agent_type") or event.payload.get("agent_id")
                    agent = agent or event.agent_type or event.agent_id or "unknown"
                    error = event.payload.get("error") or "Unknown error"
                    issues.append(
                        Issue(
                            type=IssueType.AGENT_FAILED,
                            message=f"Agent {agent} failed: {error}",
                            confidence=0.9,
                            evidence={
                                "agent_id": event.payload.get("agent_id") or event.agent_id,
                                "error": event.payload.get("error"),
                            },
                        )
                    )

            elif event.kind == EventKind.FAILED:
                error = event.payload.get("error") or "Unknown error"
                if event.agent_id is not None:
                    issues.append(
                        Issue(
                            type=IssueType.AGENT_FAILED,
                            message=f"Agent {event.agent_type or event.agent_id} failed: {error}",
                            confidence=0.9,
                            evidence={"agent_id": event.agent_id, "error": event.payload.get("error")},
                        )
                    )
                    continue

                issues.append(
                    Issue(
                        type=IssueType.EXPLICIT_FAILURE,
                        message=f"Command {event.command} failed: {error}",
                        confidence=0.95,
                        evidence={"command": event.command, "error": event.payload.get("error")},
                    )
                )

                if completed_phase:
                    issues.append(
                        Issue(
                            type=IssueType.REGRESSION,
                            message=(
                                f"Command {event.command} failed at "
                                f"{format_timestamp(event.timestamp)} after {completed_phase} "
                                "phase completed successfully"
                            ),
                            confidence=0.9,
                            evidence={
                                "completed_phase": completed_phase,
                                "error": event.payload.get("error"),
                            },
                        )
                    )

    def _detect_stuck_phase(self, state: _ScanState, now: datetime, issues: list[Issue]) -> None:
        """Flag a running phase that has not completed within the stuck threshold."""
        if not state.command_active or state.phase_start_time is None or state.phase_complete:
            return

        elapsed = (now - state.phase_start_time).total_seconds()
        if elapsed <= self.thresholds.phase_stuck_seconds:
            return

        since = format_timestamp(state.phase_start_time)
        issues.append(
            Issue(
                type=IssueType.PHASE_STUCK,
                message=f"Phase {state.current_phase} of {state.current_command} has not completed since {since}",
                confidence=0.85,
                evidence={"phase": state.current_phase, "elapsed_ms": _ms(elapsed)},
            )
        )

        if state.completed_phases:
            done = ", ".join(state.completed_phases)
            issues.append(
                Issue(
                    type=IssueType.PARTIAL_COMPLETION,
                    message=(
                        f"Workflow partially complete ({done} done) but "
                        f"{state.current_phase} phase stalled since {since}"
                    ),
                    confidence=0.8,
                    evidence={
                        "completed_phases": list(state.completed_phases),
                        "stuck_phase": state.current_phase,
                        "elapsed_ms": _ms(elapsed),
                    },
                )
            )

    def _detect_completion_gaps(self, events: list[Event], issues: list[Issue]) -> None:
        """Flag phases and commands that finished without expected milestones or outputs."""
        command_milestones = 0
        phase: str | None = None
        phase_milestones = 0
        open_phase: str | None = None

        for event in events:
            if event.kind == EventKind.MILESTONE:
                command_milestones += 1
                phase_milestones += 1
                continue

            if event.agent_id is not None:
                continue

            at = format_timestamp(event.timestamp)

            if event.kind == EventKind.START:
                command_milestones = 0
                phase = None
                phase_milestones = 0
                open_phase = None

            elif event.kind == EventKind.PHASE_START and event.phase:
                phase = event.phase
                phase_milestones = 0
                open_phase = event.phase

            elif event.kind == EventKind.PHASE_COMPLETE:
                if event.phase is None or event.phase == open_phase:
                    open_phase = None
                expected = EXPECTED_PHASE_MILESTONES.get(phase or "", 0)
                if phase and expected > 0 and phase_milestones < expected:
                    issues.append(
                        Issue(
                            type=IssueType.MISSING_MILESTONES,
                            message=(
                                f"Phase {phase} completed at {at} with {phase_milestones} "
                                f"milestones, expected at least {expected}"
                            ),
                            confidence=0.8,
                            evidence={"phase": phase, "actual": phase_milestones, "expected": expected},
                        )
                    )

            elif event.kind == EventKind.COMPLETE:
                self._check_complete_payload(event, at, command_milestones, open_phase, issues)
                open_phase = None

    def _check_complete_payload(
        self,
        event: Event,
        at: str,
        command_milestones: int,
        open_phase: str | None,
        issues: list[Issue],
    ) -> None:
        command = event.command
        outputs = event.payload.get("outputs")
        output_count = len(outputs) if isinstance(outputs, list) else 0

        if open_phase is not None:
            issues.append(
                Issue(
                    type=IssueType.PHASE_STUCK,
                    message=f"Phase {open_phase} never completed before {command} finished at {at}",
                    confidence=0.8,
                    evidence={"phase": open_phase, "command": command},
                )
            )

        if command in EXPECTED_OUTPUT_COMMANDS and output_count == 0:
            issues.append(
                Issue(
                    type=IssueType.INCOMPLETE_OUTPUTS,
                    message=f"Command {command} completed at {at} without expected outputs",
                    confidence=0.75,
                    evidence={"command": command},
                )
            )

        expected_outputs = _count(event.payload.get("expected_outputs"))
        if expected_outputs > output_count:
            issues.append(
                Issue(
                    type=IssueType.PARTIAL_COMPLETION,
                    message=(
                        f"Command {command} completed at {at} with {output_count} of "
                        f"{expected_outputs} expected outputs"
                    ),
                    confidence=0.75,
                    evidence={"command": command, "actual": output_count, "expected": expected_outputs},
                )
            )

        expected_milestones = EXPECTED_COMMAND_MILESTONES.get(command, 0)
        reported = _count(event.payload.get("milestones"))
        if expected_milestones > 0 and max(command_milestones, reported) < expected_milestones:
            issues.append(
                Issue(
                    type=IssueType.MISSING_MILESTONES,
                    message=f"Command {command} completed at {at} without any recorded milestones",
                    confidence=0.7,
                    evidence={"command": command, "actual": command_milestones, "expected": expected_milestones},
                )
            )

    def _detect_inactivity(self, state: _ScanState, now: datetime, issues: list[Issue]) -> None:
        """Flag an active command that has gone quiet."""
        if not state.command_active or state.last_activity_time is None:
            return

        elapsed = (now - state.last_activity_time).total_seconds()
        if elapsed <= self.thresholds.silence_seconds:
            return

        last = format_timestamp(state.last_activity_time)
        active = state.current_command or "workflow"
        if state.current_phase:
            active = f"{active}/{state.current_phase}"

        if state.command_milestones == 0 and elapsed > self.thresholds.abrupt_stop_seconds:
            issues.append(
                Issue(
                    type=IssueType.ABRUPT_STOP,
                    message=f"Workflow {active} stopped abruptly with no progress after {last}",
                    confidence=0.85,
                    evidence={"last_activity": last, "silence_duration_ms": _ms(elapsed)},
                )
            )
            return

        confidence = min(0.9, 0.7 + (elapsed / self.thresholds.silence_seconds - 1) * 0.1)
        issues.append(
            Issue(
                type=IssueType.SILENCE,
                message=f"No activity since {last} while {active} is active",
                confidence=confidence,
                evidence={
                    "command": state.current_command,
                    "phase": state.current_phase,
                    "milestones_before_stop": state.command_milestones,
                    "silence_duration_ms": _ms(elapsed),
                },
            )
        )

    def _detect_declining_velocity(self, state: _ScanState, issues: list[Issue]) -> None:
        """Flag the latest milestone gap being a multiple of the historical average."""
        stamps = state.milestone_timestamps
        if len(stamps) < max(self.thresholds.velocity_min_milestones, 3):
            return

        gaps = [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:], strict=False)]
        earlier, latest = gaps[:-1], gaps[-1]
        average = sum(earlier) / len(earlier)
        if average <= 0:
            return

        ratio = latest / average
        if ratio < self.thresholds.velocity_factor:
            return

        issues.append(
            Issue(
                type=IssueType.DECLINING_VELOCITY,
                message=(
                    "Time between milestones is increasing, workflow may be slowing down "
                    f"(latest milestone {format_timestamp(stamps[-1])})"
                ),
                confidence=min(0.6, 0.3 + ratio * 0.1),
                evidence={
                    "gaps_ms": [_ms(g) for g in gaps],
                    "average_gap_ms": _ms(average),
                    "ratio": round(ratio, 2),
                },
            )
        )

    def _detect_agent_problems(
        self, events: list[Event], state: _ScanState, now: datetime, issues: list[Issue]
    ) -> None:
        """Flag spawned agents that never started or never finished."""
        if not state.agents:
            return

        # Slow sessions get proportionally more patience
        gaps = [
            max(0.0, (b.timestamp - a.timestamp).total_seconds())
            for a, b in zip(events, events[1:], strict=False)
        ]
        average_gap = sum(gaps) / len(gaps) if gaps else 0.0
        scaled = self.thresholds.velocity_factor * average_gap
        silence_limit = max(self.thresholds.agent_silence_seconds, scaled)
        abandoned_limit = max(self.thresholds.agent_abandoned_seconds, scaled)

        for agent in state.agents.values():
            if agent.completed:
                continue

            elapsed = (now - agent.spawn_time).total_seconds()

            if not agent.started and elapsed > silence_limit:
                issues.append(
                    Issue(
                        type=IssueType.AGENT_SILENCE,
                        message=f"Agent {agent.type} ({agent.id}) spawned but hasn't started producing entries",
                        confidence=0.8,
                        evidence={
                            "agent_id": agent.id,
                            "agent_type": agent.type,
                            "silence_duration_ms": _ms(elapsed),
                        },
                    )
                )
            elif agent.started and elapsed > abandoned_limit:
                issues.append(
                    Issue(
                        type=IssueType.ABANDONED_AGENT,
                        message=f"Agent {agent.type} ({agent.id}) started but never completed",
                        confidence=0.8,
                        evidence={
                            "agent_id": agent.id,
                            "agent_type": agent.type,
                            "running_time_ms": _ms(elapsed),
                        },
                    )
                )

    def _calculate_health(self, issues: list[Issue]) -> HealthStatus:
        if any(issue.confidence >= 0.9 for issue in issues):
            return HealthStatus.CRITICAL
        if issues:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY
