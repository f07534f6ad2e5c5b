"""Tests for the workflow analyzer with realistic event histories."""

from datetime import datetime, timedelta

import pytest

from workflow_supervision.analysis.analyzer import WorkflowAnalyzer
from workflow_supervision.analysis.models import (
    AnalysisThresholds,
    ChainStatus,
    HealthStatus,
    IssueType,
)
from workflow_supervision.events.models import EventKind


@pytest.fixture
def analyzer() -> WorkflowAnalyzer:
    return WorkflowAnalyzer()


def _at(base_time: datetime, seconds: float) -> datetime:
    return base_time + timedelta(seconds=seconds)


class TestBasics:
    """Empty history and chain progression."""

    def test_empty_history_is_healthy(self, analyzer, base_time) -> None:
        result = analyzer.analyze([], base_time)

        assert result.health == HealthStatus.HEALTHY
        assert result.issues == []
        assert all(status == ChainStatus.PENDING for status in result.chain_progress.values())
        assert list(result.chain_progress) == ["ideate", "plan", "build", "ship"]
        assert result.current_command is None

    def test_full_ideate_lifecycle_is_clean(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "ideate", EventKind.START),
            make_event(1, "ideate", EventKind.MILESTONE, payload={"name": "requirements"}),
            make_event(2, "ideate", EventKind.COMPLETE, payload={"outputs": ["DESIGN.md"]}),
        ]

        result = analyzer.analyze(events, _at(base_time, 3))

        assert result.health == HealthStatus.HEALTHY
        assert result.issues == []
        assert result.chain_progress["ideate"] == ChainStatus.COMPLETE
        assert result.chain_progress["plan"] == ChainStatus.PENDING
        assert result.milestone_timestamps == [_at(base_time, 1)]
        assert result.last_activity_time == _at(base_time, 2)

    def test_chain_never_regresses(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "ideate", EventKind.START),
            make_event(1, "ideate", EventKind.MILESTONE),
            make_event(2, "ideate", EventKind.COMPLETE, payload={"outputs": ["DESIGN.md"]}),
            make_event(3, "plan", EventKind.START),
            make_event(4, "ideate", EventKind.START),
        ]

        result = analyzer.analyze(events, _at(base_time, 5))

        assert result.chain_progress["ideate"] == ChainStatus.COMPLETE
        assert result.chain_progress["plan"] == ChainStatus.IN_PROGRESS
        regressions = result.issues_of(IssueType.REGRESSION)
        assert len(regressions) == 1
        assert regressions[0].confidence == 0.9

    def test_unknown_command_does_not_touch_chain(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "review", EventKind.START), make_event(1, "review", EventKind.COMPLETE)]

        result = analyzer.analyze(events, _at(base_time, 2))

        assert set(result.chain_progress) == {"ideate", "plan", "build", "ship"}
        assert all(status == ChainStatus.PENDING for status in result.chain_progress.values())

    def test_analysis_is_deterministic(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "build", EventKind.START), make_event(1, "build", EventKind.PHASE_START, "GREEN")]
        now = _at(base_time, 500)

        first = analyzer.analyze(events, now)
        second = analyzer.analyze(events, now)

        assert [i.signature for i in first.issues] == [i.signature for i in second.issues]


class TestPhaseOrdering:
    """TDD phase ordering inside build cycles."""

    def test_green_without_red(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "GREEN"),
        ]

        result = analyzer.analyze(events, _at(base_time, 2))

        structural = result.issues_of(IssueType.TDD_VIOLATION) + result.issues_of(IssueType.OUT_OF_ORDER)
        assert structural
        assert all(issue.confidence > 0.9 for issue in structural)
        assert result.issues_of(IssueType.TDD_VIOLATION)[0].confidence == 0.95
        assert result.health == HealthStatus.CRITICAL

    def test_correct_cycle_has_no_ordering_issues(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.MILESTONE, "RED", {"name": "failing test"}),
            make_event(3, "build", EventKind.PHASE_COMPLETE, "RED"),
            make_event(4, "build", EventKind.PHASE_START, "GREEN"),
            make_event(5, "build", EventKind.MILESTONE, "GREEN", {"name": "test passes"}),
            make_event(6, "build", EventKind.PHASE_COMPLETE, "GREEN"),
            make_event(7, "build", EventKind.PHASE_START, "REFACTOR"),
            make_event(8, "build", EventKind.PHASE_COMPLETE, "REFACTOR"),
            make_event(9, "build", EventKind.PHASE_START, "RED"),
        ]

        result = analyzer.analyze(events, _at(base_time, 10))

        assert result.issues_of(IssueType.TDD_VIOLATION) == []
        assert result.issues_of(IssueType.OUT_OF_ORDER) == []
        assert result.current_phase == "RED"

    def test_refactor_after_red_is_out_of_order(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.PHASE_START, "REFACTOR"),
        ]

        result = analyzer.analyze(events, _at(base_time, 3))

        out_of_order = result.issues_of(IssueType.OUT_OF_ORDER)
        assert len(out_of_order) == 1
        assert out_of_order[0].confidence == 0.92
        assert out_of_order[0].evidence["previous"] == "RED"

    def test_new_build_start_opens_new_cycle(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.PHASE_START, "GREEN"),
            make_event(3, "build", EventKind.START),
            make_event(4, "build", EventKind.PHASE_START, "GREEN"),
        ]

        result = analyzer.analyze(events, _at(base_time, 5))

        assert len(result.issues_of(IssueType.TDD_VIOLATION)) == 1


class TestTimeBasedDetection:
    """Silence, abrupt stops and stuck phases."""

    def test_silence_after_ten_minutes(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "build", EventKind.START)]

        result = analyzer.analyze(events, _at(base_time, 600))

        assert result.health != HealthStatus.HEALTHY
        kinds = {issue.type for issue in result.issues}
        assert kinds & {IssueType.SILENCE, IssueType.ABRUPT_STOP}

    def test_abrupt_stop_without_milestones(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "plan", EventKind.START)]

        result = analyzer.analyze(events, _at(base_time, 200))

        abrupt = result.issues_of(IssueType.ABRUPT_STOP)
        assert len(abrupt) == 1
        assert abrupt[0].confidence == 0.85
        assert abrupt[0].evidence["silence_duration_ms"] == 200_000

    def test_silence_with_prior_milestones(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "plan", EventKind.START),
            make_event(10, "plan", EventKind.MILESTONE, payload={"name": "outline"}),
        ]

        result = analyzer.analyze(events, _at(base_time, 130))

        silence = result.issues_of(IssueType.SILENCE)
        assert len(silence) == 1
        assert silence[0].confidence == pytest.approx(0.7 + (120 / 90 - 1) * 0.1)
        assert result.issues_of(IssueType.ABRUPT_STOP) == []

    def test_no_silence_below_threshold(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "plan", EventKind.START)]

        result = analyzer.analyze(events, _at(base_time, 60))

        assert result.issues == []

    def test_no_silence_after_completion(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "ideate", EventKind.START),
            make_event(1, "ideate", EventKind.MILESTONE),
            make_event(2, "ideate", EventKind.COMPLETE, payload={"outputs": ["DESIGN.md"]}),
        ]

        result = analyzer.analyze(events, _at(base_time, 3600))

        assert result.issues == []

    def test_silence_message_is_stable_over_time(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "plan", EventKind.START),
            make_event(10, "plan", EventKind.MILESTONE),
        ]

        early = analyzer.analyze(events, _at(base_time, 120)).issues_of(IssueType.SILENCE)
        late = analyzer.analyze(events, _at(base_time, 900)).issues_of(IssueType.SILENCE)

        assert early[0].signature == late[0].signature
        assert late[0].confidence > early[0].confidence

    def test_phase_stuck_and_partial_completion(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.MILESTONE, "RED", {"name": "failing test"}),
            make_event(3, "build", EventKind.PHASE_COMPLETE, "RED"),
            make_event(4, "build", EventKind.PHASE_START, "GREEN"),
            make_event(80, "build", EventKind.MILESTONE, "GREEN", {"name": "wip"}),
        ]

        result = analyzer.analyze(events, _at(base_time, 300))

        stuck = result.issues_of(IssueType.PHASE_STUCK)
        assert len(stuck) == 1
        assert stuck[0].confidence == 0.85
        partial = result.issues_of(IssueType.PARTIAL_COMPLETION)
        assert len(partial) == 1
        assert partial[0].evidence["completed_phases"] == ["RED"]

    def test_thresholds_are_configurable(self, make_event, base_time) -> None:
        analyzer = WorkflowAnalyzer(AnalysisThresholds(silence_seconds=10, abrupt_stop_seconds=1000))
        events = [make_event(0, "plan", EventKind.START)]

        result = analyzer.analyze(events, _at(base_time, 20))

        assert result.issues_of(IssueType.SILENCE)


class TestRepetitionAndFailures:
    """Loops, failures and chain violations."""

    def test_loop_detected(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "build", EventKind.START)] + [
            make_event(i, "build", EventKind.MILESTONE, "GREEN", {"name": "retry tests"})
            for i in range(1, 4)
        ]

        result = analyzer.analyze(events, _at(base_time, 5))

        loops = result.issues_of(IssueType.LOOP_DETECTED)
        assert len(loops) == 1
        assert loops[0].confidence == pytest.approx(0.85)
        assert loops[0].evidence["repeat_count"] == 3

    def test_loop_confidence_grows_with_repeats(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(i, "build", EventKind.MILESTONE, "GREEN", {"name": "retry tests"})
            for i in range(5)
        ]

        result = analyzer.analyze(events, _at(base_time, 6))

        assert result.issues_of(IssueType.LOOP_DETECTED)[0].confidence == pytest.approx(0.91)

    def test_later_loop_on_same_milestone_is_a_new_issue(self, analyzer, make_event, base_time) -> None:
        retry = {"name": "retry tests"}
        events = [make_event(0, "build", EventKind.START)]
        events += [make_event(i, "build", EventKind.MILESTONE, "GREEN", retry) for i in range(1, 4)]
        first = analyzer.analyze(events, _at(base_time, 5)).issues_of(IssueType.LOOP_DETECTED)[0]

        events += [
            make_event(i, "build", EventKind.MILESTONE, "GREEN", {"name": f"step {i}"})
            for i in range(4, 14)
        ]
        events += [make_event(i, "build", EventKind.MILESTONE, "GREEN", retry) for i in range(14, 17)]
        second = analyzer.analyze(events, _at(base_time, 18)).issues_of(IssueType.LOOP_DETECTED)[0]

        assert first.signature != second.signature
        assert "10:00:01" in first.message
        assert "10:00:14" in second.message

    def test_loop_message_stable_while_window_slides(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(i, "build", EventKind.MILESTONE, "GREEN", {"name": "retry tests"})
            for i in range(12)
        ]

        early = analyzer.analyze(events[:10], _at(base_time, 11))
        late = analyzer.analyze(events, _at(base_time, 13))

        assert (
            early.issues_of(IssueType.LOOP_DETECTED)[0].signature
            == late.issues_of(IssueType.LOOP_DETECTED)[0].signature
        )

    def test_distinct_milestones_are_not_a_loop(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(i, "build", EventKind.MILESTONE, "GREEN", {"name": f"step {i}"})
            for i in range(5)
        ]

        result = analyzer.analyze(events, _at(base_time, 6))

        assert result.issues_of(IssueType.LOOP_DETECTED) == []

    def test_explicit_failure_and_regression(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.MILESTONE, "RED"),
            make_event(3, "build", EventKind.PHASE_COMPLETE, "RED"),
            make_event(4, "build", EventKind.FAILED, payload={"error": "tests crashed"}),
        ]

        result = analyzer.analyze(events, _at(base_time, 5))

        failure = result.issues_of(IssueType.EXPLICIT_FAILURE)
        assert len(failure) == 1
        assert "tests crashed" in failure[0].message
        assert failure[0].confidence == 0.95
        assert result.issues_of(IssueType.REGRESSION)[0].evidence["completed_phase"] == "RED"
        assert result.health == HealthStatus.CRITICAL

    def test_chain_broken_confidence(self, analyzer, make_event, base_time) -> None:
        first = analyzer.analyze([make_event(0, "ship", EventKind.START)], _at(base_time, 1))
        assert first.issues_of(IssueType.CHAIN_BROKEN)[0].confidence == 0.6

        events = [
            make_event(0, "ideate", EventKind.START),
            make_event(1, "ideate", EventKind.MILESTONE),
            make_event(2, "ideate", EventKind.COMPLETE, payload={"outputs": ["DESIGN.md"]}),
            make_event(3, "ship", EventKind.START),
        ]
        later = analyzer.analyze(events, _at(base_time, 4))
        assert later.issues_of(IssueType.CHAIN_BROKEN)[0].confidence == 0.75

    def test_build_after_ideate_satisfies_chain(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "ideate", EventKind.START),
            make_event(1, "ideate", EventKind.MILESTONE),
            make_event(2, "ideate", EventKind.COMPLETE, payload={"outputs": ["DESIGN.md"]}),
            make_event(3, "build", EventKind.START),
        ]

        result = analyzer.analyze(events, _at(base_time, 4))

        assert result.issues_of(IssueType.CHAIN_BROKEN) == []


class TestCompletionGaps:
    """Outputs and milestones expected at completion."""

    def test_missing_outputs_and_milestones(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "plan", EventKind.START),
            make_event(1, "plan", EventKind.COMPLETE),
        ]

        result = analyzer.analyze(events, _at(base_time, 2))

        assert result.issues_of(IssueType.INCOMPLETE_OUTPUTS)[0].confidence == 0.75
        assert result.issues_of(IssueType.MISSING_MILESTONES)[0].confidence == 0.7

    def test_fewer_outputs_than_expected(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "plan", EventKind.START),
            make_event(1, "plan", EventKind.MILESTONE),
            make_event(
                2, "plan", EventKind.COMPLETE, payload={"outputs": ["PLAN.md"], "expected_outputs": 3}
            ),
        ]

        result = analyzer.analyze(events, _at(base_time, 3))

        partial = result.issues_of(IssueType.PARTIAL_COMPLETION)
        assert len(partial) == 1
        assert partial[0].evidence == {"command": "plan", "actual": 1, "expected": 3}

    def test_phase_completed_without_milestones(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.PHASE_COMPLETE, "RED"),
        ]

        result = analyzer.analyze(events, _at(base_time, 3))

        missing = result.issues_of(IssueType.MISSING_MILESTONES)
        assert len(missing) == 1
        assert missing[0].evidence["phase"] == "RED"

    def test_open_phase_at_command_complete(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(1, "build", EventKind.PHASE_START, "RED"),
            make_event(2, "build", EventKind.MILESTONE, "RED"),
            make_event(3, "build", EventKind.COMPLETE, payload={"outputs": ["src/app.py"]}),
        ]

        result = analyzer.analyze(events, _at(base_time, 4))

        stuck = result.issues_of(IssueType.PHASE_STUCK)
        assert len(stuck) == 1
        assert stuck[0].confidence == 0.8


class TestVelocityAndAgents:
    """Declining velocity and sub-agent lifecycle."""

    def test_declining_velocity(self, analyzer, make_event, base_time) -> None:
        events = [make_event(0, "plan", EventKind.START)] + [
            make_event(offset, "plan", EventKind.MILESTONE, payload={"name": f"m{offset}"})
            for offset in (1, 11, 21, 31, 101)
        ]

        result = analyzer.analyze(events, _at(base_time, 102))

        velocity = result.issues_of(IssueType.DECLINING_VELOCITY)
        assert len(velocity) == 1
        assert velocity[0].confidence == pytest.approx(0.6)
        assert velocity[0].evidence["ratio"] == 7.0

    def test_steady_velocity(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(offset, "plan", EventKind.MILESTONE, payload={"name": f"m{offset}"})
            for offset in (0, 10, 20, 30, 40)
        ]

        result = analyzer.analyze(events, _at(base_time, 41))

        assert result.issues_of(IssueType.DECLINING_VELOCITY) == []

    def test_agent_silence(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(
                0,
                "build",
                EventKind.AGENT_SPAWN,
                payload={"agent_id": "a1", "agent_type": "test-engineer"},
            ),
        ]

        result = analyzer.analyze(events, _at(base_time, 60))

        silent = result.issues_of(IssueType.AGENT_SILENCE)
        assert len(silent) == 1
        assert silent[0].evidence["agent_type"] == "test-engineer"
        assert result.active_agents[0].id == "a1"

    def test_abandoned_agent(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(
                0,
                "build",
                EventKind.AGENT_SPAWN,
                payload={"agent_id": "a1", "agent_type": "test-engineer"},
            ),
            make_event(10, "build", EventKind.MILESTONE, agent_id="a1", agent_type="test-engineer"),
        ]

        result = analyzer.analyze(events, _at(base_time, 100))

        assert len(result.issues_of(IssueType.ABANDONED_AGENT)) == 1
        assert result.issues_of(IssueType.AGENT_SILENCE) == []

    def test_completed_agent_is_not_flagged(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(0, "build", EventKind.AGENT_SPAWN, payload={"agent_id": "a1"}),
            make_event(10, "build", EventKind.AGENT_COMPLETE, payload={"agent_id": "a1"}),
        ]

        result = analyzer.analyze(events, _at(base_time, 60))

        assert result.issues_of(IssueType.AGENT_SILENCE) == []
        assert result.issues_of(IssueType.ABANDONED_AGENT) == []

    def test_agent_failed(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "build", EventKind.START),
            make_event(0, "build", EventKind.AGENT_SPAWN, payload={"agent_id": "a1"}),
            make_event(
                5,
                "build",
                EventKind.AGENT_COMPLETE,
                payload={"agent_id": "a1", "status": "failed", "error": "timeout"},
            ),
        ]

        result = analyzer.analyze(events, _at(base_time, 6))

        failed = result.issues_of(IssueType.AGENT_FAILED)
        assert len(failed) == 1
        assert "timeout" in failed[0].message

    def test_agent_events_do_not_drive_command(self, analyzer, make_event, base_time) -> None:
        events = [
            make_event(0, "ideate", EventKind.START),
            make_event(1, "ideate", EventKind.MILESTONE),
            make_event(2, "build", EventKind.START, agent_id="a1"),
        ]

        result = analyzer.analyze(events, _at(base_time, 3))

        assert result.current_command == "ideate"
        assert result.chain_progress["build"] == ChainStatus.PENDING


def test_low_confidence_only_is_degraded(analyzer, make_event, base_time) -> None:
    events = [make_event(0, "ship", EventKind.START)]

    result = analyzer.analyze(events, _at(base_time, 1))

    assert [issue.type for issue in result.issues] == [IssueType.CHAIN_BROKEN]
    assert result.health == HealthStatus.DEGRADED
