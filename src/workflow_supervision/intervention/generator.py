"""Intervention generator mapping workflow issues to notifications and tasks.

Response selection:
- Structural issue types (TDD, ordering, chain, milestones, outputs): auto-remediate
  with a queued task for a specialist agent
- Other issues with confidence >= 0.9: escalate to the user
- Everything else: notify only
"""

import json
import logging
from typing import Any

from workflow_supervision.analysis.models import Issue, IssueType
from workflow_supervision.exceptions import UnmappedIssueError
from workflow_supervision.intervention.models import (
    AnomalyType,
    Intervention,
    Notification,
    Priority,
    QueueTask,
    ResponseType,
)

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.6
WARNING_CONFIDENCE = 0.7

# Issue types that get an automated remediation task
REMEDIATION_TYPES = frozenset(
    {
        IssueType.TDD_VIOLATION,
        IssueType.CHAIN_BROKEN,
        IssueType.OUT_OF_ORDER,
        IssueType.MISSING_MILESTONES,
        IssueType.INCOMPLETE_OUTPUTS,
    }
)

ISSUE_NAMES: dict[IssueType, str] = {
    IssueType.LOOP_DETECTED: "Loop Detected",
    IssueType.PHASE_STUCK: "Phase Stuck",
    IssueType.REGRESSION: "Regression",
    IssueType.OUT_OF_ORDER: "Out of Order",
    IssueType.CHAIN_BROKEN: "Chain Broken",
    IssueType.TDD_VIOLATION: "TDD Violation",
    IssueType.EXPLICIT_FAILURE: "Failure",
    IssueType.AGENT_FAILED: "Agent Failed",
    IssueType.SILENCE: "Workflow Silence",
    IssueType.MISSING_MILESTONES: "Missing Milestones",
    IssueType.DECLINING_VELOCITY: "Declining Velocity",
    IssueType.INCOMPLETE_OUTPUTS: "Incomplete Outputs",
    IssueType.AGENT_SILENCE: "Agent Silence",
    IssueType.ABRUPT_STOP: "Abrupt Stop",
    IssueType.PARTIAL_COMPLETION: "Partial Completion",
    IssueType.ABANDONED_AGENT: "Abandoned Agent",
}

ISSUE_AGENTS: dict[IssueType, str] = {
    IssueType.LOOP_DETECTED: "debugger",
    IssueType.PHASE_STUCK: "debugger",
    IssueType.REGRESSION: "test-engineer",
    IssueType.OUT_OF_ORDER: "test-engineer",
    IssueType.CHAIN_BROKEN: "debugger",
    IssueType.TDD_VIOLATION: "test-engineer",
    IssueType.EXPLICIT_FAILURE: "debugger",
    IssueType.AGENT_FAILED: "debugger",
    IssueType.SILENCE: "debugger",
    IssueType.MISSING_MILESTONES: "test-engineer",
    IssueType.DECLINING_VELOCITY: "performance-engineer",
    IssueType.INCOMPLETE_OUTPUTS: "debugger",
    IssueType.AGENT_SILENCE: "debugger",
    IssueType.ABRUPT_STOP: "debugger",
    IssueType.PARTIAL_COMPLETION: "debugger",
    IssueType.ABANDONED_AGENT: "debugger",
}

ISSUE_ANOMALIES: dict[IssueType, AnomalyType] = {
    IssueType.LOOP_DETECTED: AnomalyType.AGENT_LOOP,
    IssueType.PHASE_STUCK: AnomalyType.AGENT_STUCK,
    IssueType.ABRUPT_STOP: AnomalyType.AGENT_STUCK,
    IssueType.PARTIAL_COMPLETION: AnomalyType.AGENT_STUCK,
    IssueType.EXPLICIT_FAILURE: AnomalyType.AGENT_ERROR,
    IssueType.AGENT_FAILED: AnomalyType.AGENT_ERROR,
    IssueType.REGRESSION: AnomalyType.AGENT_ERROR,
    IssueType.TDD_VIOLATION: AnomalyType.UNUSUAL_PATTERN,
    IssueType.OUT_OF_ORDER: AnomalyType.UNUSUAL_PATTERN,
    IssueType.CHAIN_BROKEN: AnomalyType.UNUSUAL_PATTERN,
    IssueType.MISSING_MILESTONES: AnomalyType.UNUSUAL_PATTERN,
    IssueType.INCOMPLETE_OUTPUTS: AnomalyType.UNUSUAL_PATTERN,
    IssueType.SILENCE: AnomalyType.RECOMMENDED_INVESTIGATION,
    IssueType.DECLINING_VELOCITY: AnomalyType.RECOMMENDED_INVESTIGATION,
    IssueType.AGENT_SILENCE: AnomalyType.RECOMMENDED_INVESTIGATION,
    IssueType.ABANDONED_AGENT: AnomalyType.RECOMMENDED_INVESTIGATION,
}

SUGGESTED_ACTIONS: dict[IssueType, str] = {
    IssueType.LOOP_DETECTED: (
        "Break out of the loop by trying a different approach. Analyze what action "
        "is being repeated and why it is not succeeding."
    ),
    IssueType.PHASE_STUCK: (
        "Investigate why the phase is not completing. Check for blocking errors, "
        "infinite loops, or missing dependencies."
    ),
    IssueType.REGRESSION: (
        "Revert the recent changes or fix the broken tests. Ensure GREEN phase passes "
        "before proceeding to REFACTOR."
    ),
    IssueType.OUT_OF_ORDER: (
        "Follow the correct TDD phase order: RED (write failing test) -> GREEN "
        "(make test pass) -> REFACTOR (clean up)."
    ),
    IssueType.CHAIN_BROKEN: (
        "Complete the prerequisite command before proceeding. The workflow chain "
        "should follow: ideate -> plan -> build -> ship."
    ),
    IssueType.TDD_VIOLATION: (
        "Write failing tests first (RED phase) before implementing code (GREEN phase)."
    ),
    IssueType.EXPLICIT_FAILURE: (
        "Investigate and fix the error that caused the failure. Check logs and error "
        "messages for root cause."
    ),
    IssueType.AGENT_FAILED: (
        "Review what caused the agent to fail. Consider retrying or using a different approach."
    ),
    IssueType.SILENCE: (
        "Check if the workflow is still running. Consider if it is waiting for user "
        "input or has stalled."
    ),
    IssueType.MISSING_MILESTONES: (
        "Ensure each phase produces expected outputs and checkpoints. Log milestones "
        "as work progresses."
    ),
    IssueType.DECLINING_VELOCITY: (
        "Workflow is slowing down. Consider if complexity is increasing or if there "
        "are blocking issues."
    ),
    IssueType.INCOMPLETE_OUTPUTS: (
        "Ensure the command produces expected outputs before marking complete. Check "
        "for missing files or artifacts."
    ),
    IssueType.AGENT_SILENCE: (
        "Check if the spawned agent started correctly. Consider restarting or using "
        "a different agent."
    ),
    IssueType.ABRUPT_STOP: (
        "Workflow stopped without making progress. Check for crashes, timeouts, or "
        "user interruption."
    ),
    IssueType.PARTIAL_COMPLETION: (
        "Some work completed but the workflow did not finish. Resume from the stuck "
        "phase or investigate the blocker."
    ),
    IssueType.ABANDONED_AGENT: (
        "An agent started but never completed. Check for timeouts, errors, or stuck processes."
    ),
}


MAPPING_TABLES: tuple[dict[IssueType, Any], ...] = (
    ISSUE_NAMES,
    ISSUE_AGENTS,
    ISSUE_ANOMALIES,
    SUGGESTED_ACTIONS,
)


def priority_for_confidence(confidence: float) -> Priority:
    """Map an issue confidence to a queue priority."""
    if confidence >= HIGH_CONFIDENCE:
        return Priority.HIGH
    if confidence >= MEDIUM_CONFIDENCE:
        return Priority.MEDIUM
    return Priority.LOW


def sound_for_confidence(confidence: float) -> str:
    """Pick a notification sound: alert, gentle, or quiet."""
    if confidence >= HIGH_CONFIDENCE:
        return "Basso"
    if confidence >= WARNING_CONFIDENCE:
        return "Purr"
    return "Pop"


class InterventionGenerator:
    """
    Maps each workflow issue to exactly one intervention.

    The mapping is total and side-effect free: it never talks to the task
    queue or the notification sink, it only describes what should be sent.

    Example:
        generator = InterventionGenerator()
        intervention = generator.generate(issue)
        if intervention.queue_task:
            print(intervention.queue_task.agent_type)
    """

    def __init__(self, strict: bool = False) -> None:
        """
        Initialize the generator.

        Args:
            strict: Raise UnmappedIssueError for issue types missing from the
                mapping tables instead of falling back to notify-only
        """
        self.strict = strict

    def generate(self, issue: Issue) -> Intervention:
        """
        Generate an intervention for a workflow issue.

        Args:
            issue: Issue to respond to

        Returns:
            Intervention with a notification and, for remediation types, a queue task

        Raises:
            UnmappedIssueError: In strict mode, if the issue type has no mapping
        """
        if not all(issue.type in table for table in MAPPING_TABLES):
            if self.strict:
                raise UnmappedIssueError(f"No intervention mapping for issue type {issue.type!r}")
            logger.error(
                "Issue type has no intervention mapping, falling back to notify-only",
                extra={"issue_type": str(issue.type)},
            )
            return self._fallback(issue)

        name = ISSUE_NAMES[issue.type]
        notification = Notification(
            title=f"Workflow: {name}",
            message=issue.message,
            sound=sound_for_confidence(issue.confidence),
        )

        if issue.type in REMEDIATION_TYPES:
            return Intervention(
                response_type=ResponseType.AUTO_REMEDIATE,
                notification=notification,
                issue=issue,
                queue_task=QueueTask(
                    priority=priority_for_confidence(issue.confidence),
                    prompt=self.create_prompt(issue),
                    agent_type=ISSUE_AGENTS[issue.type],
                    anomaly_type=ISSUE_ANOMALIES[issue.type],
                ),
            )

        response_type = (
            ResponseType.ESCALATE if issue.confidence >= HIGH_CONFIDENCE else ResponseType.NOTIFY_ONLY
        )
        return Intervention(response_type=response_type, notification=notification, issue=issue)

    def create_prompt(self, issue: Issue) -> str:
        """
        Create a markdown prompt describing the issue for a remediation agent.

        Args:
            issue: Issue to describe

        Returns:
            Prompt with description, evidence, suggested action and confidence
        """
        sections: list[str] = []

        sections.append(f"## Workflow Issue: {ISSUE_NAMES.get(issue.type, self._title(issue))}\n")
        sections.append(f"### Issue Description\n{issue.message}\n")

        if issue.evidence:
            sections.append("### Evidence\n")
            for key, value in issue.evidence.items():
                sections.append(f"- **{self._format_key(key)}**: {self._format_value(key, value)}")
            sections.append("")

        action = SUGGESTED_ACTIONS.get(
            issue.type, "Investigate the issue and take appropriate corrective action."
        )
        sections.append(f"### Suggested Action\n{action}\n")
        sections.append(f"### Confidence\n{issue.confidence * 100:.0f}%\n")

        return "\n".join(sections)

    def _fallback(self, issue: Issue) -> Intervention:
        return Intervention(
            response_type=ResponseType.NOTIFY_ONLY,
            notification=Notification(
                title=f"Workflow: {self._title(issue)}",
                message=issue.message,
                sound=sound_for_confidence(issue.confidence),
            ),
            issue=issue,
        )

    @staticmethod
    def _title(issue: Issue) -> str:
        raw = issue.type.value if hasattr(issue.type, "value") else str(issue.type)
        return str(raw).replace("_", " ").title()

    @staticmethod
    def _format_key(key: str) -> str:
        return " ".join(word.capitalize() for word in key.split("_"))

    @staticmethod
    def _format_value(key: str, value: Any) -> str:
        if key.endswith("_ms") and isinstance(value, int | float) and not isinstance(value, bool):
            seconds = round(value / 1000)
            if seconds >= 60:
                minutes, remaining = divmod(seconds, 60)
                if remaining:
                    return f"{minutes} minutes {remaining} seconds"
                return f"{minutes} minutes"
            return f"{seconds} seconds"

        if isinstance(value, list | tuple):
            return ", ".join(str(item) for item in value)

        if isinstance(value, dict):
            return json.dumps(value, default=str)

        return str(value)
