"""Workflow Supervisor - live monitor for the workflow event log.

The supervisor tails the workflow log, re-analyzes the full event history on
every new event, persists a compact state snapshot, and dispatches each newly
detected issue exactly once as a notification and, for remediable issues, a
task queue entry. Independently it polls the rule compliance checker on a
timer and dispatches new rule violations the same way.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from workflow_supervision.analysis.analyzer import WorkflowAnalyzer
from workflow_supervision.analysis.models import AnalysisResult, Issue
from workflow_supervision.events.bus import ObserverBus, Observer
from workflow_supervision.events.models import Event
from workflow_supervision.intervention.generator import InterventionGenerator
from workflow_supervision.intervention.models import AnomalyType, Priority
from workflow_supervision.supervisor.config import SupervisorConfig
from workflow_supervision.supervisor.interfaces import (
    SOURCE_LOG_MONITOR,
    SOURCE_RULE_MONITOR,
    EventSource,
    LoggingNotifier,
    Notifier,
    RuleChecker,
    RuleViolation,
    StateStore,
    TaskInput,
    TaskQueue,
)
from workflow_supervision.supervisor.state import WorkflowState

logger = logging.getLogger(__name__)

RULE_VIOLATION_SOUND = "Basso"
RULE_TASK_AGENT = "general-purpose"


class SupervisorStatus(Enum):
    """Supervisor lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _reraise_if_cancelling() -> None:
    """Propagate a pending cancellation that a collaborator error masked."""
    task = asyncio.current_task()
    if task is not None and task.cancelling():
        raise asyncio.CancelledError


class WorkflowSupervisor:
    """Autonomous supervisor for a workflow event log.

    Lifecycle: stopped -> starting -> running -> stopping -> stopped. Start and
    stop are idempotent and never raise; collaborator failures are logged and
    the supervisor keeps running.

    Concurrency: tail callbacks enqueue events into an inbox drained by a
    single consumer task. The rule-check timer and the idle re-analysis timer
    run as separate tasks. All three serialize access to shared state with one
    asyncio.Lock. Checker and task queue calls are bounded by the configured
    collaborator timeout.

    Delivery is at-most-once: an issue or violation signature is recorded as
    dispatched before its notification is sent and is never retried.
    """

    def __init__(
        self,
        event_source: EventSource,
        task_queue: TaskQueue,
        rule_checker: RuleChecker | None = None,
        notifier: Notifier | None = None,
        state_store: StateStore | None = None,
        config: SupervisorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the supervisor.

        Args:
            event_source: Workflow event log (replay and live tail)
            task_queue: Sink for remediation tasks
            rule_checker: Rule compliance checker (optional)
            notifier: Notification sink (logs notifications if None)
            state_store: Snapshot storage (state is not persisted if None)
            config: Supervisor configuration (uses defaults if None)
            clock: Source of "now" for time-based detection
        """
        self.config = config or SupervisorConfig()
        self.event_source = event_source
        self.task_queue = task_queue
        self.rule_checker = rule_checker
        self.notifier = notifier or LoggingNotifier()
        self.state_store = state_store
        self.clock = clock or _utcnow

        self.analyzer = WorkflowAnalyzer(self.config.thresholds)
        self.generator = InterventionGenerator(strict=self.config.strict_interventions)
        self.observers = ObserverBus()

        self._status = SupervisorStatus.STOPPED
        self._generation = 0
        self._lock = asyncio.Lock()
        self._inbox: asyncio.Queue[Event] = asyncio.Queue()
        self._history: list[Event] = []
        self._state = WorkflowState()
        self._baseline: WorkflowState | None = None
        self._dispatched: set[str] = set()

        self._consumer_task: asyncio.Task | None = None
        self._rule_task: asyncio.Task | None = None
        self._reanalyze_task: asyncio.Task | None = None

        logger.info(
            "Workflow supervisor initialized",
            extra={
                "mode": self.config.mode.value,
                "rule_check_interval": self.config.rule_check_interval_seconds,
                "collaborator_timeout": self.config.collaborator_timeout_seconds,
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> SupervisorStatus:
        return self._status

    def is_running(self) -> bool:
        return self._status is SupervisorStatus.RUNNING

    async def start(self) -> None:
        """Load state, start consuming the live tail and start the timers."""
        if self._status is not SupervisorStatus.STOPPED:
            logger.warning("Supervisor already running", extra={"status": self._status.value})
            return

        self._status = SupervisorStatus.STARTING
        generation = self._generation
        try:
            await self._load_state()
            if generation != self._generation:
                # stop() ran while the state was loading
                logger.info("Supervisor start aborted by stop")
                return

            self._consumer_task = asyncio.create_task(self._consume_events())
            self.event_source.tail(self._enqueue)

            if self.config.continuous_monitoring and self.rule_checker is not None:
                self._rule_task = asyncio.create_task(self._rule_check_loop())

            if self.config.reanalyze_interval_seconds > 0:
                self._reanalyze_task = asyncio.create_task(self._reanalyze_loop())

            self._status = SupervisorStatus.RUNNING
            logger.info(
                "Workflow supervisor started",
                extra={
                    "history_size": len(self._history),
                    "rule_monitoring": self._rule_task is not None,
                },
            )
        except Exception as e:
            logger.error("Failed to start supervisor", extra={"error": str(e)}, exc_info=True)
            await self._shutdown_tasks()
            self._status = SupervisorStatus.STOPPED

    async def stop(self) -> None:
        """Stop timers and tail, then persist the final state."""
        if self._status in (SupervisorStatus.STOPPED, SupervisorStatus.STOPPING):
            return

        # Nothing loaded yet, so the stored snapshot must not be overwritten
        persist = self._status is not SupervisorStatus.STARTING
        self._generation += 1
        self._status = SupervisorStatus.STOPPING
        try:
            await self._shutdown_tasks()
            if persist:
                async with self._lock:
                    await self._persist_state()
        except Exception as e:
            logger.error("Error while stopping supervisor", extra={"error": str(e)}, exc_info=True)
        finally:
            self._status = SupervisorStatus.STOPPED

        logger.info("Workflow supervisor stopped", extra={"dispatched": len(self._dispatched)})

    async def _shutdown_tasks(self) -> None:
        for task in (self._rule_task, self._reanalyze_task):
            await self._cancel(task)
        self._rule_task = None
        self._reanalyze_task = None

        try:
            self.event_source.stop_tail()
        except Exception as e:
            logger.warning("Failed to stop event tail", extra={"error": str(e)})

        await self._cancel(self._consumer_task)
        self._consumer_task = None

    async def _cancel(self, task: asyncio.Task | None) -> None:
        if task is None:
            return
        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self.config.collaborator_timeout_seconds)
        if not done:
            logger.error("Background task did not stop after cancellation", extra={"task": task.get_name()})
        elif not task.cancelled() and task.exception() is not None:
            logger.warning("Background task ended with an error", extra={"error": str(task.exception())})

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self) -> WorkflowState:
        """Return a copy of the current workflow state."""
        return self._state.copy()

    @property
    def history(self) -> list[Event]:
        """Events processed since start (or replayed at start)."""
        return list(self._history)

    async def _load_state(self) -> None:
        """Load the persisted snapshot, or rebuild state by replaying the log."""
        raw: bytes | None = None
        if self.state_store is not None:
            try:
                raw = await self.state_store.read()
            except Exception as e:
                logger.warning("Failed to read workflow state", extra={"error": str(e)})

        if raw is not None:
            try:
                loaded = WorkflowState.from_json(raw)
            except ValueError as e:
                logger.warning(
                    "Workflow state is corrupted, rebuilding from log", extra={"error": str(e)}
                )
            else:
                async with self._lock:
                    self._state = loaded
                    self._baseline = loaded.copy()
                    self._history = []
                logger.info("Loaded persisted workflow state")
                return

        await self._rebuild_from_log()

    async def _rebuild_from_log(self) -> None:
        try:
            events = await self.event_source.read_all()
        except Exception as e:
            logger.warning("Failed to replay workflow log", extra={"error": str(e)})
            events = []

        async with self._lock:
            self._baseline = None
            self._history = list(events)
            if events:
                result = self.analyzer.analyze(self._history, self.clock())
                self._state = WorkflowState.from_analysis(result)
            else:
                self._state = WorkflowState()
            await self._persist_state()

        logger.info("Rebuilt workflow state from log", extra={"events": len(events)})

    def _project(self, result: AnalysisResult) -> None:
        projection = WorkflowState.from_analysis(result)
        if self._baseline is not None:
            projection = projection.merged_onto(self._baseline)
        self._state = projection

    async def _persist_state(self) -> None:
        """Write the snapshot. Caller holds the lock."""
        if self.state_store is None:
            return
        try:
            await self.state_store.write(self._state.to_json())
        except Exception as e:
            logger.warning("Failed to persist workflow state", extra={"error": str(e)})

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def _enqueue(self, event: Event) -> None:
        self._inbox.put_nowait(event)

    async def _consume_events(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self.handle_event(event)
            finally:
                self._inbox.task_done()

    async def wait_idle(self) -> None:
        """Wait until every event received from the tail has been processed."""
        await self._inbox.join()

    async def handle_event(self, event: Event) -> AnalysisResult | None:
        """Process one workflow event.

        Returns:
            The analysis of the history including this event, or None if the
            event could not be processed
        """
        try:
            async with self._lock:
                self._history.append(event)
                try:
                    result = self.analyzer.analyze(self._history, self.clock())
                except Exception as e:
                    self._history.pop()
                    logger.error(
                        "Skipping event that could not be analyzed",
                        extra={"event": event.kind.value, "command": event.command, "error": str(e)},
                        exc_info=True,
                    )
                    return None

                self._project(result)
                await self._persist_state()
                await self._dispatch_new_issues(result.issues)

            self.observers.publish("analysis", result, self.history)
            return result
        except Exception as e:
            logger.error("Error processing workflow event", extra={"error": str(e)}, exc_info=True)
            return None

    async def reanalyze_now(self) -> AnalysisResult | None:
        """Re-run analysis over the unchanged history against the current time.

        Time-based issues (silence, stuck phases, silent agents) only appear
        as time passes, so they are picked up here while the log is quiet.
        """
        try:
            async with self._lock:
                if not self._history:
                    return None
                result = self.analyzer.analyze(self._history, self.clock())
                self._project(result)
                await self._dispatch_new_issues(result.issues)

            self.observers.publish("analysis", result, self.history)
            return result
        except Exception as e:
            logger.error("Error re-analyzing workflow", extra={"error": str(e)}, exc_info=True)
            return None

    async def _reanalyze_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.reanalyze_interval_seconds)
            await self.reanalyze_now()

    async def _dispatch_new_issues(self, issues: list[Issue]) -> None:
        """Dispatch issues not seen before. Caller holds the lock."""
        for issue in issues:
            if issue.signature in self._dispatched:
                continue
            self._dispatched.add(issue.signature)

            try:
                await self._dispatch_issue(issue)
            except Exception as e:
                logger.error(
                    "Failed to dispatch workflow issue",
                    extra={"issue_type": issue.type.value, "error": str(e)},
                    exc_info=True,
                )

    async def _dispatch_issue(self, issue: Issue) -> None:
        intervention = self.generator.generate(issue)
        logger.info(
            "Dispatching workflow intervention",
            extra={
                "issue_type": issue.type.value,
                "confidence": issue.confidence,
                "response_type": intervention.response_type.value,
            },
        )

        self.observers.publish("intervention", intervention)

        notification = intervention.notification
        self._notify(notification.title, notification.message, notification.sound)

        if intervention.queue_task is not None:
            queue_task = intervention.queue_task
            await self._submit_task(
                TaskInput(
                    priority=queue_task.priority,
                    source=SOURCE_LOG_MONITOR,
                    anomaly_type=queue_task.anomaly_type,
                    prompt=queue_task.prompt,
                    suggested_agent=queue_task.agent_type,
                    context={
                        "analysis": issue.message,
                        "issue_type": issue.type.value,
                        "confidence": issue.confidence,
                    },
                )
            )

    def _notify(self, title: str, message: str, sound: str) -> None:
        try:
            self.notifier.notify(title, message, sound)
        except Exception as e:
            logger.warning("Failed to deliver notification", extra={"title": title, "error": str(e)})
        self.observers.publish("notification", title, message, sound)

    async def _submit_task(self, task: TaskInput) -> None:
        try:
            async with asyncio.timeout(self.config.collaborator_timeout_seconds):
                await self.task_queue.add_task(task)
            logger.info(
                "Queued remediation task",
                extra={"source": task.source, "priority": task.priority.value},
            )
        except Exception as e:
            _reraise_if_cancelling()
            logger.warning(
                "Failed to queue remediation task",
                extra={"source": task.source, "error": str(e) or type(e).__name__},
            )

    # ------------------------------------------------------------------
    # Rule compliance
    # ------------------------------------------------------------------

    async def _rule_check_loop(self) -> None:
        logger.info(
            "Rule check loop started", extra={"interval": self.config.rule_check_interval_seconds}
        )
        while True:
            await self.run_rule_checks_now()
            await asyncio.sleep(self.config.rule_check_interval_seconds)

    async def _call_rule_checker(self) -> list[RuleViolation]:
        check = self.rule_checker.check
        async with asyncio.timeout(self.config.collaborator_timeout_seconds):
            if inspect.iscoroutinefunction(check):
                result = await check()
            else:
                result = await asyncio.to_thread(check)
                if inspect.isawaitable(result):
                    result = await result
        return list(result or [])

    async def run_rule_checks_now(self) -> list[RuleViolation]:
        """Run one rule compliance check and dispatch new violations.

        Returns:
            Violations reported by the checker (empty if it failed)
        """
        if self.rule_checker is None:
            return []

        try:
            violations = await self._call_rule_checker()
        except Exception as e:
            _reraise_if_cancelling()
            logger.warning(
                "Rule compliance check failed", extra={"error": str(e) or type(e).__name__}
            )
            return []

        try:
            if violations:
                self.observers.publish("rule_violation", list(violations))

            async with self._lock:
                for violation in violations:
                    if violation.signature in self._dispatched:
                        continue
                    self._dispatched.add(violation.signature)
                    await self._dispatch_violation(violation)
                await self._persist_state()
        except Exception as e:
            logger.error("Error dispatching rule violations", extra={"error": str(e)}, exc_info=True)

        return violations

    async def _dispatch_violation(self, violation: RuleViolation) -> None:
        logger.warning(
            "Rule violation detected",
            extra={"law": violation.law, "violation_type": violation.type},
        )
        self._notify(f"Rule #{violation.law}", violation.message, RULE_VIOLATION_SOUND)

        if violation.corrective_action:
            await self._submit_task(
                TaskInput(
                    priority=Priority.HIGH,
                    source=SOURCE_RULE_MONITOR,
                    anomaly_type=AnomalyType.UNUSUAL_PATTERN,
                    prompt=violation.corrective_action,
                    suggested_agent=RULE_TASK_AGENT,
                    context={
                        "law": violation.law,
                        "type": violation.type,
                        "message": violation.message,
                    },
                )
            )

    # Context hints forwarded to the rule checker when it supports them

    def track_file_change(self, path: str, action: str = "modified") -> None:
        self._forward_hint("track_file_change", path, action)

    def track_tool_call(self, tool: str, target: str | None = None) -> None:
        self._forward_hint("track_tool_call", tool, target)

    def set_active_feature(self, name: str | None) -> None:
        self._forward_hint("set_active_feature", name)

    def _forward_hint(self, method: str, *args: Any) -> None:
        handler = getattr(self.rule_checker, method, None)
        if not callable(handler):
            return
        try:
            handler(*args)
        except Exception as e:
            logger.warning("Rule checker hint failed", extra={"hint": method, "error": str(e)})

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_analyze(self, callback: Observer) -> str:
        """Call callback(result, history) after every analysis."""
        return self.observers.subscribe("analysis", callback)

    def on_intervention(self, callback: Observer) -> str:
        """Call callback(intervention) for every newly dispatched issue."""
        return self.observers.subscribe("intervention", callback)

    def on_notify(self, callback: Observer) -> str:
        """Call callback(title, message, sound) for every notification."""
        return self.observers.subscribe("notification", callback)

    def on_rule_violation(self, callback: Observer) -> str:
        """Call callback(violations) whenever a rule check reports violations."""
        return self.observers.subscribe("rule_violation", callback)
