"""Thread-safe observer bus for supervisor diagnostics callbacks."""

import logging
import threading
import uuid
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Observer = Callable[..., Any]

# Topics published by the supervisor
OBSERVER_TOPICS: dict[str, str] = {
    "analysis": "Analysis pass completed (AnalysisResult, history)",
    "intervention": "Intervention generated for a new issue (Intervention)",
    "notification": "Notification delivered (title, message, sound)",
    "rule_violation": "Rule check returned violations (list[RuleViolation])",
}


class ObserverBus:
    """
    Thread-safe observer registry with per-topic subscriber lists.

    Observers register interest in a topic and are called, in subscription
    order, every time that topic is published. A failing observer is logged
    and never prevents the remaining observers from running.

    Example:
        bus = ObserverBus()

        def on_notify(title: str, message: str, sound: str) -> None:
            print(f"{title}: {message}")

        sub_id = bus.subscribe("notification", on_notify)
        bus.publish("notification", "Workflow: Silence", "No activity", "Purr")
        bus.unsubscribe(sub_id)
    """

    def __init__(self) -> None:
        """Initialize the bus with an empty subscriber registry."""
        # topic -> list of (subscription_id, observer)
        self._subscribers: dict[str, list[tuple[str, Observer]]] = {}
        self._lock = threading.Lock()
        logger.debug("ObserverBus initialized")

    def subscribe(self, topic: str, observer: Observer) -> str:
        """
        Subscribe an observer to a topic.

        Args:
            topic: Topic name (see OBSERVER_TOPICS)
            observer: Callable receiving the published arguments

        Returns:
            Subscription ID for unsubscribing
        """
        subscription_id = str(uuid.uuid4())

        with self._lock:
            self._subscribers.setdefault(topic, []).append((subscription_id, observer))
            total = len(self._subscribers[topic])

        logger.debug(
            "Observer subscribed",
            extra={
                "topic": topic,
                "subscription_id": subscription_id,
                "total_subscribers": total,
            },
        )

        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription.

        Returns:
            True if unsubscribed, False if ID not found
        """
        with self._lock:
            for topic, subscribers in self._subscribers.items():
                for i, (sub_id, _) in enumerate(subscribers):
                    if sub_id == subscription_id:
                        subscribers.pop(i)
                        logger.debug(
                            "Observer unsubscribed",
                            extra={"topic": topic, "subscription_id": subscription_id},
                        )
                        return True

        logger.warning(
            "Subscription ID not found",
            extra={"subscription_id": subscription_id},
        )
        return False

    def publish(self, topic: str, *args: Any) -> int:
        """
        Call every observer of a topic synchronously.

        Args:
            topic: Topic to publish
            *args: Positional arguments passed to each observer

        Returns:
            Number of observers that ran without raising
        """
        # Snapshot so observers may (un)subscribe while being called
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))

        if not subscribers:
            return 0

        delivered = 0
        for subscription_id, observer in subscribers:
            try:
                observer(*args)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Observer raised exception",
                    extra={
                        "topic": topic,
                        "subscription_id": subscription_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )

        return delivered

    def get_subscriber_count(self, topic: str | None = None) -> int:
        """
        Get the number of subscribers.

        Args:
            topic: Topic to count. If None, counts across all topics.
        """
        with self._lock:
            if topic is not None:
                return len(self._subscribers.get(topic, []))
            return sum(len(subs) for subs in self._subscribers.values())
