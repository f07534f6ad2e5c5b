"""Example: Supervising a workflow log

This script tails a JSON-lines workflow log, prints every intervention the
supervisor dispatches, and appends remediation tasks to a JSON-lines file
standing in for a real task queue.

Usage:
    python examples/supervise_workflow_log.py [config.yaml]
"""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from enum import Enum
from pathlib import Path

import aiofiles

from workflow_supervision import (
    FileStateStore,
    JsonlEventSource,
    WorkflowSupervisor,
    configure_logging,
    load_config,
)
from workflow_supervision.supervisor import TaskInput

logger = logging.getLogger("workflow_supervision.examples")


class JsonlTaskQueue:
    """Append each queued task as one JSON line."""

    def __init__(self, path: Path):
        self.path = path

    async def add_task(self, task: TaskInput) -> dict:
        entry = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in asdict(task).items()
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.path, "a") as f:
            await f.write(json.dumps(entry) + "\n")
        return entry


async def main(config_path: str | None) -> None:
    config = load_config(config_path)
    configure_logging(config.log_path.parent / "logs", "INFO")

    supervisor = WorkflowSupervisor(
        event_source=JsonlEventSource(config.log_path, config.tail_poll_interval_seconds),
        task_queue=JsonlTaskQueue(config.log_path.parent / "queue.jsonl"),
        state_store=FileStateStore(config.state_path),
        config=config,
    )

    supervisor.on_intervention(
        lambda intervention: logger.info(
            f"{intervention.response_type.value}: {intervention.notification.title}"
        )
    )

    await supervisor.start()
    logger.info(f"Supervising {config.log_path} (Ctrl+C to stop)")
    try:
        while supervisor.is_running():
            await asyncio.sleep(1)
    finally:
        await supervisor.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
    except KeyboardInterrupt:
        pass
