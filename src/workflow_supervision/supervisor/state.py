"""Persisted workflow state snapshot and its file-backed store.

The snapshot is a compact projection of the latest analysis. It is written
as indented JSON after every processed event or rule check, and reloaded on
restart. Writes go to a temporary file first and are atomically renamed so
a crash never leaves a half-written snapshot behind.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from workflow_supervision.analysis.models import (
    CHAIN_STEPS,
    AnalysisResult,
    ChainStatus,
    empty_chain_progress,
)
from workflow_supervision.events.models import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class WorkflowState:
    """Compact, persistable projection of an analysis result.

    Attributes:
        chain_progress: Status of each chain step.
        milestone_timestamps: Milestone times in log order.
        current_command: Command most recently started.
        current_phase: Phase most recently started.
        last_activity_time: Timestamp of the newest event.
    """

    chain_progress: dict[str, ChainStatus] = field(default_factory=empty_chain_progress)
    milestone_timestamps: list[datetime] = field(default_factory=list)
    current_command: str | None = None
    current_phase: str | None = None
    last_activity_time: datetime | None = None

    @classmethod
    def from_analysis(cls, result: AnalysisResult) -> WorkflowState:
        """Project an analysis result into a snapshot."""
        return cls(
            chain_progress=dict(result.chain_progress),
            milestone_timestamps=list(result.milestone_timestamps),
            current_command=result.current_command,
            current_phase=result.current_phase,
            last_activity_time=result.last_activity_time,
        )

    def merged_onto(self, baseline: WorkflowState) -> WorkflowState:
        """Layer this projection over a previously loaded snapshot.

        Chain steps never move backwards, milestone times are appended after
        the baseline's, and unset fields keep the baseline's values.
        """
        chain = dict(baseline.chain_progress)
        for step, status in self.chain_progress.items():
            current = chain.get(step, ChainStatus.PENDING)
            if status.rank > current.rank:
                chain[step] = status

        return WorkflowState(
            chain_progress=chain,
            milestone_timestamps=baseline.milestone_timestamps + self.milestone_timestamps,
            current_command=self.current_command or baseline.current_command,
            current_phase=self.current_phase or baseline.current_phase,
            last_activity_time=self.last_activity_time or baseline.last_activity_time,
        )

    def copy(self) -> WorkflowState:
        """Return a defensive copy."""
        return WorkflowState(
            chain_progress=dict(self.chain_progress),
            milestone_timestamps=list(self.milestone_timestamps),
            current_command=self.current_command,
            current_phase=self.current_phase,
            last_activity_time=self.last_activity_time,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "chain_progress": {step: status.value for step, status in self.chain_progress.items()},
            "milestone_timestamps": [format_timestamp(ts) for ts in self.milestone_timestamps],
        }
        if self.current_command is not None:
            data["current_command"] = self.current_command
        if self.current_phase is not None:
            data["current_phase"] = self.current_phase
        if self.last_activity_time is not None:
            data["last_activity_time"] = format_timestamp(self.last_activity_time)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> WorkflowState:
        """Rebuild a snapshot from its serialized form.

        Raises:
            ValueError: If the data does not describe a valid snapshot
        """
        if not isinstance(data, dict):
            raise ValueError("Workflow state must be a JSON object")

        try:
            raw_chain = data["chain_progress"]
            if not isinstance(raw_chain, dict):
                raise ValueError("chain_progress must be an object")

            chain = empty_chain_progress()
            for step, status in raw_chain.items():
                if step not in CHAIN_STEPS:
                    raise ValueError(f"Unknown chain step {step!r}")
                chain[step] = ChainStatus(status)

            stamps = [parse_timestamp(ts) for ts in data.get("milestone_timestamps", [])]
            last_activity = data.get("last_activity_time")

            return cls(
                chain_progress=chain,
                milestone_timestamps=stamps,
                current_command=data.get("current_command"),
                current_phase=data.get("current_phase"),
                last_activity_time=parse_timestamp(last_activity) if last_activity else None,
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid workflow state: {e}") from e

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> WorkflowState:
        """Parse a snapshot from bytes.

        Raises:
            ValueError: If the bytes are not a valid snapshot
        """
        try:
            parsed = json.loads(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise ValueError(f"Workflow state is not UTF-8: {e}") from e
        return cls.from_dict(parsed)


class FileStateStore:
    """State store keeping the snapshot in a single JSON file.

    Attributes:
        path: Snapshot file path.
    """

    def __init__(self, path: str | Path):
        """Initialize the store.

        Args:
            path: Snapshot file path; parent directories are created on write.
        """
        self.path = Path(path)

    async def read(self) -> bytes | None:
        """Read the snapshot bytes, or None if the file does not exist."""
        if not await aiofiles.os.path.exists(self.path):
            logger.info("Workflow state file does not exist", extra={"path": str(self.path)})
            return None

        async with aiofiles.open(self.path, "rb") as f:
            return await f.read()

    async def write(self, data: bytes) -> None:
        """Atomically replace the snapshot file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")

        async with aiofiles.open(temp_file, "wb") as f:
            await f.write(data)
            await f.flush()

        await aiofiles.os.replace(temp_file, self.path)
        logger.debug("Saved workflow state", extra={"path": str(self.path), "bytes": len(data)})
