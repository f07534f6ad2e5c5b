"""JSON-lines workflow log reader with replay and live tailing.

The workflow log is append-only: one JSON object per line, with optional
human summary lines prefixed by "#". Replay parses the whole file; tailing
polls byte offsets from the end of the file and pushes each new event to a
callback.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import aiofiles
import aiofiles.os

from workflow_supervision.events.models import Event, EventHandler, EventKind
from workflow_supervision.exceptions import MalformedEventError

logger = logging.getLogger(__name__)


def parse_lines(lines: list[str]) -> list[Event]:
    """Parse log lines into events, skipping summaries and malformed entries.

    Args:
        lines: Raw log lines (without trailing newlines)

    Returns:
        Events in line order
    """
    events: list[Event] = []

    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        try:
            events.append(Event.from_dict(json.loads(stripped)))
        except json.JSONDecodeError as e:
            logger.warning("Skipping malformed log line", extra={"error": str(e)})
        except MalformedEventError as e:
            logger.warning("Skipping invalid log entry", extra={"error": str(e)})

    return events


class JsonlEventSource:
    """Event source backed by a JSON-lines workflow log file.

    Attributes:
        log_path: Path to the workflow log.
        poll_interval: Seconds between tail polls.
    """

    def __init__(self, log_path: str | Path, poll_interval: float = 0.5):
        """Initialize the event source.

        Args:
            log_path: Path to the workflow log file.
            poll_interval: Seconds between tail polls.
        """
        self.log_path = Path(log_path)
        self.poll_interval = poll_interval

        self._handler: EventHandler | None = None
        self._tail_task: asyncio.Task | None = None
        self._offset = 0
        self._pending = b""

    async def read_all(self) -> list[Event]:
        """Read and parse every entry currently in the log.

        Returns:
            All well-formed events in append order; empty if the file is missing.
        """
        if not self.log_path.exists():
            logger.debug(f"Workflow log does not exist: {self.log_path}")
            return []

        async with aiofiles.open(self.log_path, encoding="utf-8", errors="replace") as f:
            content = await f.read()

        return parse_lines(content.splitlines())

    async def query_last(
        self,
        command: str | None = None,
        kind: EventKind | None = None,
        phase: str | None = None,
    ) -> Event | None:
        """Return the newest event matching every given filter."""
        for event in reversed(await self.read_all()):
            if command is not None and event.command != command:
                continue
            if kind is not None and event.kind != kind:
                continue
            if phase is not None and event.phase != phase:
                continue
            return event
        return None

    def tail(self, on_event: EventHandler) -> None:
        """Start pushing newly appended events to a callback.

        Tailing starts at the current end of the file; resubscribing after
        stop_tail() starts from "now" again. Must be called from a running
        event loop.
        """
        if self._tail_task is not None:
            logger.warning("Tail already running", extra={"log_path": str(self.log_path)})
            return

        self._handler = on_event
        try:
            self._offset = self.log_path.stat().st_size
        except FileNotFoundError:
            self._offset = 0
        self._pending = b""

        self._tail_task = asyncio.get_running_loop().create_task(self._tail_loop())
        logger.info(
            "Started tailing workflow log",
            extra={"log_path": str(self.log_path), "offset": self._offset},
        )

    def stop_tail(self) -> None:
        """Stop the live tail. Safe to call when not tailing."""
        if self._tail_task is not None:
            self._tail_task.cancel()
            self._tail_task = None
        self._handler = None

    async def _tail_loop(self) -> None:
        """Poll the log for new bytes until cancelled."""
        while True:
            try:
                await self._check_for_new_entries()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error while tailing workflow log",
                    extra={"log_path": str(self.log_path), "error": str(e)},
                    exc_info=True,
                )
            await asyncio.sleep(self.poll_interval)

    async def _check_for_new_entries(self) -> None:
        if not await aiofiles.os.path.exists(self.log_path):
            return

        size = (await aiofiles.os.stat(self.log_path)).st_size
        if size < self._offset:
            logger.warning(
                "Workflow log was truncated, reading from the beginning",
                extra={"log_path": str(self.log_path), "offset": self._offset, "size": size},
            )
            self._offset = 0
            self._pending = b""
        if size == self._offset:
            return

        async with aiofiles.open(self.log_path, "rb") as f:
            await f.seek(self._offset)
            chunk = await f.read(size - self._offset)
        self._offset += len(chunk)

        # Hold back a partial trailing line until its newline arrives
        data = self._pending + chunk
        complete, _, self._pending = data.rpartition(b"\n")
        if not complete:
            return

        events = parse_lines(complete.decode("utf-8", errors="replace").split("\n"))
        for event in events:
            handler = self._handler
            if handler is None:
                return
            handler(event)
