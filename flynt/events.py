"""Execution log: append-only record of run activity with streaming support."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from flynt.models import LOG_LEVELS, LogEntry

logger = logging.getLogger(__name__)


class EventLog:
    """Append-only log entries with subscription support.

    The backing list is swapped on every new run; subscribers stay attached
    so a UI stream survives run restarts.
    """

    def __init__(self, log_file: Path | None = None, history: list[LogEntry] | None = None):
        self._log_file = log_file
        self._subscribers: list[asyncio.Queue] = []
        self._history: list[LogEntry] = history if history is not None else []

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, entry: LogEntry) -> LogEntry:
        """Append an entry, persist it and notify subscribers."""
        if entry.level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {entry.level}")
        self._history.append(entry)
        self._persist(entry)
        self._notify(entry)
        logger.debug(f"Log: [{entry.level}] {entry.agent_name}: {entry.message}")
        return entry

    def emit_simple(self, agent_name: str, message: str, level: str = "info", agent_id: str = "system") -> LogEntry:
        """Convenience: emit with plain arguments."""
        return self.emit(LogEntry(agent_name=agent_name, message=message, level=level, agent_id=agent_id))

    def recent(self, limit: int = 50, offset: int = 0) -> list[LogEntry]:
        """Get recent entries (paginated, oldest first)."""
        start = max(0, len(self._history) - offset - limit)
        end = max(0, len(self._history) - offset)
        return self._history[start:end]

    def history(self) -> list[LogEntry]:
        return list(self._history)

    def reset(self, history: list[LogEntry]):
        """Start appending to a fresh backing list (new run)."""
        self._history = history

    def subscribe(self) -> asyncio.Queue:
        """Subscribe to live entries."""
        q: asyncio.Queue = asyncio.Queue(maxsize=1000)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self._subscribers:
            self._subscribers.remove(q)

    def __len__(self) -> int:
        return len(self._history)

    def _persist(self, entry: LogEntry):
        if self._log_file:
            with open(self._log_file, "a") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")

    def _notify(self, entry: LogEntry):
        for q in self._subscribers:
            try:
                q.put_nowait(entry)
            except asyncio.QueueFull:
                logger.warning("Log subscriber queue full, dropping entry")
