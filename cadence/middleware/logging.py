"""
Logging — Python logger setup plus the schedule transition log.

The transition log is the engine's produced log interface: every schedule
event becomes one timestamped line ("[2025-04-11T10:00:00+00:00] ...")
that an external UI or output channel can tail.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from cadence.core.bus import MiddlewareNext
from cadence.core.events import Event


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Setup Cadence logging.

    Args:
        log_dir: Directory for log files (default: ~/.cadence/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured logger
    """
    log_dir = log_dir or (Path.home() / ".cadence" / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("cadence")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    log_file = log_dir / f"cadence_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    logger.info(f"Logging initialized. File: {log_file}")
    return logger


class TransitionLog:
    """
    Records every schedule event as a timestamped line.

    Lines are kept in a bounded in-memory buffer and, when log_dir is
    given, appended to schedules_YYYYMMDD.log with a JSON-lines twin
    (events_YYYYMMDD.jsonl) for machine consumers.

    Usage:
        transition_log = TransitionLog(log_dir=Path("~/.cadence/logs"))
        bus.use(transition_log.middleware)
    """

    def __init__(
        self,
        log_dir: Path | None = None,
        write_events: bool = True,
        max_lines: int = 500,
    ) -> None:
        self._log_dir = log_dir.expanduser() if log_dir else None
        self._write_events = write_events
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._logger = logging.getLogger("cadence.transitions")
        if self._log_dir:
            self._log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def lines(self) -> list[str]:
        """Most recent transition lines, oldest first."""
        return list(self._lines)

    @property
    def log_file(self) -> Path | None:
        if self._log_dir is None:
            return None
        return self._log_dir / f"schedules_{datetime.now().strftime('%Y%m%d')}.log"

    async def middleware(self, event: Event, next_handler: MiddlewareNext) -> Event:
        """Log events passing through."""
        if event.message:
            line = f"[{self._format_time(event.timestamp)}] {event.message}"
            self._lines.append(line)
            self._logger.info(event.message)
            self._write_line(line)
        if self._write_events:
            self._write_event(event)
        return await next_handler(event)

    @staticmethod
    def _format_time(ts: float) -> str:
        return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()

    def _write_line(self, line: str) -> None:
        log_file = self.log_file
        if log_file is None:
            return
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            self._logger.warning(f"Failed to write transition log: {e}")

    def _write_event(self, event: Event) -> None:
        """Write event to JSON lines file."""
        if self._log_dir is None:
            return
        events_file = self._log_dir / f"events_{datetime.now().strftime('%Y%m%d')}.jsonl"
        try:
            record = {
                "timestamp": self._format_time(event.timestamp),
                "id": event.id,
                "type": event.type,
                "source": event.source,
                "message": event.message,
                "data": self._safe_serialize(event.data),
            }
            with open(events_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            self._logger.warning(f"Failed to write event log: {e}")

    @staticmethod
    def _safe_serialize(data: dict) -> dict:
        """Safely serialize data for JSON."""
        result = {}
        for key, value in data.items():
            try:
                json.dumps(value)
                result[key] = value
            except (TypeError, ValueError):
                result[key] = str(value)
        return result
