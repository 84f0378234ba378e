"""
Logging for hypergrid.

Every component logs one JSON object per line on the "hypergrid" logger
({"event": ..., ...}). The console gets a Rich rendering of that line with
per-tick noise throttled; the file gets a flat JSON record with the event
fields merged in, written from a background thread.
"""

from __future__ import annotations

import atexit
import json
import logging
import queue
import time
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Dict, Iterable, Optional

from rich.logging import RichHandler

# Events that can fire on every tick while nothing is wrong enough to act on.
NOISY_EVENTS = frozenset({
    "tick_skipped_empty_book",
    "circuit_open_idle",
    "tick_overlap_skipped",
    "venue_call_failed",
})


def parse_event(message: str) -> Optional[Dict[str, Any]]:
    """The JSON payload of an event line, or None for free-text messages."""
    if not message.startswith("{"):
        return None
    try:
        data = json.loads(message)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class EventJsonFormatter(logging.Formatter):
    """One flat JSON object per record: timestamp, level, then the event fields."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        line: Dict[str, Any] = {
            "ts": round(record.created, 3),
            "ts_iso": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
        }
        event = parse_event(message)
        if event is not None:
            line.update(event)
        else:
            line["msg"] = message
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, separators=(",", ":"), default=str)


class EventThrottle(logging.Filter):
    """
    Passes the first occurrence of a noisy event per coin, then drops repeats
    for ``cooldown_sec``.
    """

    def __init__(self, cooldown_sec: float = 30.0, events: Iterable[str] = NOISY_EVENTS) -> None:
        super().__init__()
        self.cooldown_sec = cooldown_sec
        self.events = frozenset(events)
        self._last: Dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        event = parse_event(record.getMessage())
        if event is None or event.get("event") not in self.events:
            return True
        key = f"{event['event']}:{event.get('coin', '')}"
        now = time.monotonic()
        last = self._last.get(key)
        if last is not None and now - last < self.cooldown_sec:
            return False
        self._last[key] = now
        return True


class BackgroundFileHandler(QueueHandler):
    """
    Hands records to a queue drained by a listener thread so file writes
    never block the event loop. Records are dropped, and counted, when the
    queue is full.
    """

    def __init__(self, target: logging.Handler, max_queue_size: int = 10000) -> None:
        super().__init__(queue.Queue(maxsize=max_queue_size))
        self.target = target
        self.dropped = 0
        self._listener = QueueListener(self.queue, target, respect_handler_level=True)
        self._listener.start()
        atexit.register(self.close)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1

    def close(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
            self.target.close()
        super().close()


def console_handler(level: int, throttle: bool = True) -> logging.Handler:
    handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    if throttle:
        handler.addFilter(EventThrottle())
    return handler


def file_handler(path: str, level: int, background: bool = True) -> logging.Handler:
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(EventJsonFormatter())
    if not background:
        return handler
    wrapped = BackgroundFileHandler(handler)
    wrapped.setLevel(level)
    return wrapped


def build_logger(
    name: str = "hypergrid",
    level: int = logging.INFO,
    file_path: Optional[str] = "hypergrid.log",
    background_file: bool = True,
    throttle: bool = True,
) -> logging.Logger:
    """
    Configure the process logger once; later calls only adjust the level.

    file_path=None disables the JSON file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    logger.addHandler(console_handler(level, throttle=throttle))
    if file_path:
        logger.addHandler(file_handler(file_path, level, background=background_file))
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data: Any) -> None:
    """log_event(log, "fill", side="buy", px=99900.0)"""
    logger.log(level, json.dumps({"event": event, **data}, default=str))
