"""
Capped, exportable diagnostic log.

Per-file and per-artist failures are recorded here instead of aborting the
surrounding operation. Newest entries come first; the oldest entry is dropped
once capacity is reached.
"""
from __future__ import annotations

import itertools
import json
import logging
import threading
import traceback
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[List[Dict[str, Any]]], None]


class DiagnosticLog:
    """Bounded newest-first list of error/warning/info entries."""

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: deque = deque(maxlen=capacity)
        self._listeners: List[Listener] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._notifying = False

    def record(self, error: Any, level: str = "error", **context: Any) -> Dict[str, Any]:
        """
        Add an entry for an exception or a plain message.

        Args:
            error: Exception instance or message string
            level: error, warning or info
            **context: Structured context (file name, artist, counts, ...)

        Returns:
            The stored entry
        """
        entry: Dict[str, Any] = {
            "id": next(self._ids),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": str(error),
            "context": context,
        }
        if isinstance(error, BaseException):
            entry["type"] = type(error).__name__
            if error.__traceback__ is not None:
                entry["stack"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )

        with self._lock:
            # deque(maxlen) drops from the opposite end of appendleft
            self._entries.appendleft(entry)
        self._notify()
        return entry

    def warn(self, message: str, **context: Any) -> Dict[str, Any]:
        return self.record(message, level="warning", **context)

    def info(self, message: str, **context: Any) -> Dict[str, Any]:
        return self.record(message, level="info", **context)

    def entries(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with the entry list after every change.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        # a failing listener logs, which can land back here through the handler
        if self._notifying:
            return
        self._notifying = True
        try:
            snapshot = self.entries()
            for listener in list(self._listeners):
                try:
                    listener(snapshot)
                except Exception as e:
                    logger.error(f"Diagnostic log listener failed: {e}")
        finally:
            self._notifying = False

    def export_json(self) -> str:
        return json.dumps(self.entries(), indent=2, ensure_ascii=False, default=str)

    def __len__(self) -> int:
        return len(self._entries)

    def as_handler(self, level: int = logging.WARNING) -> "DiagnosticLogHandler":
        handler = DiagnosticLogHandler(self)
        handler.setLevel(level)
        return handler


class DiagnosticLogHandler(logging.Handler):
    """Logging handler that mirrors WARNING+ records into a DiagnosticLog."""

    _LEVELS = {
        logging.CRITICAL: "error",
        logging.ERROR: "error",
        logging.WARNING: "warning",
    }

    def __init__(self, log: DiagnosticLog):
        super().__init__()
        self._log = log

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        level = self._LEVELS.get(record.levelno, "info")
        self._log.record(message, level=level, logger=record.name)


def attach_to_root(log: DiagnosticLog, level: int = logging.WARNING) -> Optional[DiagnosticLogHandler]:
    """Mirror root WARNING+ records into `log`; safe to call more than once."""
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, DiagnosticLogHandler) and handler._log is log:
            return None
    handler = log.as_handler(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    return handler
