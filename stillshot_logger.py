"""
Stillshot — Structured Audit Logger
====================================
Records capture-session lifecycle events in JSONL format for
post-mortem analysis of when (and why) a still was taken.

Key Features:
  - JSONL (Newline Delimited JSON) format, one flushed line per event
  - Thread-safe writes
  - Levels: SYSTEM, AUDIT, ERROR
  - NumPy scalars/arrays serialized transparently

Events written by StillshotEngine:
  system_startup, session_start, state_transition, capture,
  session_reset, system_error (failed crop), system_shutdown
"""

import json
import logging
import os
import sys
import threading
import time
from typing import Any, Dict, Optional

import numpy as np

_log = logging.getLogger("StillshotAudit")


class StillshotJSONEncoder(json.JSONEncoder):
    """Handles NumPy types for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, bytes):
            return len(obj)
        return super().default(obj)


class StillshotAuditLogger:
    """
    Append-only JSONL audit trail for one process.

    Usage:
        audit = StillshotAuditLogger("logs")
        audit.log({"faces": 2}, event="capture")
        audit.close()
    """

    FILENAME = "stillshot_audit.jsonl"

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, self.FILENAME)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append log entry. Silently ignored after close()."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=StillshotJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def error(self, message: str, exception: Optional[Exception] = None):
        """Log structured error with exception details."""
        _log.error(message)
        err_details = str(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        """Clean shutdown."""
        if self._file.closed:
            return
        self.log({"message": "Audit logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            self._file.close()


# Process-wide instance for callers that don't own one
_logger = None


def get_logger(log_dir="logs"):
    global _logger
    if _logger is None or _logger.closed:
        _logger = StillshotAuditLogger(log_dir)
    return _logger
