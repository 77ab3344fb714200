"""
Scramblery — Structured Audit Logger
=====================================
Records every scramble run as one JSON object per line so an operator
can later show which images were obfuscated, with which method,
settings and seed.

Record layout:
  {"timestamp", "level", "event", "data"}

Events: system_startup, image_scrambled, batch_finished, scramble_error,
system_shutdown.

Part 7 of 7 — Host Integration
"""

import json
import logging
import os
import threading
import time
from typing import Any, Dict, Optional

import cv2
import numpy as np

from scramble_utils_core import LOG_DIR

_log = logging.getLogger("ScrambleAudit")

AUDIT_FILENAME = "scramble_audit.jsonl"


def _json_default(obj):
    """json.dumps fallback for NumPy values, options and enums."""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if hasattr(obj, "value"):
        return obj.value
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


class ScrambleLogger:
    """Append-only JSONL audit trail for scramble runs.

    All writes, including the shutdown record, happen under one lock, so
    concurrent ``close()`` calls write exactly one shutdown record.
    Records logged after ``close()`` are dropped with a warning.
    """

    def __init__(self, log_dir: str = LOG_DIR, filename: str = AUDIT_FILENAME):
        os.makedirs(log_dir, exist_ok=True)
        self.log_path = os.path.join(log_dir, filename)
        self._lock = threading.Lock()
        self._file = open(self.log_path, "a", encoding="utf-8")

        self.log({"numpy": np.__version__, "opencv": cv2.__version__},
                 level="SYSTEM", event="system_startup")

    @staticmethod
    def _format(data: Dict[str, Any], level: str, event: Optional[str]) -> str:
        record = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        return json.dumps(record, default=_json_default) + "\n"

    def _write_unlocked(self, line: str) -> bool:
        # Caller holds self._lock.
        if self._file.closed:
            return False
        self._file.write(line)
        self._file.flush()
        return True

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        line = self._format(data, level, event)
        with self._lock:
            written = self._write_unlocked(line)
        if not written:
            _log.warning("Audit log closed, dropping %s record", event or level)

    def log_scramble(self, source: str, shape, options, seed=None,
                     face_options=None, elapsed_ms: float = 0.0):
        """Record one completed scramble run."""
        self.log({
            "source": source,
            "shape": tuple(shape),
            "options": options,
            "face_options": face_options,
            "seed": seed,
            "elapsed_ms": round(float(elapsed_ms), 2),
        }, event="image_scrambled")

    def log_batch(self, input_dir: str, output_dir: str, processed: int, skipped: int):
        self.log({
            "input_dir": input_dir,
            "output_dir": output_dir,
            "processed": processed,
            "skipped": skipped,
        }, event="batch_finished")

    def error(self, message: str, exception: Optional[Exception] = None):
        _log.error(message)
        self.log({
            "message": message,
            "kind": type(exception).__name__ if exception else None,
            "exception": str(exception) if exception else None,
        }, level="ERROR", event="scramble_error")

    def close(self):
        """Write the shutdown record and close the file. Safe to call twice."""
        line = self._format({"message": "Audit log closed"}, "SYSTEM", "system_shutdown")
        with self._lock:
            if self._write_unlocked(line):
                self._file.close()


_logger = None
_logger_lock = threading.Lock()


def get_logger(log_dir: str = LOG_DIR) -> ScrambleLogger:
    """Process-wide audit logger, created on first use."""
    global _logger
    with _logger_lock:
        if _logger is None:
            _logger = ScrambleLogger(log_dir)
        return _logger
