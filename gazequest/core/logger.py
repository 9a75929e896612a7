"""
gazequest/core/logger.py — JSONL structured logger for GazeQuest input.

GQLogger writes one JSON object per line to logs/gq_{date}.jsonl,
rotating automatically each day. WARN/ERROR/CRITICAL are also mirrored
to Python stdlib logging (stderr). Thread-safe via threading.Lock.

The log directory defaults to ``logs/`` and can be redirected with the
``GAZEQUEST_LOG_DIR`` environment variable (read once, on first use).

Usage::

    from gazequest.core.logger import get_logger
    log = get_logger()
    log.info("conditioner", "sample_rejected", {"modality": "gaze"})
    log.perf("calibration", "complete", latency_ms=31500.0, data={"points": 9})
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# ── stdlib mirror logger (stderr for WARN+) ──────────────────
_stdlib = logging.getLogger("gazequest")
if not _stdlib.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s — %(message)s"))
    _stdlib.addHandler(_handler)
_stdlib.setLevel(logging.INFO)
_stdlib.propagate = False

# ── Singleton storage ─────────────────────────────────────────
_instance: Optional["GQLogger"] = None
_instance_lock = threading.Lock()


def _resolve_log_dir() -> Path:
    """Return the log directory, honouring ``GAZEQUEST_LOG_DIR``."""
    return Path(os.environ.get("GAZEQUEST_LOG_DIR", "logs"))


class GQLogger:
    """
    Singleton JSONL structured logger for GazeQuest input.

    Each call to a log method appends a single JSON line to
    ``<log_dir>/gq_{YYYY-MM-DD}.jsonl``. A new file is opened automatically
    when the calendar date changes.

    Fields written per entry:

    .. code-block:: json

        {
          "timestamp_iso": "2026-10-19T09:20:49.123456+00:00",
          "level": "INFO",
          "phase": "dwell",
          "event": "activated",
          "data": {"target": "play-button"},
          "latency_ms": 2000.0
        }

    ``latency_ms`` is omitted when ``None``.

    Do not instantiate directly — use :func:`get_logger`.
    """

    def __init__(self, log_dir: Path | None = None) -> None:
        """Open the log file for today and write the startup entry."""
        self._lock = threading.Lock()
        self._log_dir = log_dir if log_dir is not None else _resolve_log_dir()
        self._file: Optional[Any] = None
        self._current_date: str = ""
        self._open_file()
        self._write_startup()

    @property
    def log_dir(self) -> Path:
        """Directory receiving the JSONL files."""
        return self._log_dir

    # ──────────────────────────────────────────
    # Public logging methods
    # ──────────────────────────────────────────

    def debug(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write a DEBUG-level structured log entry (file only).

        Args:
            phase: Subsystem (e.g. ``'scanning'``, ``'bus'``).
            event: Short event identifier.
            data: Optional dict of additional key-value context.
        """
        self._write("DEBUG", phase, event, data)

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write an INFO-level structured log entry.

        Args:
            phase: Subsystem (e.g. ``'calibration'``, ``'gaze'``).
            event: Short event identifier (e.g. ``'session_started'``).
            data: Optional dict of additional key-value context.
        """
        self._write("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write a WARN-level entry and mirror to stderr via stdlib logging.

        Args:
            phase: Subsystem.
            event: Short event identifier.
            data: Optional context dict.
        """
        self._write("WARN", phase, event, data)
        _stdlib.warning("[%s] %s | %s", phase, event, data or {})

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write an ERROR-level entry and mirror to stderr via stdlib logging.

        Args:
            phase: Subsystem.
            event: Short event identifier.
            data: Optional context dict.
        """
        self._write("ERROR", phase, event, data)
        _stdlib.error("[%s] %s | %s", phase, event, data or {})

    def critical(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write a CRITICAL-level entry and mirror to stderr via stdlib logging.

        Args:
            phase: Subsystem.
            event: Short event identifier.
            data: Optional context dict.
        """
        self._write("CRITICAL", phase, event, data)
        _stdlib.critical("[%s] %s | %s", phase, event, data or {})

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """
        Write a PERF-level entry for latency tracking.

        Args:
            phase: Subsystem the measurement belongs to.
            event: What was measured (e.g. ``'analyze'``).
            latency_ms: Measured latency in milliseconds.
            data: Optional additional context dict.
        """
        self._write("PERF", phase, event, data, latency_ms=latency_ms)

    def flush(self) -> None:
        """Flush the underlying file buffer immediately."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.flush()

    def close(self) -> None:
        """Close the current log file. Later writes reopen it."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.close()
            self._current_date = ""

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _write(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        """
        Serialise and append one JSON line to the log file.

        Performs the daily rotation check on every write. Values that are not
        JSON-native (enums, tuples of floats, dataclasses) are rendered with
        ``str``.
        """
        now = datetime.now(tz=timezone.utc)
        record: dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level,
            "phase": phase,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            record["latency_ms"] = round(latency_ms, 3)

        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            self._rotate_if_needed(now)
            if self._file and not self._file.closed:
                self._file.write(line + "\n")

    def _rotate_if_needed(self, now: datetime) -> None:
        """
        Open a new log file if the calendar date has changed.

        Called inside ``self._lock`` — do not call from outside.
        """
        today = now.strftime("%Y-%m-%d")
        if today != self._current_date or self._file is None or self._file.closed:
            if self._file and not self._file.closed:
                self._file.close()
            self._current_date = today
            log_path = self._log_dir / f"gq_{today}.jsonl"
            self._log_dir.mkdir(parents=True, exist_ok=True)
            self._file = open(log_path, "a", encoding="utf-8", buffering=1)  # noqa: SIM115

    def _open_file(self) -> None:
        """Open the log file for today's date (called once on init)."""
        now = datetime.now(tz=timezone.utc)
        with self._lock:
            self._rotate_if_needed(now)

    def _write_startup(self) -> None:
        """Write a startup entry with Python version and platform."""
        self.info(
            phase="system",
            event="startup",
            data={
                "python_version": sys.version,
                "platform": platform.platform(),
                "timestamp_local": datetime.now().isoformat(),
            },
        )


# ──────────────────────────────────────────────────────────────
# Singleton accessor
# ──────────────────────────────────────────────────────────────

def get_logger() -> GQLogger:
    """
    Return the singleton :class:`GQLogger` instance.

    Thread-safe: the first call creates the instance; subsequent calls
    return the same object without acquiring the creation lock.

    Returns:
        The application-wide :class:`GQLogger`.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = GQLogger()
    return _instance


def set_stderr_level(level: str) -> None:
    """
    Set the minimum level mirrored to stderr.

    Args:
        level: ``'DEBUG'``, ``'INFO'``, ``'WARN'`` or ``'ERROR'``.
    """
    mapping = {"WARN": logging.WARNING}
    _stdlib.setLevel(mapping.get(level, getattr(logging, level, logging.INFO)))
