"""
Event logging for download sessions.

Every event goes to the standard ``logging`` tree as a single ``key=value``
line and, when a log directory is given, to a JSON Lines file with the
session context merged in.
"""

import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import IO, Any

from rangefetch.models.span import ByteSpan


class StructuredLogger:
    """
    Writes named events with keyword fields.

    Usage:
        logger = StructuredLogger("rangefetch", log_dir=Path("logs"))
        logger.info("span_received", start=0, end=65536, status=206)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Name of the ``logging`` logger console lines go to.
            log_dir: Directory for the JSONL file; None disables it.
            enable_json: Write the JSONL file (only if ``log_dir`` is set).
            enable_console: Forward events to ``logging``.
        """
        self._logger = logging.getLogger(name)
        self.enable_console = enable_console
        self.json_log_path: Path | None = None
        self._stream: IO[str] | None = None

        if enable_json and log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"rangefetch_{stamp}.jsonl"
            self._stream = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        self._context: dict[str, Any] = {
            "session_id": uuid.uuid4().hex[:12],
            "start_time": datetime.now().isoformat(),
        }

    @property
    def enable_json(self) -> bool:
        return self._stream is not None and not self._stream.closed

    def bind(self, **context: Any) -> None:
        """Adds fields that are repeated in every following JSON record."""
        self._context.update(context)

    def log(self, level: int, event: str, **fields: Any) -> None:
        if self.enable_console and self._logger.isEnabledFor(level):
            details = " ".join(f"{key}={value}" for key, value in fields.items())
            self._logger.log(level, f"[{event}] {details}".rstrip())
        if self.enable_json:
            record = {
                "timestamp": datetime.now().isoformat(),
                "level": logging.getLevelName(level),
                "event": event,
                **self._context,
                **fields,
            }
            try:
                self._stream.write(json.dumps(record, default=str) + "\n")
                self._stream.flush()
            except OSError as e:
                print(f"JSON logging failed: {e}", file=sys.stderr)

    def debug(self, event: str, **fields: Any) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log(logging.ERROR, event, **fields)

    def close(self) -> None:
        if self._stream is not None and not self._stream.closed:
            self._stream.close()

    def __enter__(self) -> "StructuredLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class FetchLogger:
    """Specialized logger for span and session events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(self, url: str, total_length: int, digest: str):
        self.logger.info(
            "session_started", url=url, total_length=total_length, digest=digest
        )

    def span_requested(self, span: ByteSpan, attempt: int):
        self.logger.debug(
            "span_requested", start=span.start, end=span.end, attempt=attempt
        )

    def span_received(
        self, requested: ByteSpan, delivered: ByteSpan, new_bytes: int, status: int
    ):
        self.logger.debug(
            "span_received",
            requested_start=requested.start,
            requested_end=requested.end,
            start=delivered.start,
            end=delivered.end,
            new_bytes=new_bytes,
            status=status,
        )

    def attempt_failed(self, span: ByteSpan, failures: int, reason: str):
        self.logger.warning(
            "attempt_failed",
            start=span.start,
            end=span.end,
            failures=failures,
            reason=reason,
        )

    def session_completed(
        self, total_length: int, attempts: int, duration_s: float, digest: str
    ):
        self.logger.info(
            "session_completed",
            total_length=total_length,
            attempts=attempts,
            duration_s=round(duration_s, 2),
            digest=digest,
        )

    def session_failed(self, error: Exception, attempts: int):
        self.logger.error(
            "session_failed",
            error_type=type(error).__name__,
            error=str(error),
            attempts=attempts,
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, FetchLogger]:
    """
    Create the structured loggers.

    Returns:
        Tuple of (base_logger, fetch_logger)
    """
    base = StructuredLogger("rangefetch.events", log_dir=log_dir, enable_json=enable_json)
    return base, FetchLogger(base)
