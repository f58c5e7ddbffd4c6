"""
Structured logging configuration for dep-scanner.

Provides consistent, machine-readable logging of scan lifecycle and
vulnerability database queries for CI pipelines and operational monitoring.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# LogRecord attributes that are not event fields
_RECORD_ATTRIBUTES = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", record.name),
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class SecurityLogger:
    """Structured logger for scan events."""

    def __init__(self, name: str = "dep_scanner"):
        self.logger = logging.getLogger(f"dep_scanner.{name}")
        self.logger.propagate = False
        self._setup_logger()
        self.scan_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            # stdout is reserved for reports
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)

    def set_scan_context(
        self,
        scan_id: Optional[str] = None,
        file_path: Optional[str] = None,
        total_dependencies: Optional[int] = None,
    ) -> None:
        """Set scan context for logging."""
        self.scan_context = {}
        if scan_id:
            self.scan_context["scan_id"] = scan_id
        if file_path:
            self.scan_context["file_path"] = file_path
        if total_dependencies is not None:
            self.scan_context["total_dependencies"] = total_dependencies

    def clear_scan_context(self) -> None:
        """Clear scan context."""
        self.scan_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.scan_context, **kwargs}
        getattr(self.logger, level.lower())("", extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        """Log info level event."""
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        """Log warning level event."""
        self._log("warning", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        """Log debug level event."""
        self._log("debug", event_type, **kwargs)


# Global logger instances
_scanner_logger = SecurityLogger("scanner")
_vulndb_logger = SecurityLogger("vulndb")


def log_scan_start(
    scan_id: str, file_path: str, total_dependencies: int, sources: Optional[list] = None
) -> None:
    """Log scan start event."""
    set_scan_context(scan_id, file_path, total_dependencies)
    _scanner_logger.info("scan_started", sources=sources or [])


def log_scan_complete(
    scan_id: str,
    duration_ms: int,
    vulnerable_count: int,
    suppressed_count: int = 0,
) -> None:
    """Log scan completion event."""
    _scanner_logger.info(
        "scan_completed",
        scan_id=scan_id,
        scan_duration_ms=duration_ms,
        vulnerable_dependencies=vulnerable_count,
        suppressed_vulnerabilities=suppressed_count,
    )
    clear_scan_context()


def log_vulnerability_query(
    source: str,
    package_count: int,
    response_time_ms: Optional[float] = None,
    success: bool = True,
    **kwargs,
) -> None:
    """Log the outcome of one vulnerability database request."""
    log_data = {"source": source, "package_count": package_count, **kwargs}
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms

    if success:
        _vulndb_logger.debug("vulnerability_query_completed", **log_data)
    else:
        _vulndb_logger.warning("vulnerability_query_failed", **log_data)


def set_scan_context(
    scan_id: Optional[str] = None,
    file_path: Optional[str] = None,
    total_dependencies: Optional[int] = None,
) -> None:
    """Set global scan context for all loggers."""
    for logger in [_scanner_logger, _vulndb_logger]:
        logger.set_scan_context(scan_id, file_path, total_dependencies)


def clear_scan_context() -> None:
    """Clear global scan context."""
    for logger in [_scanner_logger, _vulndb_logger]:
        logger.clear_scan_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in [_scanner_logger, _vulndb_logger]:
        logger.logger.setLevel(level)
