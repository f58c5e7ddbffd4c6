"""
Error handling and diagnostics for dep-scanner.

Provides the exception taxonomy raised by the scan pipeline and the
ErrorHandler diagnostics sink that parsers and vulnerability clients report
skippable anomalies to.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse


class ParseError(ValueError):
    """A required top-level structure of a dependency file is missing or invalid."""


class UnsupportedFileError(ValueError):
    """No parser handles the given file name."""


class VulnerabilityQueryError(RuntimeError):
    """A vulnerability database request failed in a way that aborts the scan."""


class ErrorLevel(Enum):
    """Error severity levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    PARSING = "PARSING"
    NETWORK = "NETWORK"
    VALIDATION = "VALIDATION"
    CREDENTIAL = "CREDENTIAL"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


# Patterns for common sensitive information
_SENSITIVE_PATTERNS = [
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
    (r"(https?://[^@\s]+:)[^@\s]+@", r"\1[REDACTED]@"),
    (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
    (r"\b(gh[pousr]_[A-Za-z0-9]{16,})", "[REDACTED]"),
]
_SENSITIVE_KEYS = {"token", "password", "secret", "credential", "auth"}

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecureLogger:
    """Logger that sanitizes credentials out of messages and details."""

    def __init__(
        self, name: str, level: int = logging.WARNING, log_format: Optional[str] = None
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
            self.logger.addHandler(handler)

    def _sanitize_message(self, message: str) -> str:
        sanitized = message
        for pattern, replacement in _SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value
        return sanitized

    def log_error_context(self, context: ErrorContext):
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{self._sanitize_message(context.message)} | {log_data}"
        self.logger.log(getattr(logging, context.level.value), log_message)


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized diagnostics sink.

    Every pipeline component takes an optional ErrorHandler; warnings about
    skipped entries and degraded queries go through it instead of printing.
    """

    def __init__(
        self,
        logger_name: str = "dep_scanner",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
        log_format: Optional[str] = None,
    ):
        self.logger = SecureLogger(logger_name, log_level, log_format)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            callbacks = self.error_callbacks.get(category, []) + self.global_callbacks
            for callback in callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    # Don't let callback errors break the main flow
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def info(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle info level event."""
        return self.handle_error(
            ErrorLevel.INFO, category, message, module, function, **kwargs
        )

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "dep_scanner",
    log_format: Optional[str] = None,
) -> ErrorHandler:
    """Replace the global error handler with a freshly configured one."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(
        logger_name, log_level, enable_callbacks, log_format
    )
    return _global_error_handler


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    line_number: Optional[int] = None,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
    error_handler: Optional[ErrorHandler] = None,
):
    """
    Convenience function for reporting a skipped entry while parsing.

    Args:
        message: Error message
        module: Module name
        function: Function name
        line_number: Line number where error occurred
        file_path: File being parsed
        exception: Optional exception
        error_handler: Sink to report to, defaults to the global handler
    """
    details = {}
    if line_number is not None:
        details["line_number"] = line_number
    if file_path is not None:
        # Only the filename, not the full path
        details["file_path"] = Path(file_path).name

    (error_handler or get_error_handler()).warning(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Check file format and encoding"],
    )


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
    error_handler: Optional[ErrorHandler] = None,
):
    """
    Convenience function for logging network errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        url: URL that failed (will be sanitized)
        status_code: HTTP status code
        exception: Optional exception
        error_handler: Sink to report to, defaults to the global handler
    """
    details = {}
    if url is not None:
        parsed = urlparse(url)
        sanitized_url = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            sanitized_url += f":{parsed.port}"
        details["url"] = sanitized_url + parsed.path

    if status_code is not None:
        details["status_code"] = status_code

    (error_handler or get_error_handler()).error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Check network connectivity",
            "Check if authentication is required",
            "Review rate limiting settings",
        ],
    )


def log_credential_error(
    message: str,
    module: str,
    function: str,
    credential_type: Optional[str] = None,
    exception: Optional[Exception] = None,
    error_handler: Optional[ErrorHandler] = None,
):
    """
    Convenience function for logging credential errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        credential_type: Type of credential (API key, token, etc.)
        exception: Optional exception
        error_handler: Sink to report to, defaults to the global handler
    """
    details = {}
    if credential_type is not None:
        details["credential_type"] = credential_type

    (error_handler or get_error_handler()).warning(
        ErrorCategory.CREDENTIAL,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Pass --github-token or set GITHUB_TOKEN",
            "Verify credential is valid and not expired",
        ],
    )
