"""Logging utilities with security and observability features.

Provides:
- Secret redaction for inline credentials and authorization headers
- Structured logging helpers
- Correlation ID context management
"""

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for the per-turn correlation ID (thread-safe and async-safe)
_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Patterns for inline credentials such as "password=hunter2" or "api-key abc"
CREDENTIAL_PATTERNS = [
    re.compile(r"(password[=\s:]+)([^\s,;]+)", re.IGNORECASE),
    re.compile(r"(api[_-]?key[=\s:]+)([^\s,;]+)", re.IGNORECASE),
    re.compile(r"(secret[=\s:]+)([^\s,;]+)", re.IGNORECASE),
    re.compile(r"(token[=\s:]+)([^\s,;]+)", re.IGNORECASE),
]

PRIVATE_KEY_PATTERN = re.compile(
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
    re.DOTALL,
)

# Pattern for Authorization header values
AUTH_HEADER_PATTERN = re.compile(
    r"(Authorization[:\s]+)(?:Bearer\s+)?([^\s,;]+)",
    re.IGNORECASE,
)


def redact_secrets(text: str | None) -> str:
    """Redact secrets from text (inline credentials, private keys, auth headers).

    Args:
        text: Text that may contain secrets

    Returns:
        Text with secrets redacted
    """
    if text is None:
        return ""

    if not isinstance(text, str):
        text = str(text)

    text = PRIVATE_KEY_PATTERN.sub("***REDACTED PRIVATE KEY***", text)

    for pattern in CREDENTIAL_PATTERNS:
        text = pattern.sub(r"\1***REDACTED***", text)

    text = AUTH_HEADER_PATTERN.sub(r"\1***REDACTED***", text)

    return text


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current context.

    Args:
        correlation_id: Optional correlation ID (generates one if not provided)

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    _correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    """Get the correlation ID for the current context."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from the current context."""
    _correlation_id_var.set(None)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a message with structured context (correlation_id, session_id, etc.).

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.ERROR, etc.)
        message: Log message
        **kwargs: Additional structured fields to include
    """
    correlation_id = get_correlation_id()

    parts = [message]

    if correlation_id:
        parts.append(f"correlation_id={correlation_id}")

    for key, value in kwargs.items():
        # Redact any secrets in values
        safe_value = redact_secrets(str(value))
        parts.append(f"{key}={safe_value}")

    logger.log(level, " | ".join(parts))


def log_debug(logger: logging.Logger, message: str, **kwargs: Any) -> None:
    """Log a debug message with structured context."""
    log_with_context(logger, logging.DEBUG, message, **kwargs)


def log_info(logger: logging.Logger, message: str, **kwargs: Any) -> None:
    """Log an info message with structured context.

    Args:
        logger: Logger instance
        message: Log message
        **kwargs: Additional structured fields
    """
    log_with_context(logger, logging.INFO, message, **kwargs)


def log_warning(logger: logging.Logger, message: str, **kwargs: Any) -> None:
    """Log a warning message with structured context."""
    log_with_context(logger, logging.WARNING, message, **kwargs)


def log_error(logger: logging.Logger, message: str, **kwargs: Any) -> None:
    """Log an error message with structured context."""
    log_with_context(logger, logging.ERROR, message, **kwargs)
