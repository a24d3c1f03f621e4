"""
Structured logging for lifecycle events.

Outputs one JSON line per lifecycle event on the `provisionctl.lifecycle`
logger so runs can be reconstructed from logs alone.

Logged events:
- environment.created
- phase.started
- phase.settled
- phase.failed
- environment.deleted

Usage:
    from provisionctl.logger import LifecycleLogger

    lifecycle = LifecycleLogger()
    lifecycle.log_phase_started(environment="dev", provider="lxd",
                                operation="provision", phase="provisioning")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = ["LifecycleLogger", "configure_logging", "LIFECYCLE_LOGGER_NAME"]

LIFECYCLE_LOGGER_NAME = "provisionctl.lifecycle"

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    """
    Configure the provisionctl logger hierarchy.

    Logs go to stderr so that stdout stays machine readable for
    `--output json`. Calling again replaces the previous handler.
    """
    root = logging.getLogger("provisionctl")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_provisionctl", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler._provisionctl = True
    root.addHandler(handler)


class _JsonFormatter(logging.Formatter):
    """Wraps plain records as JSON; lifecycle lines are already JSON."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.name == LIFECYCLE_LOGGER_NAME:
            return message
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": message,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class LifecycleLogger:
    """
    Structured logger for environment lifecycle events.

    Each entry includes standard fields for filtering:
    - environment: environment name
    - provider: backend kind
    - operation: lifecycle operation (provision, configure, ...)
    - phase: phase entered or failed
    """

    def __init__(self, service_name: str = "provisionctl"):
        self.service_name = service_name
        self._logger = logging.getLogger(LIFECYCLE_LOGGER_NAME)

    def _emit(
        self,
        event: str,
        environment: str,
        level: str = "info",
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        phase: Optional[str] = None,
        **extra_fields: Any,
    ) -> Dict[str, Any]:
        """
        Emit a structured log entry.

        Args:
            event: Event type (e.g., "phase.started")
            environment: Environment name
            level: Log level (info, warn, error)
            provider: Backend kind
            operation: Lifecycle operation
            phase: Phase entered, settled or failed
            **extra_fields: Event-specific fields

        Returns:
            The emitted entry
        """
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "environment": environment,
        }

        if provider:
            entry["provider"] = provider
        if operation:
            entry["operation"] = operation
        if phase:
            entry["phase"] = phase

        # Add extra fields, dropping unset ones
        entry.update({k: v for k, v in extra_fields.items() if v is not None})

        # Output as JSON
        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)
        return entry

    def log_environment_created(self, environment: str, provider: str) -> None:
        """Log environment creation event."""
        self._emit(
            event="environment.created",
            environment=environment,
            provider=provider,
            phase="created",
        )

    def log_phase_started(
        self,
        environment: str,
        provider: str,
        operation: str,
        phase: str,
        from_phase: Optional[str] = None,
    ) -> None:
        """Log that an in-flight phase was entered."""
        self._emit(
            event="phase.started",
            environment=environment,
            provider=provider,
            operation=operation,
            phase=phase,
            from_phase=from_phase,
        )

    def log_phase_settled(
        self,
        environment: str,
        provider: str,
        operation: str,
        phase: str,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Log that a transition completed."""
        self._emit(
            event="phase.settled",
            environment=environment,
            provider=provider,
            operation=operation,
            phase=phase,
            duration_seconds=round(duration_seconds, 3) if duration_seconds is not None else None,
        )

    def log_phase_failed(
        self,
        environment: str,
        provider: str,
        operation: str,
        phase: str,
        error: str,
        error_type: Optional[str] = None,
        retryable: Optional[bool] = None,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Log a failed transition."""
        self._emit(
            event="phase.failed",
            environment=environment,
            level="error",
            provider=provider,
            operation=operation,
            phase=phase,
            error=error,
            error_type=error_type,
            retryable=retryable,
            duration_seconds=round(duration_seconds, 3) if duration_seconds is not None else None,
        )

    def log_environment_deleted(self, environment: str, forced: bool = False) -> None:
        """Log environment deletion."""
        self._emit(
            event="environment.deleted",
            environment=environment,
            level="warn" if forced else "info",
            forced=forced,
        )
