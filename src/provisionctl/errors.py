"""
Error taxonomy for provisionctl.

Every error raised by the lifecycle engine, its adapters and the environment
store derives from ProvisionctlError. The engine annotates adapter errors
with the environment name and the phase being attempted before re-raising,
so callers always see which environment failed, where, and why.

Hierarchy:
    ProvisionctlError
    ├── ConfigError
    ├── InvalidTransition
    ├── ProviderMismatch
    ├── RenderError
    ├── ProcessError            (retryable)
    │   ├── ProcessTimeout
    │   │   └── DeadlineExceeded
    │   ├── OperationCancelled
    │   └── ReadinessTimeout
    ├── ParseError
    └── StoreError
        ├── NotFound
        ├── AlreadyExists
        └── NotDestroyed
"""

from __future__ import annotations

from typing import Optional, Sequence

__all__ = [
    "ProvisionctlError",
    "ConfigError",
    "InvalidTransition",
    "ProviderMismatch",
    "RenderError",
    "ProcessError",
    "ProcessTimeout",
    "DeadlineExceeded",
    "OperationCancelled",
    "ReadinessTimeout",
    "ParseError",
    "StoreError",
    "NotFound",
    "AlreadyExists",
    "NotDestroyed",
]

# Maximum characters of tool output kept in an error summary
_OUTPUT_TAIL_CHARS = 2000


class ProvisionctlError(Exception):
    """Base class for all provisionctl errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        environment: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.environment = environment
        self.phase = phase

    def annotate(self, environment: str, phase: Optional[str]) -> "ProvisionctlError":
        """Attach environment and phase context (kept if already set)."""
        if self.environment is None:
            self.environment = environment
        if self.phase is None:
            self.phase = phase
        return self

    def summary(self) -> str:
        """One-line description suitable for history entries."""
        return f"{type(self).__name__}: {self.message}"

    def __str__(self) -> str:
        parts = []
        if self.environment:
            parts.append(f"environment '{self.environment}'")
        if self.phase:
            parts.append(f"phase '{self.phase}'")
        if parts:
            return f"[{', '.join(parts)}] {self.message}"
        return self.message


class ConfigError(ProvisionctlError):
    """User configuration or settings are invalid."""


class InvalidTransition(ProvisionctlError):
    """Requested operation is not legal from the environment's current phase."""

    def __init__(self, environment: str, operation: str, current: str):
        super().__init__(
            f"cannot {operation} from phase '{current}'",
            environment=environment,
        )
        self.operation = operation
        self.current = current


class ProviderMismatch(ProvisionctlError):
    """Configuration selects a different backend than the environment was created with."""

    def __init__(self, environment: str, expected: str, actual: str):
        super().__init__(
            f"environment was created for provider '{expected}', "
            f"switching to '{actual}' is not supported",
            environment=environment,
        )
        self.expected = expected
        self.actual = actual


class RenderError(ProvisionctlError):
    """Template rendering or variable validation failed."""


class ProcessError(ProvisionctlError):
    """External tool exited non-zero, timed out, or could not be started."""

    retryable = True

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        environment: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        super().__init__(message, environment=environment, phase=phase)
        self.command = tuple(command)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    def summary(self) -> str:
        parts = [f"{type(self).__name__}: {self.message}"]
        if self.command:
            parts.append(f"command: {' '.join(self.command)}")
        if self.exit_code is not None:
            parts.append(f"exit code: {self.exit_code}")
        if self.stderr:
            parts.append(f"stderr: {self.stderr.strip()[-_OUTPUT_TAIL_CHARS:]}")
        return "; ".join(parts)

    def __str__(self) -> str:
        text = super().__str__()
        if self.stderr:
            text += f"\n{self.stderr.strip()[-_OUTPUT_TAIL_CHARS:]}"
        return text


class ProcessTimeout(ProcessError):
    """External tool did not finish within its timeout."""


class DeadlineExceeded(ProcessTimeout):
    """The overall deadline of a transition passed before the next step could start."""


class OperationCancelled(ProcessError):
    """Caller cancelled the transition while an external tool was running."""


class ReadinessTimeout(ProcessError):
    """A polled remote condition did not become true before the deadline."""

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class ParseError(ProvisionctlError):
    """Tool output did not match the expected contract."""


class StoreError(ProvisionctlError):
    """Durable environment record could not be read or written."""


class NotFound(StoreError):
    """No environment with the given name exists."""

    def __init__(self, name: str):
        super().__init__(f"environment '{name}' not found", environment=name)


class AlreadyExists(StoreError):
    """An environment with the given name already exists."""

    def __init__(self, name: str):
        super().__init__(f"environment '{name}' already exists", environment=name)


class NotDestroyed(StoreError):
    """Deletion refused because external resources may still exist."""

    def __init__(self, name: str, phase: str):
        super().__init__(
            f"environment '{name}' is in phase '{phase}'; destroy it before deleting",
            environment=name,
        )
        self.current = phase
