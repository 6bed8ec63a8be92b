"""
Exception types and error classification for the partition probe.

Provides:
- ErrorCategory enum mirroring the probe's failure taxonomy
- Typed exception hierarchy, each class carrying its process exit code
- Classification helpers used by the CLI to pick an exit status
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of probe failures.

    Categories:
        CONFIGURATION: Missing/invalid broker list, bad version string, bad YAML
        BOOTSTRAP: Cannot connect, cannot resolve controller, cannot create topic
        CONSUME: A consume loop surfaced anything other than "group closed"
        INVARIANT: Observed claims contradict exclusive partition assignment
        TIMEOUT: Readiness rendezvous did not complete in time
        CLOSED: Session/group was closed (expected termination signal)
        UNKNOWN: Anything unclassified
    """

    CONFIGURATION = "configuration"
    BOOTSTRAP = "bootstrap"
    CONSUME = "consume"
    INVARIANT = "invariant"
    TIMEOUT = "timeout"
    CLOSED = "closed"
    UNKNOWN = "unknown"


# Process exit status per category
EXIT_CODES = {
    ErrorCategory.UNKNOWN: 1,
    ErrorCategory.CONFIGURATION: 2,
    ErrorCategory.BOOTSTRAP: 3,
    ErrorCategory.CONSUME: 4,
    ErrorCategory.INVARIANT: 5,
    ErrorCategory.TIMEOUT: 6,
    ErrorCategory.CLOSED: 1,
}


class ProbeError(Exception):
    """
    Base exception for all probe errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_fatal(self) -> bool:
        """Whether this error must abort the whole probe."""
        return self.category != ErrorCategory.CLOSED

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.category]

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause!r}")
        return " | ".join(parts)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ProbeError, ValueError):
    """Invalid or missing configuration."""

    category = ErrorCategory.CONFIGURATION


# =============================================================================
# Bootstrap Errors
# =============================================================================


class BrokerConnectionError(ProbeError):
    """Cannot open a broker connection or resolve the cluster controller."""

    category = ErrorCategory.BOOTSTRAP


class TopicCreationError(ProbeError):
    """Topic creation rejected for a reason other than "already exists"."""

    category = ErrorCategory.BOOTSTRAP

    def __init__(
        self,
        topic: str,
        error_name: str,
        error_message: str = "",
        error_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        message = f"Failed to create topic '{topic}': {error_name}"
        if error_message:
            message = f"{message} ({error_message})"
        super().__init__(
            message,
            cause,
            {"topic": topic, "error_code": error_code, "error_name": error_name},
        )
        self.topic = topic
        self.error_code = error_code
        self.error_name = error_name


# =============================================================================
# Consume Errors
# =============================================================================


class ConsumeError(ProbeError):
    """A worker's consume loop failed with an unexpected error."""

    category = ErrorCategory.CONSUME

    def __init__(
        self,
        worker_id: int,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            f"Worker {worker_id}: {message}", cause, {"worker_id": worker_id}
        )
        self.worker_id = worker_id


class GroupClosedError(ProbeError):
    """Consume was attempted on (or interrupted by) a closed group session."""

    category = ErrorCategory.CLOSED


class SessionClosedError(ProbeError):
    """A group session handle was closed a second time."""

    category = ErrorCategory.CLOSED


# =============================================================================
# Verdict Errors
# =============================================================================


class ClaimInvariantError(ProbeError):
    """Observed partition claims violate exclusive assignment."""

    category = ErrorCategory.INVARIANT


class ReadinessTimeoutError(ProbeError):
    """Not every worker signalled readiness before the deadline."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, timeout_s: float, pending_worker_ids: list):
        super().__init__(
            f"Readiness rendezvous timed out after {timeout_s}s; "
            f"still waiting on workers {pending_worker_ids}",
            context={"timeout_s": timeout_s, "pending": pending_worker_ids},
        )
        self.timeout_s = timeout_s
        self.pending_worker_ids = pending_worker_ids


# =============================================================================
# Classification Utilities
# =============================================================================


def classify_exception(error: BaseException) -> ErrorCategory:
    """Return the category for any exception (UNKNOWN for foreign ones)."""
    if isinstance(error, ProbeError):
        return error.category
    return ErrorCategory.UNKNOWN


def exit_code_for(error: BaseException) -> int:
    """Return the process exit status the CLI should use for an error."""
    return EXIT_CODES[classify_exception(error)]
