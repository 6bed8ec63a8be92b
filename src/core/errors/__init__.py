"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- ProbeError hierarchy for typed exceptions
- Classification utilities for exit status selection
"""

from core.errors.exceptions import (
    # Enums
    ErrorCategory,
    EXIT_CODES,
    # Base class
    ProbeError,
    # Configuration / bootstrap
    ConfigurationError,
    BrokerConnectionError,
    TopicCreationError,
    # Consume loop
    ConsumeError,
    GroupClosedError,
    SessionClosedError,
    # Verdict
    ClaimInvariantError,
    ReadinessTimeoutError,
    # Classification utilities
    classify_exception,
    exit_code_for,
)

__all__ = [
    # Enums
    "ErrorCategory",
    "EXIT_CODES",
    # Base class
    "ProbeError",
    # Configuration / bootstrap
    "ConfigurationError",
    "BrokerConnectionError",
    "TopicCreationError",
    # Consume loop
    "ConsumeError",
    "GroupClosedError",
    "SessionClosedError",
    # Verdict
    "ClaimInvariantError",
    "ReadinessTimeoutError",
    # Classification utilities
    "classify_exception",
    "exit_code_for",
]
