"""Error classification and recovery recommendations for failed runs."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from persuader.errors import PipelineError, ProviderError, RetryStrategy, ValidationError
from persuader.logs import resolve_logger


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Category(str, Enum):
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    PROVIDER = "provider"
    SYSTEM = "system"


class RecoveryAction(str, Enum):
    RETRY = "retry"
    SESSION_RESET = "session_reset"
    CONFIGURATION_CHANGE = "configuration_change"
    MANUAL_INTERVENTION = "manual_intervention"


@dataclass(frozen=True)
class ErrorClassification:
    """How bad an error is and who has to act on it."""

    severity: Severity
    category: Category
    recoverable: bool
    user_action_required: bool


@dataclass(frozen=True)
class RecoveryStrategy:
    """Recommended next step after a failed run.

    Attributes:
        strategy: What to do.
        reason: Why.
        suggestions: Concrete steps for the caller.
        retryable: Whether running again unchanged may succeed.
    """

    strategy: RecoveryAction
    reason: str
    suggestions: tuple[str, ...] = field(default_factory=tuple)
    retryable: bool = False


_TRANSIENT_PROVIDER_CODES = frozenset({"rate_limited", "provider_unavailable", "timeout"})
_SESSION_CODES = frozenset({"session_creation_failed", "session_not_supported"})
_CONFIG_PROVIDER_CODES = frozenset({"auth_failed", "provider_request_rejected"})
_STOPPED_CODES = frozenset({"cancelled", "deadline_exceeded"})


def classify_error(error: PipelineError) -> ErrorClassification:
    """Classify *error* by severity and category."""
    if isinstance(error, ProviderError):
        return _classify_provider_error(error)
    return _classify_validation_error(error)


def _classify_provider_error(error: ProviderError) -> ErrorClassification:
    if error.code in _TRANSIENT_PROVIDER_CODES:
        return ErrorClassification(Severity.LOW, Category.TRANSIENT, True, False)
    if error.code in _SESSION_CODES or error.code == "provider_call_failed":
        return ErrorClassification(Severity.MEDIUM, Category.PROVIDER, True, False)
    if error.code in _CONFIG_PROVIDER_CODES:
        return ErrorClassification(Severity.HIGH, Category.CONFIGURATION, False, True)
    if error.code in _STOPPED_CODES:
        return ErrorClassification(Severity.LOW, Category.SYSTEM, True, False)
    if error.code == "orchestration_failed":
        return ErrorClassification(Severity.CRITICAL, Category.SYSTEM, False, True)
    return ErrorClassification(
        Severity.MEDIUM, Category.PROVIDER, error.retryable, not error.retryable
    )


def _classify_validation_error(error: ValidationError) -> ErrorClassification:
    if error.code == "json_parse":
        return ErrorClassification(Severity.MEDIUM, Category.TRANSIENT, True, False)
    if error.code == "schema_validation":
        return ErrorClassification(Severity.MEDIUM, Category.PROVIDER, True, False)
    if error.code == "unknown_error":
        return ErrorClassification(Severity.CRITICAL, Category.SYSTEM, False, True)
    return ErrorClassification(
        Severity.MEDIUM, Category.SYSTEM, error.retryable, not error.retryable
    )


def analyze_error_recovery(
    error: PipelineError,
    attempt_number: int,
    supports_session: bool = False,
) -> RecoveryStrategy:
    """Recommend how to recover from *error*.

    Args:
        error: The run's final error.
        attempt_number: Attempts made when the error was produced.
        supports_session: Whether the provider can hold a session.
    """
    if isinstance(error, ProviderError):
        return _provider_recovery(error, attempt_number)
    return _validation_recovery(error, attempt_number, supports_session)


def _provider_recovery(error: ProviderError, attempt_number: int) -> RecoveryStrategy:
    if error.code in _SESSION_CODES:
        return RecoveryStrategy(
            RecoveryAction.CONFIGURATION_CHANGE,
            "Session management issue detected",
            (
                "Run without a session by not passing session_id",
                "Verify the provider's session support",
                "Check provider authentication and permissions",
            ),
        )
    if error.code in _TRANSIENT_PROVIDER_CODES:
        return RecoveryStrategy(
            RecoveryAction.RETRY,
            "Transient provider issue; retry with backoff",
            (
                "Wait before retrying to respect rate limits",
                "Consider reducing request frequency",
                "Check the provider's status page",
            ),
            retryable=True,
        )
    if error.code in _CONFIG_PROVIDER_CODES:
        return RecoveryStrategy(
            RecoveryAction.MANUAL_INTERVENTION,
            "Provider configuration or authentication issue",
            (
                "Verify API keys and credentials",
                "Check provider configuration settings",
            ),
        )
    if error.code in _STOPPED_CODES:
        return RecoveryStrategy(
            RecoveryAction.RETRY,
            "Execution was stopped before completing",
            ("Run again with a longer deadline or without cancelling",),
            retryable=True,
        )
    if error.code == "provider_call_failed" and attempt_number < 3:
        return RecoveryStrategy(
            RecoveryAction.RETRY,
            "Transient provider communication failure",
            ("Retry with exponential backoff", "Check network connectivity"),
            retryable=True,
        )
    return RecoveryStrategy(
        RecoveryAction.MANUAL_INTERVENTION,
        "Unrecognized provider error requires investigation",
        (
            "Check the provider documentation for this error",
            "Verify the provider service is available",
        ),
    )


def _validation_recovery(
    error: ValidationError, attempt_number: int, supports_session: bool
) -> RecoveryStrategy:
    if not error.retryable:
        return RecoveryStrategy(
            RecoveryAction.MANUAL_INTERVENTION,
            "Internal error; the output was never validated",
            ("Check the logs for the failing step",),
        )
    if attempt_number >= 3:
        if supports_session:
            return RecoveryStrategy(
                RecoveryAction.SESSION_RESET,
                "Repeated validation failures suggest context confusion",
                (
                    "Start a fresh session to clear confusing context",
                    "Review schema complexity and clarity",
                    "Provide an example_output",
                ),
                retryable=True,
            )
        return RecoveryStrategy(
            RecoveryAction.CONFIGURATION_CHANGE,
            "Repeated validation failures",
            (
                "Simplify the schema or split it into smaller parts",
                "Provide an example_output",
                "Add a lens or context that narrows the task",
            ),
        )
    if error.retry_strategy is RetryStrategy.DEMAND_JSON_FORMAT:
        return RecoveryStrategy(
            RecoveryAction.RETRY,
            "Output was not JSON; retry with format guidance",
            tuple(error.suggestions),
            retryable=True,
        )
    return RecoveryStrategy(
        RecoveryAction.RETRY,
        "Validation failed; retry with feedback",
        tuple(error.suggestions) or ("Review the validation issues",),
        retryable=True,
    )


def log_error_recovery_analysis(
    error: PipelineError,
    attempt_number: int,
    supports_session: bool = False,
    logger: Any | None = None,
) -> RecoveryStrategy:
    """Classify *error*, log the recommendation, and return it."""
    classification = classify_error(error)
    recovery = analyze_error_recovery(error, attempt_number, supports_session)
    resolve_logger(logger).warning(
        "error_recovery_analysis",
        error_type=error.type,
        error_code=error.code,
        severity=classification.severity.value,
        category=classification.category.value,
        recommended=recovery.strategy.value,
        reason=recovery.reason,
        attempts=attempt_number,
    )
    return recovery
