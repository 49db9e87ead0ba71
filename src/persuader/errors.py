"""Error taxonomy for the validation-retry pipeline.

Two families live here:

* Exceptions (:class:`PersuaderError` and subclasses) are raised at the
  edges: bad caller configuration, or a provider adapter reporting a failed
  call.
* Error *values* (:class:`ValidationError`, :class:`ProviderError`) are
  plain dataclasses that flow through the attempt loop and end up in
  :attr:`persuader.result.Result.error`. They are never raised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from persuader.constants import RETRYABLE_HTTP_STATUSES


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Classification enums
# ---------------------------------------------------------------------------


class FailureMode(str, Enum):
    """Why a response failed validation."""

    JSON_PARSE_FAILURE = "json_parse_failure"
    TYPE_MISMATCH = "type_mismatch"
    MISSING_FIELD = "missing_field"
    ENUM_MISMATCH = "enum_mismatch"
    CONSTRAINT_VIOLATION = "constraint_violation"
    EXTRA_FIELDS = "extra_fields"
    CONTEXT_CONFUSION = "context_confusion"
    UNEXPECTED = "unexpected"


class RetryStrategy(str, Enum):
    """How the next prompt should be adjusted after a failure."""

    DEMAND_JSON_FORMAT = "demand_json_format"
    CLARIFY_TYPES = "clarify_types"
    PROVIDE_FIELD_GUIDANCE = "provide_field_guidance"
    CLARIFY_CONSTRAINTS = "clarify_constraints"
    FIX_STRUCTURE = "fix_structure"
    REINFORCE_CONTEXT = "reinforce_context"
    SESSION_RESET = "session_reset"


STRATEGY_FOR_MODE: dict[FailureMode, RetryStrategy] = {
    FailureMode.JSON_PARSE_FAILURE: RetryStrategy.DEMAND_JSON_FORMAT,
    FailureMode.TYPE_MISMATCH: RetryStrategy.CLARIFY_TYPES,
    FailureMode.MISSING_FIELD: RetryStrategy.PROVIDE_FIELD_GUIDANCE,
    FailureMode.ENUM_MISMATCH: RetryStrategy.CLARIFY_CONSTRAINTS,
    FailureMode.CONSTRAINT_VIOLATION: RetryStrategy.CLARIFY_CONSTRAINTS,
    FailureMode.EXTRA_FIELDS: RetryStrategy.FIX_STRUCTURE,
    FailureMode.CONTEXT_CONFUSION: RetryStrategy.REINFORCE_CONTEXT,
    FailureMode.UNEXPECTED: RetryStrategy.SESSION_RESET,
}


# ---------------------------------------------------------------------------
# Error values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchemaIssue:
    """A single field-level problem reported by a schema validator.

    Attributes:
        path: Location of the offending value, e.g. ``("items", 0, "name")``.
        code: Validator-specific error code (``"int_type"``, ``"missing"``...).
        message: Human-readable message from the validator.
        expected: Short description of what was expected.
        actual: The value that was found (``None`` for missing fields).
        kind: Coarse category: ``type``, ``missing``, ``enum``,
            ``constraint``, ``extra`` or ``other``.
        options: Valid values, for enum/literal issues.
    """

    path: tuple[str | int, ...]
    code: str
    message: str
    expected: str = "valid value"
    actual: Any = None
    kind: str = "other"
    options: tuple[Any, ...] = ()

    @property
    def dotted_path(self) -> str:
        """Path joined with dots, or ``"root"`` for the top-level value."""
        return ".".join(str(p) for p in self.path) if self.path else "root"


@dataclass(frozen=True)
class StructuredFeedback:
    """Diagnostic text injected into the next attempt's prompt.

    Attributes:
        problem_summary: One-line statement of what went wrong.
        specific_issues: One entry per issue found.
        correction_instructions: Ordered instructions for the model.
        example_correction: Optional example of corrected output.
    """

    problem_summary: str
    specific_issues: tuple[str, ...] = ()
    correction_instructions: tuple[str, ...] = ()
    example_correction: str | None = None


@dataclass(frozen=True)
class ValidationError:
    """A response that could not be parsed or did not satisfy the schema."""

    code: str
    message: str
    issues: tuple[SchemaIssue, ...]
    raw_value: Any
    failure_mode: FailureMode
    retry_strategy: RetryStrategy
    structured_feedback: StructuredFeedback
    suggestions: tuple[str, ...] = ()
    retryable: bool = True
    schema_description: str | None = None
    timestamp: datetime = field(default_factory=_now)

    type = "validation"


@dataclass(frozen=True)
class ProviderError:
    """A failure that originated at the provider boundary."""

    code: str
    message: str
    retryable: bool
    provider: str = "unknown"
    details: dict[str, Any] = field(default_factory=dict)
    status_code: int | None = None
    retry_after_s: float | None = None
    timestamp: datetime = field(default_factory=_now)

    type = "provider"


PipelineError = Union[ValidationError, ProviderError]


def unknown_error() -> ValidationError:
    """Fallback error for a failed execution that carries no error object."""
    message = "Unknown error occurred during processing"
    hint = "Please try again; this indicates an internal inconsistency"
    return ValidationError(
        code="unknown_error",
        message=message,
        issues=(),
        raw_value=None,
        failure_mode=FailureMode.UNEXPECTED,
        retry_strategy=RetryStrategy.SESSION_RESET,
        structured_feedback=StructuredFeedback(
            problem_summary=message,
            correction_instructions=(hint,),
        ),
        suggestions=(hint,),
        retryable=False,
    )


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PersuaderError(Exception):
    """Base for all exceptions raised by persuader."""


class ConfigurationError(PersuaderError):
    """Caller options are invalid. Raised before any attempt is made.

    Attributes:
        problems: Every problem found, in the order checked.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + " | ".join(self.problems))


class SessionInitError(PersuaderError):
    """:func:`persuader.init_session` could not set up or prime a session.

    Attributes:
        code: ``session_not_supported``, ``session_creation_failed`` or
            ``initial_prompt_failed``.
        error: The underlying error value, when there is one.
    """

    def __init__(self, message: str, *, code: str, error: ProviderError | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.error = error


class ProviderCallError(PersuaderError):
    """Raised by provider adapters when a call fails.

    Subclasses fix :attr:`code` and :attr:`retryable`; the base class can be
    used directly for anything else.

    Attributes:
        code: Machine-readable error code.
        retryable: Whether sending the same prompt again may succeed.
        status_code: HTTP status, if the failure came from one.
        details: Extra adapter-specific context.
    """

    code = "provider_call_failed"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.status_code = status_code
        self.details = details or {}


class ProviderAuthError(ProviderCallError):
    """Authentication or authorization failed (401/403)."""

    code = "auth_failed"
    retryable = False


class ProviderRateLimitError(ProviderCallError):
    """Rate limited by the provider (429).

    Attributes:
        retry_after: Seconds the provider asked us to wait, if known.
    """

    code = "rate_limited"
    retryable = True

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None, **kwargs: Any) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message, **kwargs)


class ProviderTimeoutError(ProviderCallError):
    """The provider did not answer in time."""

    code = "timeout"
    retryable = True


class ProviderUnavailableError(ProviderCallError):
    """The provider returned a server error (5xx)."""

    code = "provider_unavailable"
    retryable = True


def is_retryable_status(status_code: int) -> bool:
    """Return True for HTTP statuses that are worth retrying."""
    return status_code in RETRYABLE_HTTP_STATUSES or 500 <= status_code < 600


def provider_error_from_status(status_code: int, message: str) -> ProviderCallError:
    """Build the matching :class:`ProviderCallError` for an HTTP status.

    Args:
        status_code: HTTP status returned by the provider.
        message: Error text to carry.

    Returns:
        The most specific exception for *status_code*.
    """
    if status_code in (401, 403):
        return ProviderAuthError(message, status_code=status_code)
    if status_code == 429:
        return ProviderRateLimitError(message, status_code=status_code)
    if status_code == 408:
        return ProviderTimeoutError(message, status_code=status_code)
    if 500 <= status_code < 600:
        return ProviderUnavailableError(message, status_code=status_code)
    return ProviderCallError(
        message,
        code="provider_request_rejected",
        retryable=is_retryable_status(status_code),
        status_code=status_code,
    )
