"""Tests for error classification and recovery recommendations."""
from __future__ import annotations

from persuader.errors import ProviderError, unknown_error
from persuader.recovery import (
    Category,
    RecoveryAction,
    Severity,
    analyze_error_recovery,
    classify_error,
)
from persuader.validation import validate_json


def _provider_error(code: str, retryable: bool = True) -> ProviderError:
    return ProviderError(code=code, message=code, retryable=retryable)


def test_transient_provider_errors() -> None:
    for code in ("rate_limited", "provider_unavailable", "timeout"):
        classification = classify_error(_provider_error(code))
        assert classification.severity is Severity.LOW
        assert classification.category is Category.TRANSIENT
        assert analyze_error_recovery(_provider_error(code), 1).strategy is RecoveryAction.RETRY


def test_auth_failure_needs_a_human() -> None:
    error = _provider_error("auth_failed", retryable=False)
    classification = classify_error(error)
    assert classification.category is Category.CONFIGURATION
    assert classification.user_action_required
    recovery = analyze_error_recovery(error, 1)
    assert recovery.strategy is RecoveryAction.MANUAL_INTERVENTION
    assert not recovery.retryable


def test_session_errors_suggest_configuration_change() -> None:
    recovery = analyze_error_recovery(_provider_error("session_not_supported", retryable=False), 0)
    assert recovery.strategy is RecoveryAction.CONFIGURATION_CHANGE


def test_generic_provider_failure_retries_early_only() -> None:
    error = _provider_error("provider_call_failed")
    assert analyze_error_recovery(error, 1).strategy is RecoveryAction.RETRY
    assert analyze_error_recovery(error, 3).strategy is RecoveryAction.MANUAL_INTERVENTION


def test_unknown_provider_code_follows_retryable_flag() -> None:
    classification = classify_error(_provider_error("odd", retryable=False))
    assert not classification.recoverable
    assert classification.user_action_required


def test_early_json_failure_retries_with_format_guidance(person_schema) -> None:
    error = validate_json(person_schema, "nope").error
    recovery = analyze_error_recovery(error, 1)
    assert recovery.strategy is RecoveryAction.RETRY
    assert recovery.suggestions == error.suggestions


def test_repeated_validation_failures(person_schema) -> None:
    error = validate_json(person_schema, '{"name": "x"}').error
    with_session = analyze_error_recovery(error, 4, supports_session=True)
    without_session = analyze_error_recovery(error, 4, supports_session=False)
    assert with_session.strategy is RecoveryAction.SESSION_RESET
    assert without_session.strategy is RecoveryAction.CONFIGURATION_CHANGE


def test_unknown_error_is_critical() -> None:
    error = unknown_error()
    assert classify_error(error).severity is Severity.CRITICAL
    assert analyze_error_recovery(error, 1).strategy is RecoveryAction.MANUAL_INTERVENTION
