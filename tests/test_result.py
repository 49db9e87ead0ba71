"""Tests for result processing and result helpers."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from structlog.testing import capture_logs

from persuader.engine import ExecutionResult
from persuader.errors import ProviderError
from persuader.providers.mock import MockProvider
from persuader.result import format_result_metadata, get_execution_stats, process_result
from persuader.validation import validate_json


def _start() -> datetime:
    return datetime.now(timezone.utc) - timedelta(milliseconds=50)


def test_success_result() -> None:
    execution = ExecutionResult(success=True, value={"a": 1}, attempts=2)
    result = process_result(execution, "s-1", _start(), MockProvider(), model="m-1")
    assert result.ok
    assert result.value == {"a": 1}
    assert result.error is None
    assert result.attempts == 2
    assert result.session_id == "s-1"
    assert result.metadata.provider == "mock"
    assert result.metadata.model == "m-1"
    assert result.metadata.execution_time_ms >= 50
    assert result.metadata.completed_at >= result.metadata.started_at


def test_none_is_a_valid_success_value() -> None:
    result = process_result(ExecutionResult(success=True, value=None, attempts=1), None, _start(), MockProvider())
    assert result.ok
    assert result.value is None


def test_failure_keeps_error() -> None:
    error = ProviderError(code="rate_limited", message="slow down", retryable=True)
    result = process_result(ExecutionResult(success=False, error=error, attempts=4), None, _start(), MockProvider())
    assert not result.ok
    assert result.error is error
    assert result.value is None


def test_failure_without_error_gets_unknown_error() -> None:
    with capture_logs() as logs:
        result = process_result(
            ExecutionResult(success=False, attempts=1),
            None,
            _start(),
            MockProvider(),
            logger=structlog.get_logger(),
        )
    assert result.error.code == "unknown_error"
    assert result.error.retryable is False
    levels = {entry["event"]: entry["log_level"] for entry in logs}
    assert levels["execution_failed_without_error"] == "error"
    assert levels["pipeline_failed"] == "error"
    assert "error_recovery_analysis" in levels


def test_success_is_logged() -> None:
    with capture_logs() as logs:
        process_result(
            ExecutionResult(success=True, value=1, attempts=1),
            None,
            _start(),
            MockProvider(),
            logger=structlog.get_logger(),
        )
    assert logs[0]["event"] == "pipeline_succeeded"
    assert logs[0]["attempts"] == 1


def test_execution_stats(person_schema) -> None:
    error = validate_json(person_schema, '{"name": "x"}').error
    result = process_result(ExecutionResult(success=False, error=error, attempts=3), "s", _start(), MockProvider(), "m")
    stats = get_execution_stats(result)
    assert stats["successful"] is False
    assert stats["attempts"] == 3
    assert stats["has_session"] is True
    assert stats["model"] == "m"
    assert stats["error_type"] == "validation"
    assert stats["error_code"] == "schema_validation"


def test_format_result_metadata(person_schema) -> None:
    error = validate_json(person_schema, '{"name": "x"}').error
    failed = process_result(ExecutionResult(success=False, error=error, attempts=3), None, _start(), MockProvider())
    formatted = format_result_metadata(failed)
    assert formatted["status"] == "error"
    assert formatted["duration"].endswith("ms")
    assert formatted["error_summary"] == "validation:schema_validation - Schema validation failed"
    assert formatted["issue_count"] == 1

    ok = process_result(ExecutionResult(success=True, value=1, attempts=1), None, _start(), MockProvider())
    formatted = format_result_metadata(ok)
    assert formatted["status"] == "success"
    assert "error_summary" not in formatted
