"""Validation engine: parse raw model output as JSON, then check it against a schema."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from persuader.describe import describe_schema
from persuader.errors import (
    STRATEGY_FOR_MODE,
    FailureMode,
    SchemaIssue,
    StructuredFeedback,
    ValidationError,
)
from persuader.feedback import build_structured_feedback, json_parse_feedback
from persuader.logs import resolve_logger
from persuader.schema import Schema
from persuader.suggestions import JSON_FORMAT_SUGGESTIONS, generate_suggestions


@dataclass
class ValidationResult:
    """Outcome of :func:`validate_json`.

    Attributes:
        success: Whether the text parsed and satisfied the schema.
        value: The schema's output, present iff *success*.
        error: Diagnostics, present iff not *success*.
    """

    success: bool
    value: Any = None
    error: ValidationError | None = None


def classify_issues(issues: Sequence[SchemaIssue]) -> FailureMode:
    """Pick the failure mode that best explains an issue set.

    Rules, first match wins: every issue a type mismatch; any missing
    field; any enum/literal miss; every issue a constraint violation; every
    issue an unexpected field; otherwise the model misunderstood the task.
    """
    kinds = [issue.kind for issue in issues]
    if not kinds:
        return FailureMode.CONTEXT_CONFUSION
    if all(k == "type" for k in kinds):
        return FailureMode.TYPE_MISMATCH
    if "missing" in kinds:
        return FailureMode.MISSING_FIELD
    if "enum" in kinds:
        return FailureMode.ENUM_MISMATCH
    if all(k == "constraint" for k in kinds):
        return FailureMode.CONSTRAINT_VIOLATION
    if all(k == "extra" for k in kinds):
        return FailureMode.EXTRA_FIELDS
    return FailureMode.CONTEXT_CONFUSION


def parse_json(raw_text: str) -> Any:
    """Parse *raw_text* as JSON after stripping surrounding whitespace.

    Raises:
        json.JSONDecodeError: If the text is not valid JSON.
    """
    return json.loads(raw_text.strip())


def _json_parse_error(raw_text: str, exc: json.JSONDecodeError) -> ValidationError:
    detail = f"{exc.msg} at line {exc.lineno} column {exc.colno}"
    mode = FailureMode.JSON_PARSE_FAILURE
    return ValidationError(
        code="json_parse",
        message=f"Invalid JSON format: {detail}",
        issues=(),
        raw_value=raw_text,
        failure_mode=mode,
        retry_strategy=STRATEGY_FOR_MODE[mode],
        structured_feedback=json_parse_feedback(detail),
        suggestions=JSON_FORMAT_SUGGESTIONS,
    )


def _schema_error(schema: Schema, parsed: Any, issues: Sequence[SchemaIssue]) -> ValidationError:
    mode = classify_issues(issues)
    suggestions = generate_suggestions(issues)
    count = len(issues)
    summary = f"Schema validation failed with {count} issue{'s' if count != 1 else ''}."
    return ValidationError(
        code="schema_validation",
        message="Schema validation failed",
        issues=tuple(issues),
        raw_value=parsed,
        failure_mode=mode,
        retry_strategy=STRATEGY_FOR_MODE[mode],
        structured_feedback=build_structured_feedback(summary, issues, suggestions),
        suggestions=tuple(suggestions),
        schema_description=describe_schema(schema),
    )


def _unexpected_error(raw_text: str, exc: Exception) -> ValidationError:
    mode = FailureMode.UNEXPECTED
    message = f"Unexpected validation error: {exc}"
    hint = "Return a JSON value that matches the schema exactly."
    return ValidationError(
        code="unexpected_error",
        message=message,
        issues=(),
        raw_value=raw_text,
        failure_mode=mode,
        retry_strategy=STRATEGY_FOR_MODE[mode],
        structured_feedback=StructuredFeedback(
            problem_summary=message,
            correction_instructions=(hint,),
        ),
        suggestions=(hint,),
    )


def validate_parsed(schema: Schema, parsed: Any) -> ValidationResult:
    """Run an already-parsed value through *schema*."""
    outcome = schema.validate(parsed)
    if outcome.success:
        return ValidationResult(success=True, value=outcome.value)
    return ValidationResult(success=False, error=_schema_error(schema, parsed, outcome.issues))


def validate_json(schema: Schema, raw_text: str, logger: Any | None = None) -> ValidationResult:
    """Parse *raw_text* and validate it against *schema*.

    Two phases: JSON parsing, then schema validation. Every issue the
    schema reports is kept, in order. A passing value is returned exactly as
    the schema produced it.

    Args:
        schema: The :class:`~persuader.schema.Schema` to satisfy.
        raw_text: Raw model output.
        logger: Optional structlog logger.

    Returns:
        :class:`ValidationResult` with either ``value`` or ``error``.
    """
    log = resolve_logger(logger)
    try:
        try:
            parsed = parse_json(raw_text)
        except json.JSONDecodeError as exc:
            error = _json_parse_error(raw_text, exc)
            log.debug("json_parse_failed", error=error.message, preview=raw_text[:200])
            return ValidationResult(success=False, error=error)

        result = validate_parsed(schema, parsed)
    except Exception as exc:  # a misbehaving custom Schema must not escape the loop
        log.error("validation_crashed", error=str(exc), error_type=type(exc).__name__)
        return ValidationResult(success=False, error=_unexpected_error(raw_text, exc))

    if result.error is not None:
        log.debug(
            "schema_validation_failed",
            issue_count=len(result.error.issues),
            failure_mode=result.error.failure_mode.value,
        )
    return result
