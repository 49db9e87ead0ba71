"""Structured feedback: what the next prompt tells the model about its mistakes."""
from __future__ import annotations

from typing import Sequence

from persuader.errors import (
    ProviderError,
    RetryStrategy,
    SchemaIssue,
    StructuredFeedback,
    ValidationError,
)
from persuader.suggestions import JSON_FORMAT_SUGGESTIONS, describe_actual, field_corrections

SEPARATOR = "-" * 60


def build_structured_feedback(
    summary: str,
    issues: Sequence[SchemaIssue],
    suggestions: Sequence[str],
) -> StructuredFeedback:
    """Assemble feedback for a failed validation.

    Args:
        summary: One-line problem summary.
        issues: Schema issues, in validator order.
        suggestions: Suggestions already generated for *issues*.

    Returns:
        :class:`StructuredFeedback` whose correction instructions are the
        per-field corrections followed by any suggestions not already
        covered.
    """
    specific = tuple(_issue_line(issue) for issue in issues)
    corrections = field_corrections(issues)
    for suggestion in suggestions:
        if suggestion not in corrections:
            corrections.append(suggestion)
    return StructuredFeedback(
        problem_summary=summary,
        specific_issues=specific,
        correction_instructions=tuple(corrections),
    )


def json_parse_feedback(parse_message: str) -> StructuredFeedback:
    """Feedback for output that was not JSON at all."""
    return StructuredFeedback(
        problem_summary=f"The response was not valid JSON ({parse_message}).",
        specific_issues=(f"JSON parser error: {parse_message}",),
        correction_instructions=JSON_FORMAT_SUGGESTIONS,
    )


def _issue_line(issue: SchemaIssue) -> str:
    if issue.kind == "missing":
        return f"{issue.dotted_path}: missing (expected {issue.expected})"
    return (
        f"{issue.dotted_path}: {issue.message} "
        f"(expected {issue.expected}, got {describe_actual(issue.actual)} {issue.actual!r})"
    )


def urgency_prefix(attempt_number: int) -> str:
    """Escalating prefix for feedback on later attempts."""
    if attempt_number >= 3:
        return "CRITICAL: "
    if attempt_number >= 2:
        return "IMPORTANT: "
    return ""


_STRATEGY_INSTRUCTIONS = {
    RetryStrategy.DEMAND_JSON_FORMAT: (
        'Your response MUST be a single JSON value: start with "{" or "[" and end with '
        '"}" or "]". No text before or after it.'
    ),
    RetryStrategy.CLARIFY_TYPES: (
        "Use exactly the JSON types listed in the schema. Numbers are unquoted, "
        "booleans are true/false, lists are arrays."
    ),
    RetryStrategy.PROVIDE_FIELD_GUIDANCE: "Include every required field listed in the schema.",
    RetryStrategy.CLARIFY_CONSTRAINTS: (
        "Respect every constraint in the schema: allowed values, ranges, and lengths."
    ),
    RetryStrategy.FIX_STRUCTURE: "Use only the fields defined in the schema, nested as shown.",
    RetryStrategy.REINFORCE_CONTEXT: "Re-read the context and task, then answer using the schema.",
    RetryStrategy.SESSION_RESET: "Ignore your previous answer and start over from the task below.",
}


def strategy_instruction(strategy: RetryStrategy) -> str:
    """The one-line instruction a retry strategy adds to the next prompt."""
    return _STRATEGY_INSTRUCTIONS[strategy]


def render_feedback(
    error: ValidationError,
    attempt_number: int,
    max_attempts: int | None = None,
) -> str:
    """Render a validation error as prompt text for the next attempt.

    Args:
        error: The error from the previous attempt.
        attempt_number: The attempt this feedback is for (2 for the first retry).
        max_attempts: Total attempt budget; enables a final-attempt warning.

    Returns:
        Feedback text: summary, issues, numbered corrections, and the
        strategy instruction.
    """
    feedback = error.structured_feedback
    lines = [f"{urgency_prefix(attempt_number)}Your previous response failed validation."]
    if attempt_number >= 2:
        lines.append(SEPARATOR)
    lines.append(f"Problem: {feedback.problem_summary}")
    if feedback.specific_issues:
        lines.append("")
        lines.append("Specific issues:")
        lines.extend(f"  - {issue}" for issue in feedback.specific_issues)
    if feedback.correction_instructions:
        lines.append("")
        lines.append("Required corrections:")
        lines.extend(
            f"  {n}. {instruction}"
            for n, instruction in enumerate(feedback.correction_instructions, start=1)
        )
    if feedback.example_correction:
        lines.append("")
        lines.append(f"Example of a corrected response:\n{feedback.example_correction}")
    lines.append("")
    lines.append(strategy_instruction(error.retry_strategy))
    if max_attempts is not None and attempt_number >= max_attempts:
        lines.append("CRITICAL: This is your final attempt. Follow the corrections exactly.")
    return "\n".join(lines)


def summarize_error(error: ValidationError | ProviderError) -> str:
    """``type:code - message`` one-liner for logs and result metadata."""
    return f"{error.type}:{error.code} - {error.message}"
