"""Deterministic correction hints derived from schema issues."""
from __future__ import annotations

import difflib
from typing import Any, Iterable

from persuader.errors import SchemaIssue

GENERAL_REMINDERS = (
    "Ensure all required fields are present and have the correct data types.",
    "Double-check field names for typos or incorrect casing.",
    "Verify that the JSON structure matches the expected schema exactly.",
)

JSON_FORMAT_SUGGESTIONS = (
    "Respond with valid JSON only.",
    "Do not include explanations, prose, or markdown code fences around the JSON.",
    "Use double quotes for strings and property names, and no trailing commas.",
)

_TYPE_ARTICLES = {"integer": "an integer", "array": "an array", "object": "an object"}


def describe_actual(value: Any) -> str:
    """Short description of a JSON value's type for feedback text."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def closest_matches(value: str, options: Iterable[Any], limit: int = 3) -> list[str]:
    """Return valid options that look like a near miss for *value*.

    Comparison is case-insensitive; results keep the options' original casing.
    """
    by_lower = {str(option).lower(): str(option) for option in options}
    matches = difflib.get_close_matches(value.lower(), list(by_lower), n=limit, cutoff=0.6)
    return [by_lower[m] for m in matches]


def suggest_for_issue(issue: SchemaIssue) -> list[str]:
    """Return the hints for a single issue (an enum near miss yields two)."""
    path = issue.dotted_path

    if issue.kind == "missing":
        return [f'Field "{path}" is required. Add it to the output.']

    if issue.kind == "extra":
        return [f'Field "{path}" is not part of the schema. Remove it or check its spelling.']

    if issue.kind == "type":
        expected = _TYPE_ARTICLES.get(issue.expected, f"a {issue.expected}")
        return [
            f'Field "{path}" must be {expected}, but got {describe_actual(issue.actual)}.'
        ]

    if issue.kind == "constraint":
        hint = _constraint_hint(issue)
        return [f'Field "{path}" {hint}.']

    if issue.kind == "enum" and issue.code == "union":
        return [
            f'Field "{path}" must match one of the allowed types: {", ".join(issue.options)}, '
            f"but got {describe_actual(issue.actual)}."
        ]

    if issue.kind == "enum":
        valid = ", ".join(f'"{o}"' for o in issue.options) or issue.expected
        hints = [
            f'Field "{path}" must be one of: {valid}. Received {_quote(issue.actual)}.'
        ]
        if isinstance(issue.actual, str) and issue.options:
            matches = closest_matches(issue.actual, issue.options)
            if matches:
                hints.append(f'Did you mean {" or ".join(repr(m) for m in matches)} for "{path}"?')
        return hints

    return [f'Field "{path}": {issue.message}.']


def _constraint_hint(issue: SchemaIssue) -> str:
    code = issue.code
    if code in ("greater_than", "greater_than_equal", "less_than", "less_than_equal", "multiple_of"):
        return f"must be a number {issue.expected} (got {_quote(issue.actual)})"
    if code in ("string_too_short", "string_too_long"):
        return f"must have {issue.expected}"
    if code in ("too_short", "too_long"):
        return f"must contain {issue.expected}"
    if code == "string_pattern_mismatch":
        return f"must be a {issue.expected}"
    return f"is invalid: {issue.message}"


def _quote(value: Any) -> str:
    return f'"{value}"' if isinstance(value, str) else repr(value)


def generate_suggestions(issues: Iterable[SchemaIssue]) -> list[str]:
    """Build the ordered suggestion list for a failed validation.

    Per-issue hints come first, in issue order, followed by the general
    reminders. An empty issue list yields no suggestions.
    """
    suggestions: list[str] = []
    for issue in issues:
        suggestions.extend(suggest_for_issue(issue))
    if suggestions:
        suggestions.extend(GENERAL_REMINDERS)
    return suggestions


def field_corrections(issues: Iterable[SchemaIssue]) -> list[str]:
    """Imperative, one-per-issue correction instructions."""
    corrections: list[str] = []
    for issue in issues:
        path = issue.dotted_path
        if issue.kind == "missing":
            corrections.append(f'Add the required field "{path}" ({issue.expected}).')
        elif issue.kind == "extra":
            corrections.append(f'Remove the unexpected field "{path}".')
        elif issue.kind == "type":
            corrections.append(
                f'Change "{path}" from {describe_actual(issue.actual)} to {issue.expected}.'
            )
        elif issue.kind == "enum":
            corrections.append(f'Set "{path}" to {issue.expected}.')
        elif issue.kind == "constraint":
            corrections.append(f'Make "{path}" satisfy: {issue.expected}.')
        else:
            corrections.append(f'Fix "{path}": {issue.message}.')
    return corrections
