"""Schema capability consumed by the validation engine.

Anything with ``validate(value) -> SchemaResult`` and ``describe() -> str``
satisfies :class:`Schema`. :class:`PydanticSchema` adapts pydantic models
and types, which is what callers normally hand in.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from persuader.errors import SchemaIssue


@dataclass
class SchemaResult:
    """Outcome of running a value through a schema.

    Attributes:
        success: Whether the value satisfied the schema.
        value: The validator's output, present iff *success*.
        issues: Every problem found, in validator order.
    """

    success: bool
    value: Any = None
    issues: list[SchemaIssue] = field(default_factory=list)


@runtime_checkable
class Schema(Protocol):
    """Something that can validate parsed JSON and describe its shape."""

    def validate(self, value: Any) -> SchemaResult:
        ...

    def describe(self) -> str:
        ...


# pydantic error type -> (issue kind, expected label)
_TYPE_LABELS: dict[str, str] = {
    "string_type": "string",
    "int_type": "integer",
    "int_parsing": "integer",
    "int_from_float": "integer",
    "float_type": "number",
    "float_parsing": "number",
    "bool_type": "boolean",
    "bool_parsing": "boolean",
    "list_type": "array",
    "tuple_type": "array",
    "set_type": "array",
    "dict_type": "object",
    "model_type": "object",
    "model_attributes_type": "object",
    "dataclass_type": "object",
    "none_required": "null",
    "date_type": "date string",
    "date_parsing": "date string",
    "date_from_datetime_parsing": "date string",
    "datetime_type": "datetime string",
    "datetime_parsing": "datetime string",
    "uuid_type": "UUID string",
    "uuid_parsing": "UUID string",
    "url_type": "URL string",
    "url_parsing": "URL string",
    "decimal_type": "number",
    "decimal_parsing": "number",
}

_CONSTRAINT_CODES = {
    "greater_than": ("> {gt}", "gt"),
    "greater_than_equal": (">= {ge}", "ge"),
    "less_than": ("< {lt}", "lt"),
    "less_than_equal": ("<= {le}", "le"),
    "multiple_of": ("multiple of {multiple_of}", "multiple_of"),
    "string_too_short": ("at least {min_length} characters", "min_length"),
    "string_too_long": ("at most {max_length} characters", "max_length"),
    "too_short": ("at least {min_length} items", "min_length"),
    "too_long": ("at most {max_length} items", "max_length"),
    "string_pattern_mismatch": ("string matching {pattern}", "pattern"),
    "finite_number": ("finite number", None),
    "value_error": ("value accepted by the field validator", None),
    "assertion_error": ("value accepted by the field validator", None),
}


def _issue_from_pydantic(error: dict[str, Any]) -> SchemaIssue:
    """Convert one entry of ``pydantic.ValidationError.errors()``."""
    code = error.get("type", "unknown")
    path = tuple(error.get("loc", ()))
    message = error.get("msg", "Invalid value")
    actual = error.get("input")
    ctx = error.get("ctx") or {}

    if code == "missing":
        return SchemaIssue(path, code, message, expected="required field", actual=None, kind="missing")

    if code == "extra_forbidden":
        return SchemaIssue(path, code, message, expected="no such field", actual=actual, kind="extra")

    if code in ("enum", "literal_error"):
        options = _parse_options(ctx.get("expected", ""))
        return SchemaIssue(
            path,
            code,
            message,
            expected=f"one of {ctx.get('expected', 'the allowed values')}",
            actual=actual,
            kind="enum",
            options=options,
        )

    if code in _TYPE_LABELS:
        return SchemaIssue(path, code, message, expected=_TYPE_LABELS[code], actual=actual, kind="type")

    if code in _CONSTRAINT_CODES:
        template, _ = _CONSTRAINT_CODES[code]
        try:
            expected = template.format(**ctx)
        except (KeyError, IndexError):
            expected = message
        return SchemaIssue(path, code, message, expected=expected, actual=actual, kind="constraint")

    return SchemaIssue(path, code, message, actual=actual)


def _union_branch(loc: tuple[Any, ...], code: str, value: Any) -> tuple[tuple[Any, ...], str, Any] | None:
    """Locate the union member label pydantic appends to a branch error's ``loc``.

    Walks *loc* through the validated input. The first string element that is
    not a key of the value at that point is the member label, except for a
    missing field at the end of the path. Returns ``(union_path, label,
    value_at_union_path)`` or None for an ordinary error.
    """
    node = value
    for index, key in enumerate(loc):
        if isinstance(node, dict) and key in node:
            node = node[key]
            continue
        if isinstance(node, list) and isinstance(key, int) and 0 <= key < len(node):
            node = node[key]
            continue
        if index == len(loc) - 1 and code == "missing":
            return None
        if isinstance(key, str) and key != "[key]":
            return loc[:index], key, node
        return None
    return None


def _issues_from_pydantic(errors: list[dict[str, Any]], value: Any) -> list[SchemaIssue]:
    """Convert ``ValidationError.errors()``, folding union branches together.

    pydantic reports one error per union member, each with the member's label
    appended to ``loc``. Those become a single ``enum`` issue at the union's
    own path listing the member labels as options.
    """
    entries: list[Any] = []
    unions: dict[tuple[Any, ...], tuple[list[str], Any]] = {}
    for error in errors:
        branch = _union_branch(tuple(error.get("loc", ())), error.get("type", ""), value)
        if branch is None:
            entries.append(_issue_from_pydantic(error))
            continue
        path, label, actual = branch
        if path not in unions:
            unions[path] = ([], actual)
            entries.append(path)
        labels = unions[path][0]
        if label not in labels:
            labels.append(label)

    issues: list[SchemaIssue] = []
    for entry in entries:
        if isinstance(entry, SchemaIssue):
            issues.append(entry)
            continue
        labels, actual = unions[entry]
        allowed = ", ".join(labels)
        issues.append(
            SchemaIssue(
                entry,
                "union",
                f"Value matched none of the allowed types: {allowed}",
                expected=f"one of {allowed}",
                actual=actual,
                kind="enum",
                options=tuple(labels),
            )
        )
    return issues


def _parse_options(expected: str) -> tuple[str, ...]:
    """Pull quoted values out of pydantic's ``"'a', 'b' or 'c'"`` format."""
    parts: list[str] = []
    for chunk in expected.replace(" or ", ",").split(","):
        chunk = chunk.strip()
        if len(chunk) >= 2 and chunk[0] == chunk[-1] and chunk[0] in "'\"":
            parts.append(chunk[1:-1])
        elif chunk:
            parts.append(chunk)
    return tuple(parts)


class PydanticSchema:
    """:class:`Schema` backed by a pydantic model or any pydantic-compatible type.

    Args:
        target: A ``BaseModel`` subclass, or any type ``TypeAdapter`` accepts
            (``list[Item]``, ``dict[str, int]``, a ``TypedDict``...).
        strict: Validate in pydantic strict mode (no ``"30"`` -> ``30``).
    """

    def __init__(self, target: Any, strict: bool = False) -> None:
        self.target = target
        self.strict = strict
        self._adapter: TypeAdapter[Any] = TypeAdapter(target)

    @property
    def name(self) -> str:
        return getattr(self.target, "__name__", None) or repr(self.target)

    def validate(self, value: Any) -> SchemaResult:
        try:
            validated = self._adapter.validate_python(value, strict=self.strict)
        except PydanticValidationError as exc:
            return SchemaResult(
                success=False,
                issues=_issues_from_pydantic(exc.errors(), value),
            )
        return SchemaResult(success=True, value=validated)

    def json_schema(self) -> dict[str, Any]:
        return self._adapter.json_schema()

    def describe(self) -> str:
        from persuader.describe import describe_json_schema

        return describe_json_schema(self.json_schema())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PydanticSchema):
            return NotImplemented
        return self.target == other.target and self.strict == other.strict

    def __hash__(self) -> int:
        return hash((self.target, self.strict))

    def __repr__(self) -> str:
        return f"PydanticSchema({self.name})"


def is_schema(obj: Any) -> bool:
    """Return True if *obj* already satisfies the :class:`Schema` protocol."""
    return not isinstance(obj, type) and isinstance(obj, Schema)


def as_schema(obj: Any) -> Schema:
    """Normalize a caller-supplied schema into a :class:`Schema`.

    Args:
        obj: A :class:`Schema`, a ``BaseModel`` subclass, or a type.

    Returns:
        *obj* itself, or a :class:`PydanticSchema` wrapping it.

    Raises:
        TypeError: If pydantic cannot build a validator for *obj*.
    """
    if is_schema(obj):
        return obj
    try:
        return PydanticSchema(obj)
    except TypeError as exc:
        raise TypeError(f"Cannot build a schema from {obj!r}: {exc}") from exc
