"""Human-readable descriptions of JSON schemas.

The describer walks the JSON schema pydantic generates and dispatches on a
closed set of node kinds: object, array, enum, union, nullable, primitive.
Anything else gets a generic label. Descriptions feed both logging and the
schema section of prompts, so :func:`describe_json_schema` never raises.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from persuader.constants import GENERIC_SCHEMA_DESCRIPTION, MAX_DESCRIPTION_DEPTH

_PRIMITIVE_LABELS = {
    "string": "string",
    "integer": "integer",
    "number": "number",
    "boolean": "boolean",
    "null": "null",
}

_FORMAT_LABELS = {
    "date-time": "datetime string (ISO 8601)",
    "date": "date string (YYYY-MM-DD)",
    "email": "email address",
    "uri": "URL",
    "uuid": "UUID string",
}


@dataclass
class SchemaSummary:
    """Counts used when logging which schema a run validates against.

    Attributes:
        kind: Node kind of the root (``object``, ``array``...).
        title: Schema title, if any.
        required_fields: Required top-level field names.
        optional_fields: Optional top-level field names.
        max_depth: Deepest nesting level seen.
    """

    kind: str
    title: str | None = None
    required_fields: list[str] = field(default_factory=list)
    optional_fields: list[str] = field(default_factory=list)
    max_depth: int = 0

    @property
    def field_count(self) -> int:
        return len(self.required_fields) + len(self.optional_fields)


def node_kind(node: dict[str, Any]) -> str:
    """Classify a JSON-schema node into one of the known kinds."""
    if "$ref" in node:
        return "ref"
    if "enum" in node or "const" in node:
        return "enum"
    variants = node.get("anyOf") or node.get("oneOf")
    if variants:
        non_null = [v for v in variants if v.get("type") != "null"]
        if len(non_null) < len(variants) and len(non_null) == 1:
            return "nullable"
        return "union"
    if "allOf" in node and len(node["allOf"]) == 1:
        return "wrapper"
    node_type = node.get("type")
    if node_type == "object" or "properties" in node:
        return "object"
    if node_type == "array":
        return "array"
    if node_type in _PRIMITIVE_LABELS:
        return "primitive"
    return "unknown"


class _Describer:
    """Single-use visitor; holds the ``$defs`` table and recursion guard."""

    def __init__(self, root: dict[str, Any]) -> None:
        self.defs: dict[str, Any] = root.get("$defs") or root.get("definitions") or {}
        self._resolving: set[str] = set()
        self._handlers: dict[str, Callable[[dict[str, Any], int], str]] = {
            "ref": self._ref,
            "enum": self._enum,
            "nullable": self._nullable,
            "union": self._union,
            "wrapper": self._wrapper,
            "object": self._object,
            "array": self._array,
            "primitive": self._primitive,
        }

    def visit(self, node: Any, depth: int) -> str:
        if not isinstance(node, dict):
            return "any value"
        if depth > MAX_DESCRIPTION_DEPTH:
            return "nested value"
        handler = self._handlers.get(node_kind(node))
        if handler is None:
            return "any value"
        return handler(node, depth)

    def _ref(self, node: dict[str, Any], depth: int) -> str:
        name = node["$ref"].rsplit("/", 1)[-1]
        target = self.defs.get(name)
        if target is None:
            return name
        if name in self._resolving:
            return f"{name} (recursive)"
        self._resolving.add(name)
        try:
            return self.visit(target, depth)
        finally:
            self._resolving.discard(name)

    def _enum(self, node: dict[str, Any], depth: int) -> str:
        if "const" in node:
            return f"exactly {_json_literal(node['const'])}"
        values = ", ".join(_json_literal(v) for v in node["enum"])
        return f"one of [{values}]"

    def _nullable(self, node: dict[str, Any], depth: int) -> str:
        variants = node.get("anyOf") or node.get("oneOf")
        inner = next(v for v in variants if v.get("type") != "null")
        return f"{self.visit(inner, depth)} or null"

    def _union(self, node: dict[str, Any], depth: int) -> str:
        variants = node.get("anyOf") or node.get("oneOf")
        labels = [self.visit(v, depth) for v in variants]
        return "either " + " | ".join(labels)

    def _wrapper(self, node: dict[str, Any], depth: int) -> str:
        return self.visit(node["allOf"][0], depth)

    def _object(self, node: dict[str, Any], depth: int) -> str:
        properties: dict[str, Any] = node.get("properties") or {}
        if not properties:
            extra = node.get("additionalProperties")
            if isinstance(extra, dict):
                return f"object mapping strings to {self.visit(extra, depth + 1)}"
            return "object"
        required = set(node.get("required") or ())
        indent = "  " * (depth + 1)
        lines = ["object with fields:"]
        for name, child in properties.items():
            flag = "required" if name in required else "optional"
            label = self.visit(child, depth + 1)
            description = child.get("description") if isinstance(child, dict) else None
            suffix = f" ({description})" if description else ""
            lines.append(f"{indent}- {name} ({flag}): {label}{suffix}")
        return "\n".join(lines)

    def _array(self, node: dict[str, Any], depth: int) -> str:
        items = node.get("items")
        label = f"array of {self.visit(items, depth + 1)}" if items else "array"
        bounds = _bounds(node, "minItems", "maxItems", "items")
        return f"{label} ({bounds})" if bounds else label

    def _primitive(self, node: dict[str, Any], depth: int) -> str:
        node_type = node["type"]
        label = _FORMAT_LABELS.get(node.get("format", ""), _PRIMITIVE_LABELS[node_type])
        constraints: list[str] = []
        if node_type in ("integer", "number"):
            for key, symbol in (
                ("minimum", ">="),
                ("exclusiveMinimum", ">"),
                ("maximum", "<="),
                ("exclusiveMaximum", "<"),
            ):
                if key in node:
                    constraints.append(f"{symbol} {node[key]}")
            if "multipleOf" in node:
                constraints.append(f"multiple of {node['multipleOf']}")
        elif node_type == "string":
            bounds = _bounds(node, "minLength", "maxLength", "characters")
            if bounds:
                constraints.append(bounds)
            if "pattern" in node:
                constraints.append(f"matching /{node['pattern']}/")
        return f"{label} {', '.join(constraints)}" if constraints else label


def _bounds(node: dict[str, Any], low_key: str, high_key: str, unit: str) -> str:
    low, high = node.get(low_key), node.get(high_key)
    if low is not None and high is not None:
        return f"{low} to {high} {unit}"
    if low is not None:
        return f"at least {low} {unit}"
    if high is not None:
        return f"at most {high} {unit}"
    return ""


def _json_literal(value: Any) -> str:
    return f'"{value}"' if isinstance(value, str) else str(value)


def describe_json_schema(schema: dict[str, Any]) -> str:
    """Describe a JSON schema in plain language.

    Args:
        schema: A JSON schema dict, typically from ``TypeAdapter.json_schema()``.

    Returns:
        A multi-line description, or a generic sentence if anything about
        the schema could not be understood.
    """
    try:
        text = _Describer(schema).visit(schema, 0)
    except Exception:  # description is best-effort and must never abort validation
        return GENERIC_SCHEMA_DESCRIPTION
    return text or GENERIC_SCHEMA_DESCRIPTION


def describe_schema(schema: Any) -> str:
    """Describe any :class:`~persuader.schema.Schema`, degrading to a generic label."""
    try:
        text = schema.describe()
    except Exception:
        return GENERIC_SCHEMA_DESCRIPTION
    return text if isinstance(text, str) and text else GENERIC_SCHEMA_DESCRIPTION


def summarize_schema(schema: Any) -> SchemaSummary:
    """Summarize a schema's top level for logging.

    Works for anything exposing ``json_schema()``; other schemas get an
    ``unknown`` summary.
    """
    try:
        root = schema.json_schema()
        describer = _Describer(root)
        node = root
        while node_kind(node) in ("ref", "wrapper"):
            node = describer.defs[node["$ref"].rsplit("/", 1)[-1]] if "$ref" in node else node["allOf"][0]
        kind = node_kind(node)
        properties = node.get("properties") or {}
        required = set(node.get("required") or ())
        return SchemaSummary(
            kind=kind,
            title=root.get("title"),
            required_fields=[name for name in properties if name in required],
            optional_fields=[name for name in properties if name not in required],
            max_depth=_depth(root, describer.defs, set()),
        )
    except Exception:
        return SchemaSummary(kind="unknown")


def _depth(node: Any, defs: dict[str, Any], seen: set[str]) -> int:
    if not isinstance(node, dict) or len(seen) > MAX_DESCRIPTION_DEPTH:
        return 0
    if "$ref" in node:
        name = node["$ref"].rsplit("/", 1)[-1]
        if name in seen or name not in defs:
            return 0
        return _depth(defs[name], defs, seen | {name})
    children: list[Any] = list((node.get("properties") or {}).values())
    if isinstance(node.get("items"), dict):
        children.append(node["items"])
    children.extend(node.get("anyOf") or node.get("oneOf") or node.get("allOf") or [])
    nested = 1 if node.get("type") in ("object", "array") or "properties" in node else 0
    return nested + max((_depth(c, defs, seen) for c in children), default=0)
