"""Prompt construction for first attempts and retries."""
from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter

from persuader.config import ProcessedConfiguration, ProcessedPreloadConfiguration
from persuader.describe import describe_schema
from persuader.errors import RetryStrategy, ValidationError
from persuader.feedback import render_feedback

BASE_INSTRUCTIONS = (
    "You are a precise data extraction and transformation assistant. Process the "
    "input and return a JSON response that exactly matches the schema below."
)

REQUIREMENTS = (
    "Output MUST be valid JSON that parses correctly.",
    "Output MUST conform exactly to the schema.",
    "All required fields MUST be present.",
    "Field types MUST match exactly (string, number, boolean, etc.).",
    "Do not include any explanatory text, only the JSON response.",
)

_CONTEXT_STRATEGIES = frozenset({RetryStrategy.REINFORCE_CONTEXT, RetryStrategy.SESSION_RESET})

_JSON = TypeAdapter(Any)


def to_json(value: Any) -> str:
    """Indented JSON for *value*; models, dataclasses and dates included."""
    return _JSON.dump_json(value, indent=2).decode()


def format_input(value: Any) -> str:
    """Strings are sent verbatim; anything else as indented JSON."""
    if isinstance(value, str):
        return value
    return to_json(value)


def _input_section(value: Any) -> str:
    return (
        "Process the following input and return a JSON response matching the schema:\n\n"
        f"INPUT DATA:\n{format_input(value)}\n\n"
        "Remember: return only valid JSON that matches the schema. No explanatory text."
    )


def _instruction_sections(config: ProcessedConfiguration[Any], include_context: bool) -> list[str]:
    requirements = "\n".join(f"{n}. {r}" for n, r in enumerate(REQUIREMENTS, start=1))
    sections = [
        BASE_INSTRUCTIONS,
        f"REQUIREMENTS:\n{requirements}",
        f"SCHEMA:\n{describe_schema(config.schema)}",
    ]
    if include_context and config.context:
        sections.append(f"CONTEXT:\n{config.context}")
    if config.lens:
        sections.append(f"PERSPECTIVE:\nProcess the input from this perspective: {config.lens}")
    if config.example_output is not None:
        sections.append(
            "EXAMPLE OUTPUT:\n"
            f"{to_json(config.example_output)}\n"
            "Your response must follow this structure."
        )
    return sections


def build_initial_prompt(config: ProcessedConfiguration[Any]) -> str:
    """Prompt for the first attempt.

    Contains the instructions, schema description, context, lens, example
    output (each when configured) and the input, in that order.
    """
    sections = _instruction_sections(config, include_context=True)
    sections.append(_input_section(config.input))
    return "\n\n".join(sections)


def build_retry_prompt(
    config: ProcessedConfiguration[Any],
    error: ValidationError,
    attempt_number: int,
    session_active: bool,
) -> str:
    """Prompt for an attempt that follows a validation failure.

    Leads with the rendered feedback for *error* and repeats the original
    input. Inside an active session the model already holds the context, so
    it is left out unless the error's strategy asks to restate it.

    Args:
        config: Processed configuration.
        error: The previous attempt's validation error.
        attempt_number: The attempt this prompt is for (2 or later).
        session_active: Whether the provider conversation persists.
    """
    feedback = render_feedback(error, attempt_number, config.max_attempts)
    include_context = not session_active or error.retry_strategy in _CONTEXT_STRATEGIES
    if session_active and not include_context:
        sections = [feedback, f"SCHEMA:\n{describe_schema(config.schema)}"]
    else:
        sections = [feedback, *_instruction_sections(config, include_context=include_context)]
    sections.append(_input_section(config.input))
    return "\n\n".join(sections)


PRELOAD_INSTRUCTIONS = (
    "Read the data below and keep it in mind for the requests that follow in "
    "this conversation. Do not transform it yet. Reply with a short "
    "acknowledgement."
)


def build_preload_prompt(config: ProcessedPreloadConfiguration) -> str:
    """Prompt that loads data into a session without asking for output."""
    sections = [PRELOAD_INSTRUCTIONS]
    if config.context:
        sections.append(f"CONTEXT:\n{config.context}")
    if config.lens:
        sections.append(f"PERSPECTIVE:\nKeep this perspective in mind: {config.lens}")
    sections.append(f"DATA:\n{format_input(config.input)}")
    return "\n\n".join(sections)
