"""Tests for configuration processing."""
from __future__ import annotations

import dataclasses
import datetime

import pytest

from persuader.config import Options, process_configuration, validate_options
from persuader.constants import DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_RETRIES, DEFAULT_TEMPERATURE
from persuader.errors import ConfigurationError
from persuader.schema import PydanticSchema


def test_defaults_are_applied(person_model) -> None:
    config = process_configuration({"schema": person_model, "input": "Alice is 30"})
    assert config.retries == DEFAULT_RETRIES
    assert config.max_attempts == DEFAULT_RETRIES + 1
    assert config.model == DEFAULT_MODEL
    assert config.provider_options.temperature == DEFAULT_TEMPERATURE
    assert config.provider_options.max_tokens == DEFAULT_MAX_TOKENS
    assert isinstance(config.schema, PydanticSchema)
    assert config.session_id is None


def test_options_dataclass_is_accepted(person_model) -> None:
    config = process_configuration(Options(schema=person_model, input={"text": "x"}, retries=0, lens="terse"))
    assert config.retries == 0
    assert config.max_attempts == 1
    assert config.lens == "terse"


def test_existing_schema_is_kept(person_schema) -> None:
    config = process_configuration({"schema": person_schema, "input": "x"})
    assert config.schema is person_schema


def test_configuration_is_immutable(person_model) -> None:
    config = process_configuration({"schema": person_model, "input": "x"})
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.retries = 9


def test_all_problems_are_reported_together() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        process_configuration({"retries": 11})
    problems = excinfo.value.problems
    assert len(problems) == 3
    assert any(p.startswith("schema is required") for p in problems)
    assert "input is required" in problems
    assert "retries must not exceed 10, got 11" in problems


@pytest.mark.parametrize(
    "retries, message",
    [
        (-1, "retries must be non-negative; use 0 for a single attempt"),
        (True, "retries must be an integer"),
        (2.5, "retries must be an integer"),
    ],
)
def test_bad_retries(person_model, retries, message) -> None:
    assert validate_options({"schema": person_model, "input": "x", "retries": retries}) == [message]


def test_retry_bounds_are_inclusive(person_model) -> None:
    for retries in (0, 10):
        assert validate_options({"schema": person_model, "input": "x", "retries": retries}) == []


def test_temperature_range(person_model) -> None:
    problems = validate_options(
        {"schema": person_model, "input": "x", "provider_options": {"temperature": 3}}
    )
    assert problems == ["provider_options.temperature must be between 0.0 and 2.0, got 3"]


def test_max_tokens_must_be_positive(person_model) -> None:
    problems = validate_options(
        {"schema": person_model, "input": "x", "provider_options": {"max_tokens": 0}}
    )
    assert problems == ["provider_options.max_tokens must be a positive integer"]


def test_extra_provider_options_pass_through(person_model) -> None:
    config = process_configuration(
        {
            "schema": person_model,
            "input": "x",
            "model": "some-model",
            "provider_options": {"temperature": 0.1, "top_p": 0.9},
        }
    )
    options = config.prompt_options()
    assert options.model == "some-model"
    assert options.temperature == 0.1
    assert options.extra == {"top_p": 0.9}
    assert config.session_options().temperature == 0.1


def test_unknown_keys_are_rejected(person_model) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        process_configuration({"schema": person_model, "input": "x", "retry": 2})
    assert excinfo.value.problems == ["unknown option(s): retry"]


def test_non_mapping_options_are_rejected() -> None:
    assert validate_options(42) == ["options must be an Options instance or a mapping, got int"]


def test_blank_session_id(person_model) -> None:
    assert validate_options({"schema": person_model, "input": "x", "session_id": "  "}) == [
        "session_id must not be blank"
    ]


def test_cleanup_conflicts_with_caller_session(person_model) -> None:
    problems = validate_options(
        {"schema": person_model, "input": "x", "session_id": "abc", "cleanup_session": True}
    )
    assert len(problems) == 1
    assert problems[0].startswith("cleanup_session cannot be combined with session_id")


def test_example_output_must_match_schema(person_model) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        process_configuration(
            {"schema": person_model, "input": "x", "example_output": {"name": "Bo", "age": -1}}
        )
    assert "example_output does not match the schema" in excinfo.value.problems[0]
    assert "age:" in excinfo.value.problems[0]


def test_valid_example_output_is_kept(person_model) -> None:
    example = {"name": "Bo", "age": 4}
    config = process_configuration({"schema": person_model, "input": "x", "example_output": example})
    assert config.example_output == example


def test_negative_timing_options(person_model) -> None:
    problems = validate_options(
        {"schema": person_model, "input": "x", "deadline_ms": -1, "request_timeout_ms": "soon"}
    )
    assert problems == [
        "request_timeout_ms must be a non-negative number",
        "deadline_ms must be a non-negative number",
    ]


def test_configuration_error_message_lists_problems() -> None:
    error = ConfigurationError(["a", "b"])
    assert str(error) == "Invalid configuration: a | b"


class _Opaque:
    """Not representable as JSON."""


def test_unserializable_input_fails_fast(person_model) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        process_configuration({"schema": person_model, "input": {"blob": _Opaque()}})
    assert len(excinfo.value.problems) == 1
    assert excinfo.value.problems[0].startswith("input is not JSON-serializable: ")


def test_models_and_dates_are_serializable_input(person_model) -> None:
    value = {"who": person_model(name="Bo", age=4), "when": datetime.date(2024, 1, 2)}
    config = process_configuration({"schema": person_model, "input": value})
    assert config.input == value


def test_equal_options_give_equal_configurations(person_model) -> None:
    options = {"schema": person_model, "input": {"text": "x"}, "provider_options": {"seed": 7}}
    assert process_configuration(options) == process_configuration(dict(options))
    assert process_configuration(options) != process_configuration({**options, "retries": 0})
    assert PydanticSchema(person_model) != PydanticSchema(person_model, strict=True)
