"""Configuration processing: caller options in, immutable configuration out."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from numbers import Real
from types import MappingProxyType
from typing import Any, Generic, Mapping, TypeVar

from pydantic import TypeAdapter
from pydantic_core import PydanticSerializationError

from persuader.constants import (
    BASE_RETRY_DELAY_MS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_RETRIES,
    DEFAULT_TEMPERATURE,
    MAX_RETRIES,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
)
from persuader.errors import ConfigurationError
from persuader.provider import PromptOptions, SessionOptions
from persuader.schema import Schema, as_schema

T = TypeVar("T")

_JSON = TypeAdapter(Any)


@dataclass
class Options:
    """Raw caller options for :func:`persuader.run`.

    Attributes:
        schema: A pydantic model/type or any :class:`~persuader.schema.Schema`.
        input: Value to process; strings are sent as-is, anything else as JSON.
        context: Persistent instructions, sent once per session.
        lens: Short per-call focusing hint.
        session_id: Existing session to reuse. The caller owns it.
        example_output: A valid example shown to the model.
        retries: Retries after the first attempt (0..10).
        model: Model identifier.
        provider_options: ``temperature``, ``max_tokens`` and any
            provider-specific keys.
        success_message: Sent to session-capable providers after a
            successful validation.
        retry_base_delay_ms: First backoff delay after a retryable provider
            error.
        request_timeout_ms: Per-attempt limit on the provider call.
        deadline_ms: Overall budget for the attempt loop.
        cleanup_session: Destroy a session the pipeline created once done.
    """

    schema: Any = None
    input: Any = None
    context: str | None = None
    lens: str | None = None
    session_id: str | None = None
    example_output: Any = None
    retries: int | None = None
    model: str | None = None
    provider_options: Mapping[str, Any] | None = None
    success_message: str | None = None
    retry_base_delay_ms: float | None = None
    request_timeout_ms: float | None = None
    deadline_ms: float | None = None
    cleanup_session: bool = False


@dataclass(frozen=True)
class ProviderOptions:
    """Generation settings after defaults are applied."""

    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    extra: Mapping[str, Any] = field(default_factory=dict)

    def prompt_options(self, model: str) -> PromptOptions:
        return PromptOptions(
            model=model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            extra=dict(self.extra),
        )


@dataclass(frozen=True)
class ProcessedConfiguration(Generic[T]):
    """Validated, defaulted configuration for one pipeline run. Never mutated."""

    schema: Schema
    input: Any
    retries: int
    model: str
    provider_options: ProviderOptions
    session_id: str | None = None
    context: str | None = None
    lens: str | None = None
    example_output: Any = None
    success_message: str | None = None
    retry_base_delay_ms: float = BASE_RETRY_DELAY_MS
    request_timeout_ms: float | None = None
    deadline_ms: float | None = None
    cleanup_session: bool = False

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def prompt_options(self) -> PromptOptions:
        return self.provider_options.prompt_options(self.model)

    def session_options(self) -> SessionOptions:
        return SessionOptions(model=self.model, temperature=self.provider_options.temperature)


_STRING_OPTIONS = ("context", "lens", "session_id", "model", "success_message")


def _coerce_options(options: Any, cls: type[Any] = Options) -> Any:
    if isinstance(options, cls):
        return options
    if not isinstance(options, Mapping):
        raise ConfigurationError(
            [f"options must be an {cls.__name__} instance or a mapping, got {type(options).__name__}"]
        )
    unknown = sorted(set(options) - {f.name for f in fields(cls)})
    if unknown:
        raise ConfigurationError([f"unknown option(s): {', '.join(unknown)}"])
    return cls(**options)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _check_provider_options(provider_options: Any, problems: list[str]) -> None:
    if not isinstance(provider_options, Mapping):
        problems.append("provider_options must be a mapping, e.g. {'temperature': 0.7}")
        return
    if "temperature" in provider_options:
        temperature = provider_options["temperature"]
        if not _is_number(temperature):
            problems.append("provider_options.temperature must be a number")
        elif not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
            problems.append(
                f"provider_options.temperature must be between {MIN_TEMPERATURE} "
                f"and {MAX_TEMPERATURE}, got {temperature}"
            )
    if "max_tokens" in provider_options:
        max_tokens = provider_options["max_tokens"]
        if not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0:
            problems.append("provider_options.max_tokens must be a positive integer")


def validate_options(options: Options | Mapping[str, Any]) -> list[str]:
    """Return every problem with *options*, without raising.

    The example output is not checked here; that needs a working schema
    and happens in :func:`process_configuration`.
    """
    try:
        opts = _coerce_options(options)
    except ConfigurationError as exc:
        return exc.problems

    problems: list[str] = []
    if opts.schema is None:
        problems.append("schema is required: pass a pydantic model, a type, or a Schema")
    if opts.input is None:
        problems.append("input is required")

    if opts.retries is not None:
        if not isinstance(opts.retries, int) or isinstance(opts.retries, bool):
            problems.append("retries must be an integer")
        elif opts.retries < 0:
            problems.append("retries must be non-negative; use 0 for a single attempt")
        elif opts.retries > MAX_RETRIES:
            problems.append(f"retries must not exceed {MAX_RETRIES}, got {opts.retries}")

    for name in _STRING_OPTIONS:
        value = getattr(opts, name)
        if value is not None and not isinstance(value, str):
            problems.append(f"{name} must be a string")
    if isinstance(opts.session_id, str) and not opts.session_id.strip():
        problems.append("session_id must not be blank")

    if opts.provider_options is not None:
        _check_provider_options(opts.provider_options, problems)

    for name in ("retry_base_delay_ms", "request_timeout_ms", "deadline_ms"):
        value = getattr(opts, name)
        if value is not None and (not _is_number(value) or value < 0):
            problems.append(f"{name} must be a non-negative number")

    if opts.session_id is not None and opts.cleanup_session:
        problems.append(
            "cleanup_session cannot be combined with session_id: the caller owns that session"
        )
    return problems


def _provider_options(raw: Mapping[str, Any] | None) -> ProviderOptions:
    extra = dict(raw or {})
    return ProviderOptions(
        temperature=float(extra.pop("temperature", DEFAULT_TEMPERATURE)),
        max_tokens=extra.pop("max_tokens", DEFAULT_MAX_TOKENS),
        extra=MappingProxyType(extra),
    )


def _serialization_problem(value: Any) -> str | None:
    """Why *value* cannot be rendered into a prompt, or None if it can."""
    if value is None or isinstance(value, str):
        return None
    try:
        _JSON.dump_json(value)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        return str(exc)
    return None


def process_configuration(options: Options | Mapping[str, Any]) -> ProcessedConfiguration[Any]:
    """Validate *options* and apply defaults.

    Pure: performs no I/O, and equal options produce equal configurations.

    Args:
        options: An :class:`Options` instance or a mapping of its fields.

    Returns:
        The immutable :class:`ProcessedConfiguration`.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    problems = validate_options(options)
    if problems:
        raise ConfigurationError(problems)
    opts = _coerce_options(options)

    try:
        schema = as_schema(opts.schema)
    except TypeError as exc:
        raise ConfigurationError([f"schema is not usable: {exc}"]) from exc

    if opts.example_output is not None:
        check = schema.validate(opts.example_output)
        if not check.success:
            details = "; ".join(f"{i.dotted_path}: {i.message}" for i in check.issues)
            raise ConfigurationError([f"example_output does not match the schema: {details}"])

    unserializable = [
        f"{name} is not JSON-serializable: {problem}"
        for name, problem in (
            ("input", _serialization_problem(opts.input)),
            ("example_output", _serialization_problem(opts.example_output)),
        )
        if problem
    ]
    if unserializable:
        raise ConfigurationError(unserializable)

    return ProcessedConfiguration(
        schema=schema,
        input=opts.input,
        retries=DEFAULT_RETRIES if opts.retries is None else opts.retries,
        model=opts.model or DEFAULT_MODEL,
        provider_options=_provider_options(opts.provider_options),
        session_id=opts.session_id,
        context=opts.context or None,
        lens=opts.lens or None,
        example_output=opts.example_output,
        success_message=opts.success_message or None,
        retry_base_delay_ms=(
            BASE_RETRY_DELAY_MS if opts.retry_base_delay_ms is None else float(opts.retry_base_delay_ms)
        ),
        request_timeout_ms=opts.request_timeout_ms,
        deadline_ms=opts.deadline_ms,
        cleanup_session=opts.cleanup_session,
    )


@dataclass
class PreloadOptions:
    """Raw caller options for :func:`persuader.preload`.

    Attributes:
        session_id: Session to load the input into. Required.
        input: Data the model should hold on to for later runs.
        context: Instructions sent along with the input.
        lens: Short focusing hint.
        validate_input: Schema the input must satisfy before it is sent.
        model: Model identifier.
        provider_options: As for :class:`Options`.
        request_timeout_ms: Limit on the provider call.
    """

    session_id: str | None = None
    input: Any = None
    context: str | None = None
    lens: str | None = None
    validate_input: Any = None
    model: str | None = None
    provider_options: Mapping[str, Any] | None = None
    request_timeout_ms: float | None = None


@dataclass(frozen=True)
class ProcessedPreloadConfiguration:
    """Validated configuration for one preload call."""

    session_id: str
    input: Any
    model: str
    provider_options: ProviderOptions
    context: str | None = None
    lens: str | None = None
    validate_input: Schema | None = None
    request_timeout_ms: float | None = None

    def prompt_options(self) -> PromptOptions:
        return self.provider_options.prompt_options(self.model)


def process_preload_configuration(
    options: PreloadOptions | Mapping[str, Any],
) -> ProcessedPreloadConfiguration:
    """Validate preload options and apply defaults.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    opts = _coerce_options(options, PreloadOptions)

    problems: list[str] = []
    if not isinstance(opts.session_id, str) or not opts.session_id.strip():
        problems.append("session_id is required: preload loads data into an existing session")
    if opts.input is None:
        problems.append("input is required")
    for name in ("context", "lens", "model"):
        value = getattr(opts, name)
        if value is not None and not isinstance(value, str):
            problems.append(f"{name} must be a string")
    if opts.provider_options is not None:
        _check_provider_options(opts.provider_options, problems)
    if opts.request_timeout_ms is not None and (
        not _is_number(opts.request_timeout_ms) or opts.request_timeout_ms < 0
    ):
        problems.append("request_timeout_ms must be a non-negative number")
    problem = _serialization_problem(opts.input)
    if problem:
        problems.append(f"input is not JSON-serializable: {problem}")
    if problems:
        raise ConfigurationError(problems)

    schema = None
    if opts.validate_input is not None:
        try:
            schema = as_schema(opts.validate_input)
        except TypeError as exc:
            raise ConfigurationError([f"validate_input is not usable: {exc}"]) from exc

    return ProcessedPreloadConfiguration(
        session_id=opts.session_id,
        input=opts.input,
        model=opts.model or DEFAULT_MODEL,
        provider_options=_provider_options(opts.provider_options),
        context=opts.context or None,
        lens=opts.lens or None,
        validate_input=schema,
        request_timeout_ms=opts.request_timeout_ms,
    )


@dataclass
class InitSessionOptions:
    """Caller options for :func:`persuader.init_session`.

    Attributes:
        context: Instructions the session is created with.
        initial_prompt: Sent once the session exists; its reply is returned.
        session_id: Reuse this session instead of creating one.
        model: Model identifier.
        provider_options: As for :class:`Options`.
        request_timeout_ms: Limit on the initial prompt call.
    """

    context: str = ""
    initial_prompt: str | None = None
    session_id: str | None = None
    model: str | None = None
    provider_options: Mapping[str, Any] | None = None
    request_timeout_ms: float | None = None

    def prompt_options(self) -> PromptOptions:
        return _provider_options(self.provider_options).prompt_options(self.model or DEFAULT_MODEL)

    def session_options(self) -> SessionOptions:
        provider_options = _provider_options(self.provider_options)
        return SessionOptions(model=self.model or DEFAULT_MODEL, temperature=provider_options.temperature)


def process_init_session_options(options: InitSessionOptions | Mapping[str, Any]) -> InitSessionOptions:
    """Check init-session options; returns them as :class:`InitSessionOptions`.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    opts = _coerce_options(options, InitSessionOptions)
    problems: list[str] = []
    if not isinstance(opts.context, str):
        problems.append("context must be a string")
    for name in ("initial_prompt", "session_id", "model"):
        value = getattr(opts, name)
        if value is not None and not isinstance(value, str):
            problems.append(f"{name} must be a string")
    if isinstance(opts.session_id, str) and not opts.session_id.strip():
        problems.append("session_id must not be blank")
    if opts.provider_options is not None:
        _check_provider_options(opts.provider_options, problems)
    if opts.request_timeout_ms is not None and (
        not _is_number(opts.request_timeout_ms) or opts.request_timeout_ms < 0
    ):
        problems.append("request_timeout_ms must be a non-negative number")
    if problems:
        raise ConfigurationError(problems)
    return opts
