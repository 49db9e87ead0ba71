"""Session preparation ahead of :func:`persuader.run`.

:func:`init_session` opens (or reuses) a provider session with some context
and no schema. :func:`preload` pushes data into an existing session in a
single call, optionally checking the data against a schema first. Neither
validates the model's reply or retries.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from persuader.config import (
    InitSessionOptions,
    PreloadOptions,
    process_init_session_options,
    process_preload_configuration,
)
from persuader.constants import DEFAULT_MODEL
from persuader.engine import ExecutionEngine
from persuader.errors import ConfigurationError, PipelineError, SessionInitError
from persuader.logs import resolve_logger
from persuader.prompt import build_preload_prompt
from persuader.provider import ProviderAdapter, ProviderResponse, TokenUsage
from persuader.result import ExecutionMetadata
from persuader.schema import Schema
from persuader.session import (
    SessionCoordinator,
    SessionMetrics,
    SessionRegistry,
    create_provider_session,
    validate_session_state,
)
from persuader.validation import ValidationResult, validate_json, validate_parsed


@dataclass
class InitSessionResult:
    """What :func:`init_session` returns.

    Attributes:
        session_id: Session to pass to later runs; None for a provider
            without session support.
        response: Reply to the initial prompt, if one was sent.
        metadata: Timing and provenance.
    """

    session_id: str | None
    metadata: ExecutionMetadata
    response: str | None = None


@dataclass
class PreloadResult:
    """What :func:`preload` returns. ``ok`` selects response or error."""

    ok: bool
    session_id: str
    metadata: ExecutionMetadata
    raw_response: str | None = None
    error: PipelineError | None = None
    session_metrics: SessionMetrics | None = None


def _metadata(
    start_time: datetime,
    provider: ProviderAdapter,
    model: str | None,
    response: ProviderResponse | None = None,
) -> ExecutionMetadata:
    completed_at = datetime.now(timezone.utc)
    token_usage = response.token_usage if response is not None else None
    return ExecutionMetadata(
        execution_time_ms=(completed_at - start_time).total_seconds() * 1000.0,
        started_at=start_time,
        completed_at=completed_at,
        provider=provider.name,
        model=model,
        token_usage=token_usage or TokenUsage(),
    )


async def _send_initial_prompt(
    provider: ProviderAdapter,
    options: InitSessionOptions,
    session_id: str | None,
    prompt: str,
    log: Any,
) -> ProviderResponse:
    engine = ExecutionEngine(provider, options, session_id=session_id, logger=log)
    response, error = await engine.send_once(prompt)
    if error is not None:
        log.error("initial_prompt_failed", code=error.code, error=error.message)
        raise SessionInitError(
            f"Failed to send initial prompt: {error.message}",
            code="initial_prompt_failed",
            error=error,
        )
    return response


async def init_session(
    options: InitSessionOptions | Mapping[str, Any],
    provider: ProviderAdapter,
    *,
    logger: Any | None = None,
    sessions: SessionRegistry | None = None,
) -> InitSessionResult:
    """Create or reuse a session with context only; no schema is involved.

    * ``session_id`` given: the session is reused and ``create_session`` is
      not called.
    * Session-capable provider: a session is created with ``context``.
    * Provider without sessions: there is nothing to hold the context, so an
      ``initial_prompt`` is required; it is sent together with the context
      and the result carries no session id.

    When ``initial_prompt`` is set it is sent once the session exists and the
    reply is returned as ``response``.

    Raises:
        ConfigurationError: If *options* are invalid.
        SessionInitError: If the session cannot be created or the initial
            prompt fails.
    """
    opts = process_init_session_options(options)
    start_time = datetime.now(timezone.utc)
    log = resolve_logger(logger).bind(provider=provider.name)
    model = opts.model or DEFAULT_MODEL
    response: ProviderResponse | None = None

    if opts.session_id is not None:
        session_id: str | None = opts.session_id
        log.debug("session_reused", session_id=session_id)
        if opts.initial_prompt is not None:
            response = await _send_initial_prompt(provider, opts, session_id, opts.initial_prompt, log)
    elif provider.supports_session:
        if getattr(provider, "create_session", None) is None:
            log.error("session_not_supported")
            raise SessionInitError(
                f"Provider {provider.name} claims to support sessions but has no create_session method",
                code="session_not_supported",
            )
        outcome = await create_provider_session(provider, opts.context, opts.session_options(), log)
        if not outcome.success:
            raise SessionInitError(outcome.error.message, code=outcome.error.code, error=outcome.error)
        session_id = outcome.session_id
        if opts.initial_prompt is not None:
            response = await _send_initial_prompt(provider, opts, session_id, opts.initial_prompt, log)
    else:
        if opts.initial_prompt is None:
            raise ConfigurationError(
                [f"initial_prompt is required: provider {provider.name} has no sessions to hold the context"]
            )
        session_id = None
        prompt = f"{opts.context}\n\n{opts.initial_prompt}" if opts.context else opts.initial_prompt
        response = await _send_initial_prompt(provider, opts, None, prompt, log)

    if sessions is not None and session_id is not None:
        sessions.metrics_for(session_id)

    metadata = _metadata(start_time, provider, model, response)
    log.info(
        "session_initialized",
        session_id=session_id,
        has_response=response is not None,
        execution_time_ms=round(metadata.execution_time_ms, 1),
    )
    return InitSessionResult(
        session_id=session_id,
        metadata=metadata,
        response=None if response is None else response.content,
    )


def validate_preload_input(schema: Schema, value: Any, logger: Any | None = None) -> ValidationResult:
    """Check preload data against *schema*.

    Strings are parsed as JSON first; anything else is validated as is.
    """
    if isinstance(value, str):
        return validate_json(schema, value, logger)
    return validate_parsed(schema, value)


async def preload(
    options: PreloadOptions | Mapping[str, Any],
    provider: ProviderAdapter,
    *,
    logger: Any | None = None,
    sessions: SessionRegistry | None = None,
) -> PreloadResult:
    """Load data into an existing session with a single provider call.

    The reply is returned raw; it is not validated and nothing is retried.
    With ``validate_input`` set, data that fails the schema is reported in
    the result and never sent.

    Raises:
        ConfigurationError: If *options* are invalid. No provider call is
            made in that case.
    """
    config = process_preload_configuration(options)
    start_time = datetime.now(timezone.utc)
    log = resolve_logger(logger).bind(provider=provider.name, session_id=config.session_id)
    log.debug(
        "preload_started",
        model=config.model,
        has_context=config.context is not None,
        has_lens=config.lens is not None,
        validates_input=config.validate_input is not None,
    )

    state = validate_session_state(config.session_id, provider)
    if not state.valid:
        log.warning("session_state_invalid", reason=state.reason)

    coordinator = SessionCoordinator(provider, log, sessions)
    coordinator.adopt(config.session_id, created=False)

    if config.validate_input is not None:
        check = validate_preload_input(config.validate_input, config.input, log)
        if not check.success:
            log.info("preload_input_rejected", code=check.error.code, issue_count=len(check.error.issues))
            return PreloadResult(
                ok=False,
                session_id=config.session_id,
                metadata=_metadata(start_time, provider, config.model),
                error=check.error,
                session_metrics=coordinator.metrics,
            )

    engine = ExecutionEngine(provider, config, session_id=config.session_id, coordinator=coordinator, logger=log)
    response, error = await engine.send_once(build_preload_prompt(config))
    metadata = _metadata(start_time, provider, config.model, response)

    if error is not None:
        log.error("preload_failed", code=error.code, error=error.message)
        return PreloadResult(
            ok=False,
            session_id=config.session_id,
            metadata=metadata,
            error=error,
            session_metrics=coordinator.metrics,
        )

    log.info(
        "preload_succeeded",
        execution_time_ms=round(metadata.execution_time_ms, 1),
        response_length=len(response.content),
    )
    return PreloadResult(
        ok=True,
        session_id=config.session_id,
        metadata=metadata,
        raw_response=response.content,
        session_metrics=coordinator.metrics,
    )
