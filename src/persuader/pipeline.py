"""Public entry point: configuration, session, attempt loop, result."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Mapping

from persuader.config import Options, process_configuration
from persuader.describe import summarize_schema
from persuader.engine import ExecutionEngine, ExecutionResult, Sleep, orchestration_error
from persuader.logs import resolve_logger
from persuader.provider import ProviderAdapter
from persuader.result import Result, process_result
from persuader.session import SessionCoordinator, SessionRegistry, log_session_info


async def run(
    options: Options | Mapping[str, Any],
    provider: ProviderAdapter,
    *,
    logger: Any | None = None,
    cancel_event: asyncio.Event | None = None,
    sleep: Sleep | None = None,
    sessions: SessionRegistry | None = None,
) -> Result[Any]:
    """Get a schema-valid value out of *provider*.

    Args:
        options: :class:`~persuader.config.Options` or a mapping of its fields.
        provider: The provider adapter to prompt.
        logger: structlog logger; nothing is logged when omitted.
        cancel_event: Set it to stop before the next attempt.
        sleep: Replacement for :func:`asyncio.sleep` in backoff delays.
        sessions: Registry that accumulates metrics per session id across
            runs. When a session is active the result carries a snapshot
            of its metrics either way.

    Returns:
        :class:`~persuader.result.Result`. Provider and validation failures
        are reported in it, never raised.

    Raises:
        ConfigurationError: If *options* are invalid. No provider call is
            made in that case.
    """
    start_time = datetime.now(timezone.utc)
    log = resolve_logger(logger)

    config = process_configuration(options)
    summary = summarize_schema(config.schema)
    log.debug(
        "pipeline_started",
        provider=provider.name,
        model=config.model,
        max_attempts=config.max_attempts,
        schema_kind=summary.kind,
        schema_fields=summary.field_count,
        has_context=config.context is not None,
        has_lens=config.lens is not None,
        session_id=config.session_id,
    )

    coordinator = SessionCoordinator(provider, log, sessions)
    engine: ExecutionEngine | None = None
    try:
        session = await coordinator.coordinate(config)
        if not session.success:
            execution: ExecutionResult[Any] = ExecutionResult(
                success=False, error=session.error, attempts=0
            )
            return process_result(execution, None, start_time, provider, config.model, log)

        engine = ExecutionEngine(
            provider,
            config,
            session_id=session.session_id,
            coordinator=coordinator,
            logger=log,
            sleep=sleep,
            cancel_event=cancel_event,
        )
        execution = await engine.execute()
        coordinator.record_operation(execution.attempts)
        log_session_info(coordinator.session, log)
        return process_result(
            execution,
            session.session_id,
            start_time,
            provider,
            config.model,
            log,
            session_metrics=coordinator.metrics,
        )
    except Exception as exc:
        attempts = 0 if engine is None else engine.attempts_made
        log.error("orchestration_failed", error=str(exc), error_type=type(exc).__name__, attempts=attempts)
        execution = ExecutionResult(
            success=False, error=orchestration_error(exc, provider.name, attempts), attempts=attempts
        )
        return process_result(
            execution,
            coordinator.session_id,
            start_time,
            provider,
            config.model,
            log,
            session_metrics=coordinator.metrics,
        )
    finally:
        await coordinator.release()


def run_sync(
    options: Options | Mapping[str, Any],
    provider: ProviderAdapter,
    **kwargs: Any,
) -> Result[Any]:
    """Blocking wrapper around :func:`run` for code without an event loop."""
    return asyncio.run(run(options, provider, **kwargs))
