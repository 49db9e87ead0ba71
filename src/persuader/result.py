"""Result processing: turn an execution result into the caller-facing Result."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from persuader.engine import AttemptRecord, ExecutionResult
from persuader.errors import PipelineError, ValidationError, unknown_error
from persuader.feedback import summarize_error
from persuader.logs import resolve_logger
from persuader.provider import ProviderAdapter, TokenUsage
from persuader.recovery import log_error_recovery_analysis
from persuader.session import SessionMetrics

T = TypeVar("T")


@dataclass
class ExecutionMetadata:
    """Timing and provenance of a run.

    Attributes:
        execution_time_ms: Wall-clock time from ``run()`` entry to completion.
        started_at: UTC start time.
        completed_at: UTC completion time.
        provider: Provider name.
        model: Model identifier, when known.
        token_usage: Summed token usage over all attempts.
    """

    execution_time_ms: float
    started_at: datetime
    completed_at: datetime
    provider: str
    model: str | None = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class Result(Generic[T]):
    """What :func:`persuader.run` returns.

    ``ok`` selects which of ``value`` / ``error`` is meaningful.
    """

    ok: bool
    attempts: int
    metadata: ExecutionMetadata
    value: T | None = None
    error: PipelineError | None = None
    session_id: str | None = None
    history: list[AttemptRecord] = field(default_factory=list)
    session_metrics: SessionMetrics | None = None


def process_result(
    execution_result: ExecutionResult[T],
    session_id: str | None,
    start_time: datetime,
    provider: ProviderAdapter,
    model: str | None = None,
    logger: Any | None = None,
    session_metrics: SessionMetrics | None = None,
) -> Result[T]:
    """Build the final :class:`Result` and log the outcome.

    A failure without an error object gets a non-retryable
    ``unknown_error`` so that ``ok=False`` always carries an error.

    Args:
        execution_result: What the attempt loop produced.
        session_id: Session used, if any.
        start_time: When the run started (UTC).
        provider: The provider adapter, for its name.
        model: Model identifier used.
        logger: Optional structlog logger.
        session_metrics: Snapshot of the session's metrics after the run.
    """
    log = resolve_logger(logger)
    completed_at = datetime.now(timezone.utc)
    metadata = ExecutionMetadata(
        execution_time_ms=(completed_at - start_time).total_seconds() * 1000.0,
        started_at=start_time,
        completed_at=completed_at,
        provider=provider.name,
        model=model,
        token_usage=execution_result.token_usage,
    )

    if execution_result.success:
        log.info(
            "pipeline_succeeded",
            attempts=execution_result.attempts,
            execution_time_ms=round(metadata.execution_time_ms, 1),
            provider=metadata.provider,
            model=model,
            session_id=session_id,
        )
        return Result(
            ok=True,
            value=execution_result.value,
            attempts=execution_result.attempts,
            metadata=metadata,
            session_id=session_id,
            history=execution_result.history,
            session_metrics=session_metrics,
        )

    error = execution_result.error
    if error is None:
        error = unknown_error()
        log.error("execution_failed_without_error", attempts=execution_result.attempts)

    log.error(
        "pipeline_failed",
        attempts=execution_result.attempts,
        execution_time_ms=round(metadata.execution_time_ms, 1),
        provider=metadata.provider,
        error_type=error.type,
        error_code=error.code,
        error=error.message,
    )
    log_error_recovery_analysis(
        error, execution_result.attempts, provider.supports_session, logger=log
    )
    return Result(
        ok=False,
        error=error,
        attempts=execution_result.attempts,
        metadata=metadata,
        session_id=session_id,
        history=execution_result.history,
        session_metrics=session_metrics,
    )


def get_execution_stats(result: Result[Any]) -> dict[str, Any]:
    """Flat summary of a result for dashboards and logs."""
    stats: dict[str, Any] = {
        "successful": result.ok,
        "attempts": result.attempts,
        "execution_time_ms": result.metadata.execution_time_ms,
        "provider": result.metadata.provider,
        "has_session": result.session_id is not None,
        "total_tokens": result.metadata.token_usage.total_tokens,
    }
    if result.metadata.model:
        stats["model"] = result.metadata.model
    if not result.ok and result.error is not None:
        stats["error_type"] = result.error.type
        stats["error_code"] = result.error.code
    return stats


def format_result_metadata(result: Result[Any]) -> dict[str, Any]:
    """Human-oriented rendering of a result's metadata."""
    formatted: dict[str, Any] = {
        "duration": f"{result.metadata.execution_time_ms:.0f}ms",
        "attempts": result.attempts,
        "provider": result.metadata.provider,
        "status": "success" if result.ok else "error",
    }
    if not result.ok and result.error is not None:
        formatted["error_summary"] = summarize_error(result.error)
        if isinstance(result.error, ValidationError) and result.error.issues:
            formatted["issue_count"] = len(result.error.issues)
    return formatted
