"""Session coordination: decide whether a run uses a provider session."""
from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from persuader.config import ProcessedConfiguration
from persuader.errors import ProviderError
from persuader.logs import resolve_logger
from persuader.provider import ProviderAdapter, SessionOptions, TokenUsage


async def maybe_await(value: Any) -> Any:
    """Await *value* if it is awaitable; sync provider methods pass through."""
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class SessionMetrics:
    """Running totals for a session, updated once per attempt.

    Attributes:
        total_attempts: Attempts made in this session.
        successful_validations: Attempts whose output passed validation.
        total_execution_time_ms: Sum of per-attempt latencies.
        token_usage: Summed token usage, where the provider reported it.
        max_attempts_for_operation: Most attempts one run needed.
        operations_with_retries: Runs that needed more than one attempt.
        last_success_at: When validation last passed.
    """

    total_attempts: int = 0
    successful_validations: int = 0
    total_execution_time_ms: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    max_attempts_for_operation: int = 0
    operations_with_retries: int = 0
    last_success_at: datetime | None = None

    @property
    def success_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.successful_validations / self.total_attempts

    @property
    def average_execution_time_ms(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.total_execution_time_ms / self.total_attempts


@dataclass
class Session:
    """A provider session as seen by one pipeline run.

    Attributes:
        id: Provider session id.
        context: Context the session was created with (empty if reused).
        provider: Provider name.
        created_by_pipeline: False when the caller passed the id in.
        created_at: When this run started using the session.
        metrics: Per-attempt metrics for this run.
    """

    id: str
    context: str = ""
    provider: str = "unknown"
    created_by_pipeline: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metrics: SessionMetrics = field(default_factory=SessionMetrics)


@dataclass
class SessionCoordinationResult:
    """Outcome of :func:`coordinate_session`.

    ``success`` with no ``session_id`` means the run proceeds sessionless.
    """

    success: bool
    session_id: str | None = None
    error: ProviderError | None = None


@dataclass
class SessionStateCheck:
    valid: bool
    reason: str | None = None


async def coordinate_session(
    config: ProcessedConfiguration[Any],
    provider: ProviderAdapter,
    logger: Any | None = None,
) -> SessionCoordinationResult:
    """Reuse, create, or skip a session for this run.

    Rules, in order:

    1. A configured ``session_id`` is used verbatim; ``create_session`` is
       not called.
    2. A provider without session support runs sessionless.
    3. A session-capable provider with ``create_session`` gets one created
       with the configured context.
    4. A provider that claims session support but cannot create one is an
       error.

    Args:
        config: Processed configuration for the run.
        provider: The provider adapter.
        logger: Optional structlog logger.

    Returns:
        :class:`SessionCoordinationResult`. Errors are never retryable.
    """
    log = resolve_logger(logger).bind(provider=provider.name)

    if config.session_id is not None:
        log.debug("session_reused", session_id=config.session_id)
        return SessionCoordinationResult(success=True, session_id=config.session_id)

    if not provider.supports_session:
        log.debug("session_skipped", reason="provider_sessionless")
        return SessionCoordinationResult(success=True)

    create = getattr(provider, "create_session", None)
    if create is None:
        log.error("session_not_supported")
        return SessionCoordinationResult(
            success=False,
            error=ProviderError(
                code="session_not_supported",
                message=(
                    f"Provider {provider.name} claims to support sessions "
                    "but has no create_session method"
                ),
                retryable=False,
                provider=provider.name,
                details={"supports_session": True},
            ),
        )

    return await create_provider_session(provider, config.context or "", config.session_options(), log)


async def create_provider_session(
    provider: ProviderAdapter,
    context: str,
    options: SessionOptions,
    logger: Any | None = None,
) -> SessionCoordinationResult:
    """Call the provider's ``create_session`` and check the id it returns.

    An exception, or anything other than a non-blank string id, is reported
    as ``session_creation_failed``.
    """
    log = resolve_logger(logger)
    try:
        session_id = await maybe_await(provider.create_session(context, options))
    except Exception as exc:
        log.error("session_creation_failed", error=str(exc), error_type=type(exc).__name__)
        return SessionCoordinationResult(
            success=False,
            error=ProviderError(
                code="session_creation_failed",
                message=f"Failed to create session: {exc}",
                retryable=False,
                provider=provider.name,
                details={"original_error": exc},
            ),
        )

    if not isinstance(session_id, str) or not session_id.strip():
        log.error("session_creation_failed", error="invalid session id", session_id=repr(session_id))
        return SessionCoordinationResult(
            success=False,
            error=ProviderError(
                code="session_creation_failed",
                message=f"Provider {provider.name} returned an invalid session id: {session_id!r}",
                retryable=False,
                provider=provider.name,
                details={"session_id": session_id},
            ),
        )

    log.info("session_created", session_id=session_id, context_length=len(context))
    return SessionCoordinationResult(success=True, session_id=session_id)


def validate_session_state(session_id: str | None, provider: ProviderAdapter) -> SessionStateCheck:
    """Check that a session id (or its absence) makes sense for *provider*."""
    if session_id is not None and not provider.supports_session:
        return SessionStateCheck(
            valid=False,
            reason=f"Session ID provided but provider {provider.name} does not support sessions",
        )
    if (
        session_id is None
        and provider.supports_session
        and getattr(provider, "create_session", None) is None
    ):
        return SessionStateCheck(
            valid=False,
            reason=f"Provider {provider.name} supports sessions but cannot create them",
        )
    return SessionStateCheck(valid=True)


def log_session_info(session: Session | None, logger: Any | None = None) -> None:
    """Log a one-line summary of *session*'s metrics."""
    log = resolve_logger(logger)
    if session is None:
        log.debug("session_info", session_id=None)
        return
    metrics = session.metrics
    log.info(
        "session_info",
        session_id=session.id,
        provider=session.provider,
        created_by_pipeline=session.created_by_pipeline,
        total_attempts=metrics.total_attempts,
        success_rate=round(metrics.success_rate, 3),
        avg_execution_time_ms=round(metrics.average_execution_time_ms, 1),
        total_tokens=metrics.token_usage.total_tokens,
    )


class SessionRegistry:
    """Caller-owned metrics store keyed by session id.

    Pass the same registry to several runs to accumulate
    :class:`SessionMetrics` per session across them. Nothing is shared
    between runs unless a registry is passed.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, SessionMetrics] = {}

    def metrics_for(self, session_id: str) -> SessionMetrics:
        """Live metrics for *session_id*, created empty on first use."""
        return self._metrics.setdefault(session_id, SessionMetrics())

    def get(self, session_id: str) -> SessionMetrics | None:
        """A copy of the metrics recorded for *session_id*, if any."""
        metrics = self._metrics.get(session_id)
        return None if metrics is None else replace(metrics)

    def forget(self, session_id: str) -> None:
        self._metrics.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._metrics

    def __len__(self) -> int:
        return len(self._metrics)


class SessionCoordinator:
    """Owns the session state of a single pipeline run.

    The state lives on the instance, so concurrent runs never share it
    unless they are given the same *registry*. Two runs given the same
    ``session_id`` still talk to the same provider conversation; keeping
    them apart is the caller's job.

    Args:
        provider: The provider adapter.
        logger: Optional structlog logger.
        registry: Where session metrics accumulate across runs.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        logger: Any | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.provider = provider
        self.logger = resolve_logger(logger)
        self.registry = registry
        self.session: Session | None = None
        self._cleanup = False

    @property
    def session_id(self) -> str | None:
        return self.session.id if self.session else None

    @property
    def metrics(self) -> SessionMetrics | None:
        """Snapshot of the current session's metrics; None when sessionless."""
        return None if self.session is None else replace(self.session.metrics)

    async def coordinate(self, config: ProcessedConfiguration[Any]) -> SessionCoordinationResult:
        """Run :func:`coordinate_session` and remember the session it settles on."""
        outcome = await coordinate_session(config, self.provider, self.logger)
        if outcome.success and outcome.session_id is not None:
            self.adopt(
                outcome.session_id,
                created=config.session_id is None,
                context=config.context or "",
                cleanup=config.cleanup_session,
            )
        return outcome

    def adopt(self, session_id: str, *, created: bool, context: str = "", cleanup: bool = False) -> Session:
        """Make *session_id* the session this coordinator records into."""
        metrics = SessionMetrics() if self.registry is None else self.registry.metrics_for(session_id)
        self.session = Session(
            id=session_id,
            context=context if created else "",
            provider=self.provider.name,
            created_by_pipeline=created,
            metrics=metrics,
        )
        self._cleanup = created and cleanup
        return self.session

    def record_attempt(
        self,
        *,
        success: bool,
        latency_ms: float,
        token_usage: TokenUsage | None = None,
    ) -> None:
        """Fold one attempt into the session metrics. No-op when sessionless."""
        if self.session is None:
            return
        metrics = self.session.metrics
        metrics.total_attempts += 1
        metrics.total_execution_time_ms += latency_ms
        if token_usage is not None:
            metrics.token_usage = metrics.token_usage + token_usage
        if success:
            metrics.successful_validations += 1
            metrics.last_success_at = datetime.now(timezone.utc)

    def record_operation(self, attempts: int) -> None:
        """Record how many attempts a finished run needed."""
        if self.session is None:
            return
        metrics = self.session.metrics
        metrics.max_attempts_for_operation = max(metrics.max_attempts_for_operation, attempts)
        if attempts > 1:
            metrics.operations_with_retries += 1

    async def release(self) -> None:
        """Destroy the session if this run created it and cleanup was requested.

        Cleanup failures are logged, never raised.
        """
        session, self.session = self.session, None
        if session is None or not self._cleanup:
            return
        destroy = getattr(self.provider, "destroy_session", None)
        if destroy is None:
            self.logger.debug("session_cleanup_skipped", session_id=session.id)
            return
        try:
            await maybe_await(destroy(session.id))
        except Exception as exc:
            self.logger.warning(
                "session_cleanup_failed", session_id=session.id, error=str(exc)
            )
            return
        if self.registry is not None:
            self.registry.forget(session.id)
        self.logger.debug("session_destroyed", session_id=session.id)
