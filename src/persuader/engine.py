"""The attempt loop: prompt, validate, feed back, retry."""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

from persuader.config import InitSessionOptions, ProcessedConfiguration, ProcessedPreloadConfiguration
from persuader.constants import MAX_RETRY_DELAY_MS, RETRY_DELAY_MULTIPLIER
from persuader.errors import PipelineError, ProviderCallError, ProviderError, ProviderRateLimitError
from persuader.logs import resolve_logger
from persuader.prompt import build_initial_prompt, build_retry_prompt
from persuader.provider import ProviderAdapter, ProviderResponse, TokenUsage
from persuader.session import SessionCoordinator, maybe_await
from persuader.validation import validate_json

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class AttemptRecord:
    """Record of a single attempt.

    Attributes:
        attempt: One-based attempt number.
        prompt: The prompt sent to the provider.
        content: Raw response text, if the provider answered.
        outcome: ``success``, ``validation_failed`` or ``provider_error``.
        error_code: Code of the attempt's error, if any.
        latency_ms: Provider call plus validation time in milliseconds.
        token_usage: Token usage, if reported.
        stop_reason: Why generation stopped, if reported.
    """

    attempt: int
    prompt: str
    content: str | None
    outcome: str
    error_code: str | None = None
    latency_ms: float = 0.0
    token_usage: TokenUsage | None = None
    stop_reason: str | None = None


@dataclass
class ExecutionResult(Generic[T]):
    """What the attempt loop hands to the result processor.

    Exactly one of *value* / *error* is meaningful, selected by *success*.
    """

    success: bool
    value: T | None = None
    error: PipelineError | None = None
    attempts: int = 0
    history: list[AttemptRecord] = field(default_factory=list)
    total_time_ms: float = 0.0

    @property
    def token_usage(self) -> TokenUsage:
        total = TokenUsage()
        for record in self.history:
            if record.token_usage is not None:
                total = total + record.token_usage
        return total


def backoff_delay_ms(
    attempt: int,
    base_delay_ms: float,
    retry_after_s: float | None = None,
) -> float:
    """Delay before retrying after the *attempt*-th provider failure.

    Exponential from *base_delay_ms*, or the provider's retry-after hint
    when it gave one; capped either way.
    """
    if retry_after_s is not None:
        return min(retry_after_s * 1000.0, MAX_RETRY_DELAY_MS)
    return min(base_delay_ms * RETRY_DELAY_MULTIPLIER ** (attempt - 1), MAX_RETRY_DELAY_MS)


def provider_error_from_exception(exc: BaseException, provider: str, attempt: int) -> ProviderError:
    """Convert an exception raised around a provider call into an error value."""
    details: dict[str, Any] = {"original_error": exc, "attempt": attempt}
    if isinstance(exc, ProviderCallError):
        details.update(exc.details)
        return ProviderError(
            code=exc.code,
            message=str(exc),
            retryable=exc.retryable,
            provider=provider,
            details=details,
            status_code=exc.status_code,
            retry_after_s=exc.retry_after if isinstance(exc, ProviderRateLimitError) else None,
        )
    if isinstance(exc, asyncio.TimeoutError):
        return ProviderError(
            code="timeout",
            message=f"Provider call timed out on attempt {attempt}",
            retryable=True,
            provider=provider,
            details=details,
        )
    return ProviderError(
        code="provider_call_failed",
        message=f"Provider call failed on attempt {attempt}: {exc}",
        retryable=True,
        provider=provider,
        details=details,
    )


def orchestration_error(exc: BaseException, provider: str, attempts: int) -> ProviderError:
    """Error value for a failure outside the provider call and validation."""
    return ProviderError(
        code="orchestration_failed",
        message=f"Pipeline orchestration failed: {exc}",
        retryable=False,
        provider=provider,
        details={"original_error": exc, "attempts": attempts},
    )


class ExecutionEngine:
    """Runs attempts until the output validates or the budget is spent.

    At most ``config.retries + 1`` attempts are made. A validation failure
    is retried immediately with feedback. A retryable provider failure is
    retried with the same prompt after a backoff delay. A non-retryable
    failure stops the loop. Cancellation and the deadline are checked
    before every attempt.

    Args:
        provider: The provider adapter.
        config: Processed configuration. Preload and init-session
            configurations only support :meth:`send_once`.
        session_id: Active session, or None to run sessionless.
        coordinator: Receives per-attempt metrics, when given.
        logger: Optional structlog logger.
        sleep: Coroutine function used for backoff delays, in seconds.
        cancel_event: When set, no further attempt is started.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        config: ProcessedConfiguration[Any] | ProcessedPreloadConfiguration | InitSessionOptions,
        *,
        session_id: str | None = None,
        coordinator: SessionCoordinator | None = None,
        logger: Any | None = None,
        sleep: Sleep | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.session_id = session_id
        self.coordinator = coordinator
        self.logger = resolve_logger(logger)
        self.sleep = sleep or asyncio.sleep
        self.cancel_event = cancel_event
        self.attempts_made = 0

    async def execute(self) -> ExecutionResult[Any]:
        """Run the attempt loop.

        Returns:
            :class:`ExecutionResult`. Provider and validation failures, and any
            unexpected exception inside the loop, are reported in it rather
            than raised. Attempts already sent are still counted.
        """
        config = self.config
        max_attempts = config.max_attempts
        log = self.logger.bind(provider=self.provider.name, session_id=self.session_id)
        history: list[AttemptRecord] = []
        loop_start = time.perf_counter()
        deadline = (
            loop_start + config.deadline_ms / 1000.0 if config.deadline_ms is not None else None
        )

        def finish(
            success: bool,
            attempts: int,
            value: Any = None,
            error: PipelineError | None = None,
        ) -> ExecutionResult[Any]:
            return ExecutionResult(
                success=success,
                value=value,
                error=error,
                attempts=attempts,
                history=history,
                total_time_ms=(time.perf_counter() - loop_start) * 1000.0,
            )

        last_error: PipelineError | None = None
        self.attempts_made = 0

        try:
            prompt = build_initial_prompt(config)
            for attempt in range(1, max_attempts + 1):
                stop = self._stop_reason(deadline, attempt)
                if stop is not None:
                    log.warning("execution_stopped", reason=stop.code, attempts=attempt - 1)
                    return finish(False, attempt - 1, error=stop)

                log.debug("attempt_started", attempt=attempt, max_attempts=max_attempts)
                self.attempts_made = attempt
                attempt_start = time.perf_counter()

                try:
                    response = await self._send(prompt)
                except Exception as exc:
                    error = provider_error_from_exception(exc, self.provider.name, attempt)
                    latency = (time.perf_counter() - attempt_start) * 1000.0
                    history.append(
                        AttemptRecord(
                            attempt=attempt,
                            prompt=prompt,
                            content=None,
                            outcome="provider_error",
                            error_code=error.code,
                            latency_ms=latency,
                        )
                    )
                    self._record(success=False, latency_ms=latency)
                    log.warning(
                        "provider_call_failed",
                        attempt=attempt,
                        code=error.code,
                        retryable=error.retryable,
                        error=error.message,
                    )
                    last_error = error
                    if not error.retryable or attempt == max_attempts:
                        return finish(False, attempt, error=error)
                    delay_ms = backoff_delay_ms(attempt, config.retry_base_delay_ms, error.retry_after_s)
                    log.info("retry_scheduled", attempt=attempt, delay_ms=delay_ms, reason=error.code)
                    await self.sleep(delay_ms / 1000.0)
                    continue

                if response.truncated:
                    log.warning("response_truncated", attempt=attempt, stop_reason=response.stop_reason)

                validation = validate_json(config.schema, response.content, log)
                latency = (time.perf_counter() - attempt_start) * 1000.0
                history.append(
                    AttemptRecord(
                        attempt=attempt,
                        prompt=prompt,
                        content=response.content,
                        outcome="success" if validation.success else "validation_failed",
                        error_code=None if validation.error is None else validation.error.code,
                        latency_ms=latency,
                        token_usage=response.token_usage,
                        stop_reason=response.stop_reason,
                    )
                )
                self._record(success=validation.success, latency_ms=latency, token_usage=response.token_usage)

                if validation.success:
                    log.info("attempt_succeeded", attempt=attempt, latency_ms=round(latency, 1))
                    await self._send_success_feedback(attempt, log)
                    return finish(True, attempt, value=validation.value)

                error = validation.error
                last_error = error
                log.info(
                    "validation_failed",
                    attempt=attempt,
                    code=error.code,
                    failure_mode=error.failure_mode.value,
                    retry_strategy=error.retry_strategy.value,
                    issue_count=len(error.issues),
                )
                if not error.retryable or attempt == max_attempts:
                    return finish(False, attempt, error=error)
                prompt = build_retry_prompt(
                    config, error, attempt + 1, session_active=self.session_id is not None
                )
        except Exception as exc:
            log.error(
                "execution_failed",
                attempts=self.attempts_made,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return finish(
                False,
                self.attempts_made,
                error=orchestration_error(exc, self.provider.name, self.attempts_made),
            )

        return finish(False, max_attempts, error=last_error)

    async def send_once(self, prompt: str) -> tuple[ProviderResponse | None, ProviderError | None]:
        """Send *prompt* a single time: no validation, no retry.

        Returns:
            ``(response, None)`` on success, ``(None, error)`` otherwise.
        """
        self.attempts_made = 1
        try:
            return await self._send(prompt), None
        except Exception as exc:
            return None, provider_error_from_exception(exc, self.provider.name, 1)

    def _stop_reason(self, deadline: float | None, attempt: int) -> ProviderError | None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return ProviderError(
                code="cancelled",
                message=f"Execution cancelled before attempt {attempt}",
                retryable=False,
                provider=self.provider.name,
            )
        if deadline is not None and time.perf_counter() >= deadline:
            return ProviderError(
                code="deadline_exceeded",
                message=f"Deadline of {self.config.deadline_ms:.0f}ms exceeded before attempt {attempt}",
                retryable=False,
                provider=self.provider.name,
            )
        return None

    async def _send(self, prompt: str) -> ProviderResponse:
        send = self.provider.send_prompt
        args = (self.session_id, prompt, self.config.prompt_options())
        if self.config.request_timeout_ms is None:
            response = await maybe_await(send(*args))
        elif inspect.iscoroutinefunction(send):
            response = await asyncio.wait_for(send(*args), timeout=self.config.request_timeout_ms / 1000.0)
        else:
            # Blocking adapters run on a worker thread; a timed-out call is abandoned, not interrupted.
            response = await maybe_await(
                await asyncio.wait_for(
                    asyncio.to_thread(send, *args), timeout=self.config.request_timeout_ms / 1000.0
                )
            )
        if not isinstance(response, ProviderResponse) or not isinstance(response.content, str):
            raise ProviderCallError(
                f"Provider returned {type(response).__name__}, expected ProviderResponse with text content",
                code="invalid_response",
            )
        return response

    def _record(self, *, success: bool, latency_ms: float, token_usage: TokenUsage | None = None) -> None:
        if self.coordinator is not None:
            self.coordinator.record_attempt(success=success, latency_ms=latency_ms, token_usage=token_usage)

    async def _send_success_feedback(self, attempt: int, log: Any) -> None:
        message = self.config.success_message
        if not message or self.session_id is None:
            return
        send = getattr(self.provider, "send_success_feedback", None)
        if send is None:
            return
        metadata = {"attempt": attempt, "model": self.config.model}
        try:
            await maybe_await(send(self.session_id, message, metadata))
        except Exception as exc:
            log.warning("success_feedback_failed", error=str(exc))
            return
        log.debug("success_feedback_sent", attempt=attempt)


async def execute_with_retry(
    config: ProcessedConfiguration[Any],
    provider: ProviderAdapter,
    session_id: str | None = None,
    **kwargs: Any,
) -> ExecutionResult[Any]:
    """Convenience wrapper: build an :class:`ExecutionEngine` and run it."""
    engine = ExecutionEngine(provider, config, session_id=session_id, **kwargs)
    return await engine.execute()
