"""Tests for the attempt loop."""
from __future__ import annotations

import asyncio
import time

import pytest

from persuader.config import process_configuration
from persuader.engine import ExecutionEngine, backoff_delay_ms, execute_with_retry, provider_error_from_exception
from persuader.errors import (
    ProviderAuthError,
    ProviderCallError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from persuader.provider import ProviderAdapter, ProviderResponse
from persuader.providers.mock import MockProvider
from persuader.session import SessionCoordinator

VALID = '{"name": "Alice", "age": 30}'


class _SyncProvider(ProviderAdapter):
    """Provider whose send_prompt is a plain function."""

    def __init__(self, content: str) -> None:
        self.content = content
        self.calls = 0

    @property
    def name(self) -> str:
        return "sync"

    def send_prompt(self, session_id, prompt, options):
        self.calls += 1
        return ProviderResponse(content=self.content)


class _SlowProvider(ProviderAdapter):
    @property
    def name(self) -> str:
        return "slow"

    async def send_prompt(self, session_id, prompt, options):
        await asyncio.sleep(5)
        return ProviderResponse(content=VALID)


class _RawStringProvider(ProviderAdapter):
    @property
    def name(self) -> str:
        return "raw"

    def send_prompt(self, session_id, prompt, options):
        return VALID


class _CancellingProvider(MockProvider):
    """Sets the cancel event during its first call."""

    event: asyncio.Event | None = None

    async def send_prompt(self, session_id, prompt, options):
        self.event.set()
        return await super().send_prompt(session_id, prompt, options)


def _config(person_model, **overrides):
    return process_configuration({"schema": person_model, "input": "Alice, 30 years old", **overrides})


def _execute(provider, config, **kwargs):
    return asyncio.run(ExecutionEngine(provider, config, **kwargs).execute())


# --------------------------------------------------------------------------
# Attempt budget
# --------------------------------------------------------------------------


@pytest.mark.parametrize("retries", [0, 1, 3, 10])
def test_always_invalid_uses_exactly_retries_plus_one(person_model, retries) -> None:
    provider = MockProvider(responses=["not json"])
    result = _execute(provider, _config(person_model, retries=retries))
    assert not result.success
    assert result.attempts == retries + 1
    assert provider.call_count == retries + 1
    assert result.error.code == "json_parse"
    assert len(result.history) == retries + 1


@pytest.mark.parametrize("k", [1, 2, 4])
def test_stops_at_first_success(person_model, k) -> None:
    provider = MockProvider(responses=["not json"] * (k - 1) + [VALID, "not json"])
    result = _execute(provider, _config(person_model, retries=3))
    assert result.success
    assert result.attempts == k
    assert provider.call_count == k
    assert result.value == person_model(name="Alice", age=30)
    assert result.error is None


def test_non_retryable_provider_error_short_circuits(person_model, recorded_sleep) -> None:
    delays, sleep = recorded_sleep
    provider = MockProvider(responses=[ProviderAuthError("bad key", status_code=401)])
    result = _execute(provider, _config(person_model, retries=3), sleep=sleep)
    assert not result.success
    assert result.attempts == 1
    assert result.error.code == "auth_failed"
    assert result.error.retryable is False
    assert result.error.status_code == 401
    assert delays == []


def test_retryable_provider_error_backs_off_and_resends_same_prompt(person_model, recorded_sleep) -> None:
    delays, sleep = recorded_sleep
    provider = MockProvider(responses=[ProviderUnavailableError("503"), ProviderUnavailableError("503"), VALID])
    result = _execute(provider, _config(person_model, retries=3), sleep=sleep)
    assert result.success
    assert result.attempts == 3
    assert delays == [1.0, 1.5]
    assert provider.prompts[0] == provider.prompts[1] == provider.prompts[2]


def test_rate_limit_retry_after_is_honoured(person_model, recorded_sleep) -> None:
    delays, sleep = recorded_sleep
    provider = MockProvider(responses=[ProviderRateLimitError(retry_after=2), VALID])
    result = _execute(provider, _config(person_model), sleep=sleep)
    assert result.success
    assert delays == [2.0]


def test_validation_retries_do_not_sleep(person_model, recorded_sleep) -> None:
    delays, sleep = recorded_sleep
    provider = MockProvider(responses=["not json", VALID])
    _execute(provider, _config(person_model), sleep=sleep)
    assert delays == []


def test_retryable_error_on_last_attempt_does_not_sleep(person_model, recorded_sleep) -> None:
    delays, sleep = recorded_sleep
    provider = MockProvider(responses=[ProviderUnavailableError("503")])
    result = _execute(provider, _config(person_model, retries=1), sleep=sleep)
    assert result.attempts == 2
    assert result.error.code == "provider_unavailable"
    assert delays == [1.0]


def test_unknown_exception_is_retryable_provider_failure(person_model, recorded_sleep) -> None:
    _, sleep = recorded_sleep
    provider = MockProvider(responses=[RuntimeError("socket closed"), VALID])
    result = _execute(provider, _config(person_model), sleep=sleep)
    assert result.success
    assert result.history[0].outcome == "provider_error"
    assert result.history[0].error_code == "provider_call_failed"


# --------------------------------------------------------------------------
# Prompts
# --------------------------------------------------------------------------


def test_first_prompt_contains_all_sections(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    config = _config(
        person_model,
        context="You extract people.",
        lens="be literal",
        example_output={"name": "Bo", "age": 4},
    )
    _execute(provider, config)
    prompt = provider.prompts[0]
    assert "SCHEMA:\nobject with fields:" in prompt
    assert "CONTEXT:\nYou extract people." in prompt
    assert "be literal" in prompt
    assert '"name": "Bo"' in prompt
    assert "INPUT DATA:\nAlice, 30 years old" in prompt
    assert prompt.index("CONTEXT:") < prompt.index("PERSPECTIVE:") < prompt.index("INPUT DATA:")


def test_structured_input_is_sent_as_json(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    _execute(provider, process_configuration({"schema": person_model, "input": {"text": "Alice"}}))
    assert '"text": "Alice"' in provider.prompts[0]


def test_retry_prompt_carries_feedback_and_input(person_model) -> None:
    provider = MockProvider(responses=['{"name": "Alice", "age": -1}', "nope", VALID])
    _execute(provider, _config(person_model, retries=2))
    second, third = provider.prompts[1], provider.prompts[2]
    assert second.startswith("IMPORTANT: Your previous response failed validation.")
    assert "age" in second
    assert "INPUT DATA:\nAlice, 30 years old" in second
    assert third.startswith("CRITICAL: ")
    assert "This is your final attempt" in third


def test_session_retry_omits_context(person_model) -> None:
    provider = MockProvider(responses=["nope", VALID], supports_session=True)
    config = _config(person_model, context="You extract people.")
    _execute(provider, config, session_id="s-1")
    assert "CONTEXT:" in provider.prompts[0]
    assert "CONTEXT:" not in provider.prompts[1]
    assert all(call["session_id"] == "s-1" for call in provider.calls)


def test_session_retry_restates_context_when_confused(person_model) -> None:
    provider = MockProvider(responses=['{"name": 5, "age": -1}', VALID], supports_session=True)
    config = _config(person_model, context="You extract people.")
    _execute(provider, config, session_id="s-1")
    assert "CONTEXT:\nYou extract people." in provider.prompts[1]


def test_sessionless_retry_keeps_context(person_model) -> None:
    provider = MockProvider(responses=["nope", VALID])
    _execute(provider, _config(person_model, context="You extract people."))
    assert "CONTEXT:" in provider.prompts[1]


def test_prompt_options_are_forwarded(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    config = _config(person_model, model="m-1", provider_options={"temperature": 0.0, "seed": 7})
    _execute(provider, config)
    options = provider.calls[0]["options"]
    assert options.model == "m-1"
    assert options.temperature == 0.0
    assert options.extra == {"seed": 7}


# --------------------------------------------------------------------------
# Cancellation and timeouts
# --------------------------------------------------------------------------


def test_cancel_before_first_attempt(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    event = asyncio.Event()
    event.set()
    result = _execute(provider, _config(person_model), cancel_event=event)
    assert not result.success
    assert result.attempts == 0
    assert result.error.code == "cancelled"
    assert provider.call_count == 0


def test_cancel_between_attempts(person_model) -> None:
    provider = _CancellingProvider(responses=["nope", VALID])
    provider.event = asyncio.Event()
    result = _execute(provider, _config(person_model), cancel_event=provider.event)
    assert result.attempts == 1
    assert result.error.code == "cancelled"
    assert provider.call_count == 1


def test_deadline_exceeded(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    result = _execute(provider, _config(person_model, deadline_ms=0))
    assert result.attempts == 0
    assert result.error.code == "deadline_exceeded"
    assert result.error.retryable is False


def test_request_timeout(person_model) -> None:
    result = _execute(_SlowProvider(), _config(person_model, retries=0, request_timeout_ms=10))
    assert not result.success
    assert result.error.code == "timeout"
    assert result.error.retryable


class _BlockingProvider(ProviderAdapter):
    """Synchronous provider that blocks the calling thread."""

    @property
    def name(self) -> str:
        return "blocking"

    def send_prompt(self, session_id, prompt, options):
        time.sleep(0.2)
        return ProviderResponse(content=VALID)


def test_request_timeout_applies_to_blocking_providers(person_model) -> None:
    result = _execute(_BlockingProvider(), _config(person_model, retries=0, request_timeout_ms=10))
    assert not result.success
    assert result.attempts == 1
    assert result.error.code == "timeout"


def test_sync_provider_within_timeout_succeeds(person_model) -> None:
    provider = _SyncProvider(VALID)
    result = _execute(provider, _config(person_model, request_timeout_ms=1000))
    assert result.success
    assert provider.calls == 1


# --------------------------------------------------------------------------
# Provider shapes
# --------------------------------------------------------------------------


def test_sync_provider_is_supported(person_model) -> None:
    provider = _SyncProvider(VALID)
    result = _execute(provider, _config(person_model))
    assert result.success
    assert provider.calls == 1


def test_non_response_is_invalid_response(person_model, recorded_sleep) -> None:
    _, sleep = recorded_sleep
    result = _execute(_RawStringProvider(), _config(person_model, retries=0), sleep=sleep)
    assert result.error.code == "invalid_response"


def test_success_feedback_sent_in_session(person_model) -> None:
    provider = MockProvider(responses=[VALID], supports_session=True)
    config = _config(person_model, success_message="Great, keep that format.")
    _execute(provider, config, session_id="s-1")
    assert provider.success_feedback == [
        {
            "session_id": "s-1",
            "message": "Great, keep that format.",
            "metadata": {"attempt": 1, "model": config.model},
        }
    ]


def test_success_feedback_needs_session(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    _execute(provider, _config(person_model, success_message="Great"))
    assert provider.success_feedback == []


def test_history_and_token_usage(person_model) -> None:
    provider = MockProvider(responses=["nope", VALID])
    result = _execute(provider, _config(person_model))
    assert [r.outcome for r in result.history] == ["validation_failed", "success"]
    assert [r.error_code for r in result.history] == ["json_parse", None]
    assert result.token_usage.total_tokens == 60
    assert result.total_time_ms >= 0


def test_coordinator_receives_attempts(person_model) -> None:
    provider = MockProvider(responses=["nope", VALID], supports_session=True)
    coordinator = SessionCoordinator(provider)
    config = _config(person_model)
    asyncio.run(coordinator.coordinate(config))
    _execute(provider, config, session_id=coordinator.session_id, coordinator=coordinator)
    assert coordinator.session.metrics.total_attempts == 2
    assert coordinator.session.metrics.successful_validations == 1


def test_execute_with_retry_wrapper(person_model) -> None:
    provider = MockProvider(responses=[VALID])
    result = asyncio.run(execute_with_retry(_config(person_model), provider))
    assert result.success


# --------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------


def test_backoff_delay() -> None:
    assert backoff_delay_ms(1, 1000) == 1000
    assert backoff_delay_ms(2, 1000) == 1500
    assert backoff_delay_ms(3, 1000) == 2250
    assert backoff_delay_ms(20, 1000) == 10_000
    assert backoff_delay_ms(1, 1000, retry_after_s=2) == 2000
    assert backoff_delay_ms(1, 1000, retry_after_s=60) == 10_000


def test_provider_error_from_exception() -> None:
    error = provider_error_from_exception(ProviderCallError("nope", code="weird", retryable=False), "p", 2)
    assert (error.code, error.retryable, error.provider) == ("weird", False, "p")
    assert error.details["attempt"] == 2
    timeout = provider_error_from_exception(asyncio.TimeoutError(), "p", 1)
    assert timeout.code == "timeout"
    assert timeout.retryable


def test_crash_after_an_attempt_keeps_the_attempt_count(person_model) -> None:
    async def _broken_sleep(seconds: float) -> None:
        raise RuntimeError("clock broke")

    provider = MockProvider(responses=[ProviderUnavailableError("503"), VALID])
    engine = ExecutionEngine(provider, _config(person_model), sleep=_broken_sleep)
    result = asyncio.run(engine.execute())
    assert not result.success
    assert result.attempts == 1
    assert engine.attempts_made == 1
    assert provider.call_count == 1
    assert [r.outcome for r in result.history] == ["provider_error"]
    assert result.error.code == "orchestration_failed"
    assert result.error.retryable is False
    assert result.error.details["attempts"] == 1
