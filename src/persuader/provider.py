"""Base abstractions for LLM providers."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class TokenUsage:
    """Token usage reported by the LLM API.

    Attributes:
        input_tokens: Number of tokens in the prompt.
        output_tokens: Number of tokens in the completion.
        total_tokens: Total tokens consumed.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class ProviderResponse:
    """Normalised response returned by every provider.

    Attributes:
        content: The text content of the completion.
        token_usage: Token usage statistics, if the provider reports them.
        stop_reason: Why generation stopped (``"end_turn"``, ``"max_tokens"``...).
        truncated: Whether the provider cut the output short.
        metadata: Anything else the adapter wants to surface.
    """

    content: str
    token_usage: TokenUsage | None = None
    stop_reason: str | None = None
    truncated: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PromptOptions:
    """Generation options passed to :meth:`ProviderAdapter.send_prompt`.

    Attributes:
        model: Model identifier.
        temperature: Sampling temperature.
        max_tokens: Completion token limit.
        extra: Provider-specific options, passed through untouched.
    """

    model: str
    temperature: float
    max_tokens: int
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionOptions:
    """Options passed to ``create_session``."""

    model: str
    temperature: float


class ProviderAdapter(ABC):
    """Abstract base class that all providers must implement.

    Session-capable providers set :attr:`supports_session` and define
    ``create_session(context, options) -> str``. They may also define
    ``destroy_session(session_id)`` and
    ``send_success_feedback(session_id, message, metadata)``. Any of these
    methods, and :meth:`send_prompt`, may be coroutines or plain functions.

    A session id must not be used by two pipeline runs at the same time;
    the provider-side conversation would interleave.
    """

    supports_session: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name."""

    @abstractmethod
    def send_prompt(
        self, session_id: str | None, prompt: str, options: PromptOptions
    ) -> Any:
        """Send *prompt* and return (or resolve to) a :class:`ProviderResponse`.

        Raises:
            persuader.errors.ProviderCallError: On a failed call; the
                subclass decides whether the pipeline may retry.
        """
