"""Mock provider for testing."""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any

from persuader.provider import PromptOptions, ProviderAdapter, ProviderResponse, TokenUsage


@dataclass
class MockProvider(ProviderAdapter):
    """Provider that replays pre-configured responses. Ideal for testing.

    Each entry in *responses* is either the text to answer with or an
    exception instance to raise for that call. Once the script runs out the
    last entry is repeated.

    Args:
        responses: Ordered script of answers.
        supports_session: Whether to advertise session support.
        session_prefix: Prefix for ids handed out by :meth:`create_session`.
        token_usage: Usage reported with every answer.
    """

    responses: list[Any] = field(default_factory=list)
    supports_session: bool = False
    session_prefix: str = "mock-session"
    token_usage: TokenUsage | None = field(
        default_factory=lambda: TokenUsage(input_tokens=10, output_tokens=20, total_tokens=30)
    )
    calls: list[dict[str, Any]] = field(default_factory=list, repr=False)
    sessions_created: list[tuple[str, str]] = field(default_factory=list, repr=False)
    sessions_destroyed: list[str] = field(default_factory=list, repr=False)
    success_feedback: list[dict[str, Any]] = field(default_factory=list, repr=False)
    _counter: Any = field(default_factory=itertools.count, repr=False)

    @property
    def name(self) -> str:
        """Provider name."""
        return "mock"

    @property
    def call_count(self) -> int:
        """Number of prompts sent so far."""
        return len(self.calls)

    @property
    def prompts(self) -> list[str]:
        return [call["prompt"] for call in self.calls]

    async def send_prompt(
        self, session_id: str | None, prompt: str, options: PromptOptions
    ) -> ProviderResponse:
        """Return (or raise) the next scripted response."""
        index = len(self.calls)
        self.calls.append({"session_id": session_id, "prompt": prompt, "options": options})
        if not self.responses:
            return ProviderResponse(content=f"Mock response {index}", token_usage=self.token_usage)
        item = self.responses[min(index, len(self.responses) - 1)]
        if isinstance(item, BaseException):
            raise item
        return ProviderResponse(content=item, token_usage=self.token_usage, stop_reason="end_turn")

    async def create_session(self, context: str, options: Any) -> str:
        session_id = f"{self.session_prefix}-{next(self._counter)}"
        self.sessions_created.append((session_id, context))
        return session_id

    async def destroy_session(self, session_id: str) -> None:
        self.sessions_destroyed.append(session_id)

    async def send_success_feedback(
        self, session_id: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.success_feedback.append(
            {"session_id": session_id, "message": message, "metadata": metadata or {}}
        )
