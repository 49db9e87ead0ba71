#!/usr/bin/env python3
"""Reuse one provider session across several runs."""
from __future__ import annotations

import asyncio
from typing import Literal

from pydantic import BaseModel

from persuader import get_execution_stats, run
from persuader.providers.mock import MockProvider


class Sentiment(BaseModel):
    label: Literal["positive", "negative", "neutral"]
    confidence: float


REVIEWS = [
    "Loved it, would buy again.",
    "Broke after two days.",
    "It is a chair.",
]


async def main() -> None:
    provider = MockProvider(
        responses=[
            '{"label": "Positive", "confidence": 0.9}',
            '{"label": "positive", "confidence": 0.9}',
        ],
        supports_session=True,
    )
    context = "You classify product reviews."
    first = await run(
        {"schema": Sentiment, "input": REVIEWS[0], "context": context,
         "success_message": "Correct format, keep using it."},
        provider,
    )
    print(get_execution_stats(first))

    for review in REVIEWS[1:]:
        result = await run(
            {"schema": Sentiment, "input": review, "session_id": first.session_id},
            provider,
        )
        print(get_execution_stats(result))

    print(f"Sessions created: {len(provider.sessions_created)}")
    print(f"Success feedback sent: {len(provider.success_feedback)}")


if __name__ == "__main__":
    asyncio.run(main())
