#!/usr/bin/env python3
"""Basic persuader example: schema-validated JSON with MockProvider."""
from __future__ import annotations

from pydantic import BaseModel, Field

from persuader import Options, configure_logging, get_logger, run_sync
from persuader.providers.mock import MockProvider


class UserProfile(BaseModel):
    name: str
    age: int = Field(ge=0)
    email: str


def main() -> None:
    configure_logging("info")
    provider = MockProvider(
        responses=[
            "not json",
            '{"name": "Alice", "age": -1, "email": "alice@example.com"}',
            '{"name": "Alice", "age": 30, "email": "alice@example.com"}',
        ]
    )
    options = Options(
        schema=UserProfile,
        input="Alice (30) can be reached at alice@example.com",
        context="You extract user profiles from short notes.",
        retries=3,
    )
    result = run_sync(options, provider, logger=get_logger())
    print(f"OK: {result.ok} after {result.attempts} attempts")
    print(f"Value: {result.value!r}")
    print(f"Outcomes: {[record.outcome for record in result.history]}")
    print("Second prompt sent:\n")
    print(provider.prompts[1])


if __name__ == "__main__":
    main()
