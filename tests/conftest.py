"""Shared fixtures for persuader tests."""
from __future__ import annotations

from typing import Literal, Optional

import pytest
from pydantic import BaseModel, ConfigDict, Field

from persuader.providers.mock import MockProvider
from persuader.schema import PydanticSchema


class Person(BaseModel):
    name: str
    age: int = Field(ge=0)


class Account(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner: str
    status: Literal["active", "inactive"]
    nickname: Optional[str] = None


@pytest.fixture
def person_model() -> type[Person]:
    return Person


@pytest.fixture
def account_model() -> type[Account]:
    return Account


@pytest.fixture
def person_schema() -> PydanticSchema:
    """Schema for ``{name: str, age: int >= 0}``."""
    return PydanticSchema(Person)


@pytest.fixture
def account_schema() -> PydanticSchema:
    return PydanticSchema(Account)


@pytest.fixture
def mock_provider() -> MockProvider:
    """Sessionless MockProvider: one bad answer, then a valid person."""
    return MockProvider(responses=["not json", '{"name": "Alice", "age": 30}'])


@pytest.fixture
def session_provider() -> MockProvider:
    """Session-capable MockProvider that answers correctly first time."""
    return MockProvider(responses=['{"name": "Alice", "age": 30}'], supports_session=True)


@pytest.fixture
def recorded_sleep() -> tuple[list[float], object]:
    """Backoff sleep replacement that records delays instead of waiting."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, _sleep
