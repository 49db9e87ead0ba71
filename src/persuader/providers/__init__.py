"""Built-in provider implementations."""
from __future__ import annotations

from persuader.providers.mock import MockProvider

__all__ = [
    "MockProvider",
]
