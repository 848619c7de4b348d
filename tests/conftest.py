"""
Shared fixtures: in-memory store, fixed trigger times and fake providers.

No live network; provider modules' fetch helpers are monkeypatched per test.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
import requests

import providers.catalog  # noqa: F401  (registers providers in catalog order)
from db.store import MemoryStore
from display.frames import create_frame, create_response
from providers.base import BaseProvider


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


# Monday 19 Oct 2026, 10:00 in New York (EDT)
MARKET_OPEN_TIME = utc(2026, 10, 19, 14, 0)
# Saturday 17 Oct 2026
WEEKEND_TIME = utc(2026, 10, 17, 15, 0)


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


class StaticProvider(BaseProvider):
    """Default-sequence provider returning a fixed value.  Counts fetches."""

    NAME = "static"
    STORAGE_KEY = "app:static"

    def __init__(self, value: Any = None, name: str = "static") -> None:
        self.value = value if value is not None else {"answer": 42}
        self.NAME = name
        self.STORAGE_KEY = f"app:{name}"
        self.fetches = 0

    def fetch(self, store):
        self.fetches += 1
        return self.value

    def render(self, data, **request):
        return create_response([create_frame(str(data))])


class ExplodingProvider(StaticProvider):
    def __init__(self, name: str = "exploding") -> None:
        super().__init__(name=name)

    def fetch(self, store):
        raise RuntimeError("upstream down")

    def render(self, data, **request):
        raise RuntimeError("render bug")


class ThrottledProvider(StaticProvider):
    def __init__(self, name: str = "throttled") -> None:
        super().__init__(name=name)

    def should_refresh(self, scheduled_time):
        return scheduled_time.minute == 30


class CustomProvider(StaticProvider):
    def __init__(self, name: str = "custom") -> None:
        super().__init__(name=name)
        self.calls: list[Any] = []

    def custom_refresh(self, store, scheduled_time=None):
        self.calls.append(scheduled_time)


class FakeResponse:
    """Stands in for ``requests.Response`` in patched ``requests.get`` calls."""

    def __init__(self, payload: Any, status: int = 200) -> None:
        self.payload = payload
        self.status_code = status

    def json(self) -> Any:
        return self.payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def fake_get(payload: Any, status: int = 200, calls: list | None = None):
    def _get(url, **kwargs):
        if calls is not None:
            calls.append((url, kwargs))
        return FakeResponse(payload, status)

    return _get
