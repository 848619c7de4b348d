"""
providers.counter – a stored integer that goes up by one per refresh.

Uses the default refresh sequence.  The top-of-hour restriction lives in
configuration (``HOURLY_APPS``), not here.
"""

from __future__ import annotations

import random
from typing import Any

from db.store import KeyValueStore
from display.frames import create_frame, create_response
from providers.base import BaseProvider, register_provider


@register_provider
class CounterProvider(BaseProvider):
    NAME = "counter"
    STORAGE_KEY = "app:counter"

    def fetch(self, store: KeyValueStore) -> int:
        current = store.get_json(self.STORAGE_KEY)
        count = current if isinstance(current, int) else 0
        return count + 1

    def render(self, data: Any, **request: Any) -> dict[str, Any]:
        icon = f"i{random.randint(1, 70000)}"
        return create_response([create_frame(f"#{data}", icon)])
