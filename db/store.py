"""
db.store – the key-value collaborator every refresh and request goes through.

All persisted values are JSON text.  Two backends:
  * ``SupabaseStore`` (db.supabase_client) – durable, used in production.
  * ``MemoryStore`` – in-process dict, used for local runs and tests.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

log = logging.getLogger(__name__)


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string or None when the key is absent."""
        ...

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        ...

    # ── JSON helpers ───────────────────────────────────────────────────

    def get_json(self, key: str) -> Any | None:
        """Decode the value under *key*.  Absent or corrupt values give None."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            log.error("Corrupt JSON under %s: %s", key, exc)
            return None

    def put_json(self, key: str, value: Any) -> None:
        self.put(key, dumps(value))


def dumps(value: Any) -> str:
    """Canonical serialisation used for both storage and byte comparison."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class MemoryStore(KeyValueStore):
    """Dict-backed store.  ``writes`` records every put, in order."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.writes: list[tuple[str, str]] = []

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value
        self.writes.append((key, value))


# ── Factory ────────────────────────────────────────────────────────────

def get_store(url: str | None, key: str | None, table: str = "kv_store") -> KeyValueStore:
    """Return the Supabase store when credentials are set, else memory."""
    if url and key:
        from db.supabase_client import SupabaseStore

        return SupabaseStore(url, key, table)
    log.warning("SUPABASE_URL/SUPABASE_KEY not set – using in-memory store")
    return MemoryStore()
