"""
db.supabase_client – Supabase-backed key-value store.

Table expected in Supabase:
  kv_store(key text PK, value text, updated_at timestamptz)

Each ``put`` is a single upsert of a fully built value, so readers only ever
see the previous snapshot or the new one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from supabase import create_client, Client

from db.store import KeyValueStore

log = logging.getLogger(__name__)


class SupabaseStore(KeyValueStore):
    def __init__(self, url: str, key: str, table: str = "kv_store") -> None:
        self._url = url
        self._key = key
        self._table = table
        self._client: Client | None = None

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client

    def get(self, key: str) -> str | None:
        sb = self._get_client()
        row = (
            sb.table(self._table)
            .select("value")
            .eq("key", key)
            .execute()
        )
        if not row.data:
            return None
        return row.data[0]["value"]  # type: ignore[return-value]

    def put(self, key: str, value: str) -> None:
        sb = self._get_client()
        sb.table(self._table).upsert(
            {
                "key": key,
                "value": value,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="key",
        ).execute()
        log.debug("Stored %s (%d bytes)", key, len(value))
