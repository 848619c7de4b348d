"""
jobs.refresh – the scheduled refresh engine.

One call to ``run_tick`` per timer firing.  Every enabled provider is
refreshed concurrently and independently:

  1. throttles (configured hourly-only names, then the provider's own
     ``should_refresh``) may skip it;
  2. a provider with a ``custom_refresh`` owns its fetch/compare/store;
  3. otherwise the default sequence runs: fetch, serialise, compare with
     the stored string, write only on difference.

A provider that raises is logged and counted; nothing is retried.  The next
tick is the retry.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from db.store import KeyValueStore, dumps
from providers.base import BaseProvider, enabled_providers

log = logging.getLogger(__name__)

SKIPPED = "skipped"
UPDATED = "updated"
UNCHANGED = "unchanged"
REFRESHED = "refreshed"   # custom routine ran; it decides about writes
FAILED = "failed"


@dataclass
class TickResult:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: dict[str, str] = field(default_factory=dict)


def is_throttled(
    provider: BaseProvider,
    scheduled_time: datetime,
    hourly_only: Collection[str] = (),
) -> bool:
    if provider.NAME in hourly_only and scheduled_time.minute != 0:
        return True
    return not provider.should_refresh(scheduled_time)


def default_refresh(provider: BaseProvider, store: KeyValueStore) -> str:
    value = dumps(provider.fetch(store))
    if store.get(provider.STORAGE_KEY) == value:
        log.info("Skipped %s write (no changes)", provider.NAME)
        return UNCHANGED
    store.put(provider.STORAGE_KEY, value)
    log.info("Updated %s", provider.NAME)
    return UPDATED


def refresh_provider(
    provider: BaseProvider,
    store: KeyValueStore,
    scheduled_time: datetime | None,
    hourly_only: Collection[str] = (),
) -> str:
    """Refresh one provider.  ``scheduled_time=None`` bypasses every throttle."""
    if scheduled_time is not None and is_throttled(provider, scheduled_time, hourly_only):
        log.info("Skipping %s (throttled at %s)", provider.NAME, scheduled_time.strftime("%H:%M"))
        return SKIPPED

    if provider.has_custom_refresh:
        log.info("Using custom refresh for %s", provider.NAME)
        provider.custom_refresh(store, scheduled_time)
        return REFRESHED

    log.info("Fetching data for %s", provider.NAME)
    return default_refresh(provider, store)


def run_tick(
    registry: Sequence[BaseProvider],
    store: KeyValueStore,
    scheduled_time: datetime,
    enabled: Sequence[str] | None = None,
    hourly_only: Collection[str] = (),
    max_workers: int = 8,
) -> TickResult:
    log.info("Scheduled refresh triggered at %s", scheduled_time.isoformat())
    providers = enabled_providers(registry, enabled)
    result = TickResult()
    if not providers:
        log.warning("No providers enabled")
        return result

    with ThreadPoolExecutor(max_workers=min(max_workers, len(providers))) as pool:
        futures = {
            provider.NAME: pool.submit(
                refresh_provider, provider, store, scheduled_time, hourly_only
            )
            for provider in providers
        }
        for name, future in futures.items():
            try:
                outcome = future.result()
            except Exception:
                log.exception("Failed to update %s", name)
                outcome = FAILED
            result.outcomes[name] = outcome
            if outcome == FAILED:
                result.failed += 1
            elif outcome == SKIPPED:
                result.skipped += 1
            else:
                result.successful += 1

    log.info("Tick completed: %d successful, %d failed, %d skipped",
             result.successful, result.failed, result.skipped)
    return result
