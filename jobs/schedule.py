"""
jobs.schedule – APScheduler wiring that fires ``run_tick`` on a fixed cadence.

The cron trigger fires on every multiple of ``TICK_MINUTES`` past the hour.
Provider throttles and the OSRS rotation all assume that cadence is 5.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from db.store import KeyValueStore
from jobs.refresh import TickResult, run_tick
from providers.base import BaseProvider

log = logging.getLogger(__name__)


def tick_time(now: datetime | None = None, slot_minutes: int = 1) -> datetime:
    """The trigger timestamp: UTC time floored to the start of its slot.

    With *slot_minutes* matching the cron cadence, a job that starts late
    still reports the slot it was fired for (12:16:05 -> 12:15 for 5).
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.replace(minute=now.minute - now.minute % slot_minutes, second=0, microsecond=0)


def build_scheduler(
    registry: Sequence[BaseProvider],
    store: KeyValueStore,
    tick_minutes: int = 5,
    enabled: Sequence[str] | None = None,
    hourly_only: Collection[str] = (),
) -> BackgroundScheduler:
    if tick_minutes != 5:
        log.warning("TICK_MINUTES=%d; OSRS rotation assumes 5-minute ticks", tick_minutes)

    def _job() -> TickResult:
        return run_tick(
            registry, store, tick_time(slot_minutes=tick_minutes), enabled=enabled, hourly_only=hourly_only
        )

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        _job,
        CronTrigger(minute=f"*/{tick_minutes}", timezone="UTC"),
        id="refresh",
        name="refresh providers",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    return scheduler
