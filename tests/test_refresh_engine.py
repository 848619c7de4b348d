import json
import logging

from conftest import CustomProvider, ExplodingProvider, StaticProvider, ThrottledProvider, utc
from jobs.refresh import FAILED, REFRESHED, SKIPPED, UNCHANGED, UPDATED, refresh_provider, run_tick
from jobs.schedule import tick_time
from providers.counter import CounterProvider


def test_default_sequence_writes_once_then_skips(store):
    provider = StaticProvider({"temp": 12})
    first = run_tick([provider], store, utc(2026, 1, 5, 12, 5))
    second = run_tick([provider], store, utc(2026, 1, 5, 12, 10))

    assert first.outcomes == {"static": UPDATED}
    assert second.outcomes == {"static": UNCHANGED}
    assert len(store.writes) == 1
    assert json.loads(store.get("app:static")) == {"temp": 12}
    assert provider.fetches == 2


def test_one_failure_does_not_block_others(store):
    good = StaticProvider(name="good")
    bad = ExplodingProvider()
    result = run_tick([bad, good], store, utc(2026, 1, 5, 12, 0))

    assert result.failed == 1
    assert result.successful == 1
    assert result.outcomes["exploding"] == FAILED
    assert store.get("app:good") is not None


def test_provider_throttle_skips_without_fetching(store):
    provider = ThrottledProvider()
    result = run_tick([provider], store, utc(2026, 1, 5, 12, 5))

    assert result.skipped == 1
    assert provider.fetches == 0
    assert store.writes == []

    run_tick([provider], store, utc(2026, 1, 5, 12, 30))
    assert provider.fetches == 1


def test_hourly_only_counter(store):
    counter = CounterProvider()
    run_tick([counter], store, utc(2026, 1, 5, 12, 5), hourly_only=["counter"])
    assert store.get("app:counter") is None

    run_tick([counter], store, utc(2026, 1, 5, 13, 0), hourly_only=["counter"])
    run_tick([counter], store, utc(2026, 1, 5, 14, 0), hourly_only=["counter"])
    assert store.get("app:counter") == "2"


def test_custom_refresh_receives_trigger_time(store):
    provider = CustomProvider()
    when = utc(2026, 1, 5, 12, 15)
    result = run_tick([provider], store, when)

    assert result.outcomes == {"custom": REFRESHED}
    assert provider.calls == [when]
    assert provider.fetches == 0


def test_manual_refresh_bypasses_throttles(store):
    provider = ThrottledProvider()
    assert refresh_provider(provider, store, None, hourly_only=["throttled"]) == UPDATED

    custom = CustomProvider()
    refresh_provider(custom, store, None)
    assert custom.calls == [None]


def test_refresh_provider_reports_skip(store):
    assert refresh_provider(ThrottledProvider(), store, utc(2026, 1, 5, 12, 5)) == SKIPPED


def test_enabled_list_filters_and_warns(store, caplog):
    a, b = StaticProvider(name="a"), StaticProvider(name="b")
    with caplog.at_level(logging.WARNING):
        result = run_tick([a, b], store, utc(2026, 1, 5, 12, 0), enabled=["b", "nope"])

    assert list(result.outcomes) == ["b"]
    assert a.fetches == 0
    assert "nope" in caplog.text


def test_tick_time_truncates_to_minute():
    from datetime import datetime, timezone

    now = datetime(2026, 1, 5, 12, 4, 59, 123456, tzinfo=timezone.utc)
    assert tick_time(now) == utc(2026, 1, 5, 12, 4)


def test_build_scheduler_registers_single_refresh_job(store):
    from jobs.schedule import build_scheduler

    scheduler = build_scheduler([StaticProvider()], store, tick_minutes=5)
    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == ["refresh"]
    assert jobs[0].max_instances == 1
    assert jobs[0].coalesce is True


def test_tick_time_floors_to_slot():
    from datetime import datetime, timezone

    late = datetime(2026, 1, 5, 12, 16, 5, tzinfo=timezone.utc)
    assert tick_time(late, slot_minutes=5) == utc(2026, 1, 5, 12, 15)
    assert tick_time(late, slot_minutes=15) == utc(2026, 1, 5, 12, 15)


def test_late_scheduled_job_keeps_its_slot(store, monkeypatch):
    import jobs.schedule
    from datetime import datetime, timezone

    class _LateClock(datetime):
        @classmethod
        def now(cls, tz=None):
            return datetime(2026, 1, 5, 13, 0, 40, tzinfo=timezone.utc)

    monkeypatch.setattr(jobs.schedule, "datetime", _LateClock)
    counter = CounterProvider()
    scheduler = jobs.schedule.build_scheduler([counter], store, tick_minutes=5, hourly_only=["counter"])
    result = scheduler.get_jobs()[0].func()

    assert result.outcomes == {"counter": UPDATED}
    assert store.get("app:counter") == "1"
