"""
main.py – application entry point.

Builds the key-value store and the provider registry, starts the refresh
scheduler and serves the display endpoints.  ``--tick`` runs a single
refresh tick and exits (handy from an external cron).
"""

import argparse
import logging

import config
from db.store import get_store
from jobs.refresh import run_tick
from jobs.schedule import build_scheduler, tick_time
from providers.catalog import build_registry
from web.app import create_app


logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
)
log = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Display data feeds")
    parser.add_argument("--tick", action="store_true",
                        help="run one refresh tick now and exit")
    args = parser.parse_args()

    store = get_store(config.SUPABASE_URL, config.SUPABASE_KEY, config.SUPABASE_TABLE)
    registry = build_registry()
    log.info("Registered providers: %s", ", ".join(p.NAME for p in registry))

    if args.tick:
        result = run_tick(registry, store, tick_time(slot_minutes=config.TICK_MINUTES),
                          enabled=config.ENABLED_APPS, hourly_only=config.HOURLY_APPS)
        raise SystemExit(1 if result.failed else 0)

    scheduler = build_scheduler(registry, store, config.TICK_MINUTES,
                                enabled=config.ENABLED_APPS, hourly_only=config.HOURLY_APPS)
    scheduler.start()
    log.info("Refresh scheduler started (every %d min)", config.TICK_MINUTES)

    app = create_app(registry, store, enabled=config.ENABLED_APPS)
    try:
        app.run(host=config.HOST, port=config.PORT)
    finally:
        scheduler.shutdown(wait=False)


if __name__ == "__main__":
    main()
