"""
providers.stoxx – biggest S&P 500 gainer and loser of the day.

Quotes:  Financial Modeling Prep stable API
         GET https://financialmodelingprep.com/stable/biggest-gainers?apikey=...
         GET https://financialmodelingprep.com/stable/biggest-losers?apikey=...
Universe: the S&P 500 constituents table on Wikipedia, scraped at most once
          every 24 hours and cached alongside the movers.

Refreshes on quarter-hour ticks only.  Outside NYSE hours the quotes are not
re-fetched; the snapshot is only rewritten when the closed flag or the
constituent list changes.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, time as dtime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import requests
from bs4 import BeautifulSoup

import config
from db.store import KeyValueStore
from display.frames import ICON_INFO, create_frame, create_response, message_response
from display.numbers import format_percent
from providers.base import BaseProvider, USER_AGENT, fetch_all, is_quarter_hour, register_provider

log = logging.getLogger(__name__)

FMP_BASE_URL = "https://financialmodelingprep.com/stable"
WIKIPEDIA_SP500_URL = "https://en.wikipedia.org/wiki/List_of_S%26P_500_companies"

ICON_GAIN = "i72948"
ICON_LOSS = "i72947"
ICON_MARKET_CLOSED = ICON_INFO

EXCHANGE_TZ = ZoneInfo("America/New_York")
MARKET_OPEN = dtime(9, 30)
MARKET_CLOSE = dtime(16, 0)

SP500_MAX_AGE = timedelta(hours=24)
_SYMBOL = re.compile(r"^[A-Z.]{1,5}$")


# ── Market hours ───────────────────────────────────────────────────────

def is_market_open(moment: datetime) -> bool:
    """Mon–Fri 09:30–16:00 New York time.  Exchange holidays are ignored."""
    local = moment.astimezone(EXCHANGE_TZ)
    if local.weekday() >= 5:
        return False
    return MARKET_OPEN <= local.time() < MARKET_CLOSE


def should_update_sp500(last_fetched: str | None, now: datetime) -> bool:
    if not last_fetched:
        return True
    try:
        fetched_at = datetime.fromisoformat(last_fetched.replace("Z", "+00:00"))
    except ValueError:
        return True
    return now - fetched_at >= SP500_MAX_AGE


# ── S&P 500 universe ───────────────────────────────────────────────────

def parse_sp500_symbols(html: str) -> list[str]:
    """Ticker symbols from the first column of the constituents table."""
    soup = BeautifulSoup(html, "lxml")
    symbols: set[str] = set()
    for tr in soup.find_all("tr"):
        td = tr.find("td")
        if td is None:
            continue
        link = td.find("a")
        if link is None:
            continue
        text = link.get_text(strip=True)
        if _SYMBOL.match(text):
            symbols.add(text)
    result = sorted(symbols)
    if not 400 <= len(result) <= 600:
        log.warning("Unexpected number of S&P 500 symbols parsed (%d); expected ~500",
                    len(result))
    return result


def fetch_sp500_symbols() -> list[str]:
    log.info("Fetching S&P 500 list from Wikipedia")
    resp = requests.get(
        WIKIPEDIA_SP500_URL,
        headers={"User-Agent": USER_AGENT},
        timeout=config.HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    symbols = parse_sp500_symbols(resp.text)
    log.info("Parsed %d S&P 500 symbols", len(symbols))
    return symbols


# ── FMP ────────────────────────────────────────────────────────────────

def fetch_movers(endpoint: str, api_key: str) -> list[dict[str, Any]]:
    resp = requests.get(
        f"{FMP_BASE_URL}/{endpoint}",
        params={"apikey": api_key},
        timeout=config.HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    payload = resp.json()
    if not isinstance(payload, list):
        raise ValueError(f"FMP {endpoint} returned {type(payload).__name__}")
    return payload


def pick_top(movers: list[dict[str, Any]], universe: set[str]) -> dict[str, Any] | None:
    """First mover inside *universe*.  FMP already sorts by percent change."""
    for stock in movers:
        if stock.get("symbol") in universe:
            return stock
    return None


def fetch_gainer_loser(
    api_key: str, symbols: list[str]
) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
    results = fetch_all(
        ("biggest-gainers", "biggest-losers"),
        lambda endpoint: fetch_movers(endpoint, api_key),
    )
    for endpoint, _, error in results:
        if error is not None:
            raise error
    gainers, losers = (movers for _, movers, _ in results)
    log.info("Fetched %d gainers, %d losers", len(gainers), len(losers))

    universe = set(symbols)
    top_gainer = pick_top(gainers, universe)
    top_loser = pick_top(losers, universe)
    if top_gainer:
        log.info("Top S&P 500 gainer: %s %s", top_gainer["symbol"],
                 top_gainer.get("changesPercentage"))
    if top_loser:
        log.info("Top S&P 500 loser: %s %s", top_loser["symbol"],
                 top_loser.get("changesPercentage"))
    return top_gainer, top_loser


def _symbol(stock: Any) -> str | None:
    return stock.get("symbol") if isinstance(stock, dict) else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Provider ───────────────────────────────────────────────────────────

@register_provider
class StoxxProvider(BaseProvider):
    NAME = "stoxx"
    STORAGE_KEY = "app:stoxx:data"

    def should_refresh(self, scheduled_time: datetime) -> bool:
        return is_quarter_hour(scheduled_time)

    def custom_refresh(
        self, store: KeyValueStore, scheduled_time: datetime | None = None
    ) -> None:
        api_key = config.FMP_API_KEY
        if not api_key:
            log.error("FMP_API_KEY not configured")
            return

        now = _now()
        existing = store.get_json(self.STORAGE_KEY)
        if not isinstance(existing, dict):
            existing = None

        symbols: list[str] = list((existing or {}).get("sp500Symbols") or [])
        last_fetched: str | None = (existing or {}).get("sp500LastFetched")

        if should_update_sp500(last_fetched, now):
            try:
                symbols = fetch_sp500_symbols()
                last_fetched = now.isoformat()
            except requests.RequestException as exc:
                log.error("Failed to update S&P 500 list: %s", exc)
                if not symbols:
                    log.error("No S&P 500 list available, cannot proceed")
                    return
                log.info("Using cached S&P 500 list (%d symbols)", len(symbols))
        else:
            log.info("Using cached S&P 500 list (%d symbols, last updated %s)",
                     len(symbols), last_fetched)

        list_changed = existing is None or last_fetched != existing.get("sp500LastFetched")
        manual = scheduled_time is None
        market_open = is_market_open(scheduled_time or now)

        if not market_open and not manual:
            log.info("Market is closed, skipping quote fetch")
            if existing is None or existing.get("marketClosed") is not True or list_changed:
                base = existing or {"topGainer": None, "topLoser": None, "lastUpdated": now.isoformat()}
                store.put_json(self.STORAGE_KEY, {
                    **base,
                    "marketClosed": True,
                    "sp500Symbols": symbols,
                    "sp500LastFetched": last_fetched,
                })
                log.info("Updated cached stocks data with marketClosed flag")
            else:
                log.info("Skipped stocks write (no changes needed)")
            return

        if manual:
            log.info("Manual invocation, bypassing market hours check")

        try:
            top_gainer, top_loser = fetch_gainer_loser(api_key, symbols)
        except (requests.RequestException, ValueError) as exc:
            log.error("Failed to fetch gainers/losers: %s", exc)
            if existing is not None and list_changed:
                store.put_json(self.STORAGE_KEY, {
                    **existing,
                    "sp500Symbols": symbols,
                    "sp500LastFetched": last_fetched,
                })
            return

        changed = (
            existing is None
            or _symbol(existing.get("topGainer")) != _symbol(top_gainer)
            or _symbol(existing.get("topLoser")) != _symbol(top_loser)
            or existing.get("marketClosed") != (not market_open)
            or list_changed
        )
        if not changed:
            log.info("Skipped stocks write (no changes)")
            return

        store.put_json(self.STORAGE_KEY, {
            "topGainer": top_gainer,
            "topLoser": top_loser,
            "lastUpdated": now.isoformat(),
            "marketClosed": not market_open,
            "sp500Symbols": symbols,
            "sp500LastFetched": last_fetched,
        })
        log.info("Updated stocks data")

    def render(self, data: Any, **request: Any) -> dict[str, Any]:
        if not isinstance(data, dict):
            return message_response("No data", ICON_MARKET_CLOSED)
        gainer, loser = data.get("topGainer"), data.get("topLoser")
        if not isinstance(gainer, dict) and not isinstance(loser, dict):
            return message_response("No data", ICON_MARKET_CLOSED)

        frames = []
        if isinstance(gainer, dict):
            pct = float(gainer.get("changesPercentage") or 0)
            frames.append(create_frame(f"{gainer['symbol']} {format_percent(pct)}", ICON_GAIN))
        if isinstance(loser, dict):
            pct = float(loser.get("changesPercentage") or 0)
            frames.append(create_frame(
                f"{loser['symbol']} {format_percent(pct, signed=False)}", ICON_LOSS
            ))
        if data.get("marketClosed"):
            frames.append(create_frame("Market closed", ICON_MARKET_CLOSED))
        return create_response(frames)
