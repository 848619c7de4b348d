"""
providers.ticker – daily % change for a fixed basket of funds, BTC and gold.

Source: GET https://financialmodelingprep.com/stable/quote?symbol=A,B,C&apikey=...

All symbols come back from one batched call.  A refresh only writes when a
percentage, rounded to one decimal, differs from the cached one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests

import config
from db.store import KeyValueStore
from display.frames import ICON_INFO, create_frame, create_response, message_response
from display.numbers import format_percent
from providers.base import BaseProvider, is_quarter_hour, register_provider

log = logging.getLogger(__name__)

QUOTE_URL = "https://financialmodelingprep.com/stable/quote"

ICON_GAIN = "i72948"
ICON_LOSS = "i72947"

# (display name, FMP symbol)
TICKERS: tuple[tuple[str, str], ...] = (
    ("SCHB", "SCHB"),
    ("QQQM", "QQQM"),
    ("VXUS", "VXUS"),
    ("VGK", "VGK"),
    ("BTC", "BTCUSD"),
    ("GOLD", "GCUSD"),
)


def fetch_quotes(api_key: str) -> list[dict[str, Any]]:
    resp = requests.get(
        QUOTE_URL,
        params={"symbol": ",".join(sym for _, sym in TICKERS), "apikey": api_key},
        timeout=config.HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    quotes = resp.json()
    if not isinstance(quotes, list):
        raise ValueError("FMP quote returned a non-list payload")

    by_symbol = {q.get("symbol"): q for q in quotes if isinstance(q, dict)}
    results: list[dict[str, Any]] = []
    for display, fmp_symbol in TICKERS:
        quote = by_symbol.get(fmp_symbol)
        if quote is None:
            log.warning("No quote returned for %s", fmp_symbol)
            continue
        results.append({
            "display": display,
            "fmpSymbol": fmp_symbol,
            "price": quote.get("price"),
            "changesPercentage": float(quote.get("changesPercentage") or 0),
        })
    return results


def _rounded(pct: Any) -> str:
    return f"{float(pct or 0):.1f}"


def tickers_changed(new: list[dict[str, Any]], existing: Any) -> bool:
    if not isinstance(existing, dict) or not isinstance(existing.get("tickers"), list):
        return True
    old = {t.get("fmpSymbol"): t for t in existing["tickers"] if isinstance(t, dict)}
    if len(new) != len(existing["tickers"]):
        return True
    for ticker in new:
        prev = old.get(ticker["fmpSymbol"])
        if prev is None or _rounded(prev.get("changesPercentage")) != _rounded(ticker["changesPercentage"]):
            return True
    return False


@register_provider
class TickerProvider(BaseProvider):
    NAME = "ticker"
    STORAGE_KEY = "app:ticker:data"

    def should_refresh(self, scheduled_time: datetime) -> bool:
        return is_quarter_hour(scheduled_time)

    def custom_refresh(
        self, store: KeyValueStore, scheduled_time: datetime | None = None
    ) -> None:
        api_key = config.FMP_API_KEY
        if not api_key:
            log.error("FMP_API_KEY not configured")
            return

        tickers = fetch_quotes(api_key)
        log.info("Fetched quotes for %d/%d symbols", len(tickers), len(TICKERS))
        if not tickers:
            log.error("No ticker quotes returned, keeping existing data")
            return

        if not tickers_changed(tickers, store.get_json(self.STORAGE_KEY)):
            log.info("Skipped ticker write (no changes)")
            return

        store.put_json(self.STORAGE_KEY, {
            "tickers": tickers,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        })
        log.info("Updated ticker data")

    def render(self, data: Any, **request: Any) -> dict[str, Any]:
        tickers = data.get("tickers") if isinstance(data, dict) else None
        if not tickers:
            return message_response("No data", ICON_INFO)

        frames = []
        for ticker in tickers:
            pct = float(ticker.get("changesPercentage") or 0)
            icon = ICON_GAIN if pct >= 0 else ICON_LOSS
            frames.append(create_frame(f"{ticker['display']} {format_percent(pct)}", icon))
        return create_response(frames)
