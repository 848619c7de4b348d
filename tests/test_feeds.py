"""Ticker, weather and scryfall providers."""

import logging

import pytest
import requests

import config
from conftest import fake_get, utc
from providers import scryfall, ticker, weather
from providers.scryfall import (
    ScryfallProvider,
    abbreviate_type,
    format_mana_cost,
    format_price,
    parse_card_type,
)
from providers.ticker import TickerProvider, tickers_changed
from providers.weather import CITIES, WeatherProvider


# ── ticker ─────────────────────────────────────────────────────────────

def quote(display, symbol, pct):
    return {"display": display, "fmpSymbol": symbol, "price": 10.0, "changesPercentage": pct}


def test_tickers_changed_compares_at_one_decimal():
    old = {"tickers": [quote("BTC", "BTCUSD", 1.23), quote("GOLD", "GCUSD", -0.5)]}
    assert not tickers_changed([quote("BTC", "BTCUSD", 1.24), quote("GOLD", "GCUSD", -0.49)], old)
    assert tickers_changed([quote("BTC", "BTCUSD", 1.31), quote("GOLD", "GCUSD", -0.5)], old)
    assert tickers_changed([quote("BTC", "BTCUSD", 1.23)], old)
    assert tickers_changed([quote("BTC", "BTCUSD", 1.23)], None)


def test_ticker_refresh_skips_unchanged(store, monkeypatch):
    monkeypatch.setattr(config, "FMP_API_KEY", "k")
    basket = [quote("BTC", "BTCUSD", 2.0)]
    monkeypatch.setattr(ticker, "fetch_quotes", lambda key: basket)
    provider = TickerProvider()

    provider.custom_refresh(store, utc(2026, 1, 5, 12, 0))
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 15))
    assert len(store.writes) == 1


def test_ticker_render_signs():
    data = {"tickers": [quote("BTC", "BTCUSD", 2.04), quote("VGK", "VGK", -1.26)]}
    frames = TickerProvider().render(data)["frames"]
    assert frames == [
        {"text": "BTC +2.0%", "icon": ticker.ICON_GAIN},
        {"text": "VGK -1.3%", "icon": ticker.ICON_LOSS},
    ]


def test_fetch_quotes_omits_missing_symbols(monkeypatch, caplog):
    calls = []
    payload = [
        {"symbol": "SCHB", "price": 22.1, "changesPercentage": 0.42},
        {"symbol": "UNRELATED", "price": 1.0, "changesPercentage": 9.9},
    ]
    monkeypatch.setattr(ticker.requests, "get", fake_get(payload, calls=calls))
    with caplog.at_level(logging.WARNING, logger="providers.ticker"):
        quotes = ticker.fetch_quotes("k")

    assert quotes == [{"display": "SCHB", "fmpSymbol": "SCHB", "price": 22.1, "changesPercentage": 0.42}]
    assert "No quote returned for BTCUSD" in caplog.text
    assert calls[0][1]["params"]["symbol"] == "SCHB,QQQM,VXUS,VGK,BTCUSD,GCUSD"


def test_fetch_quotes_rejects_non_list_payload(monkeypatch):
    monkeypatch.setattr(ticker.requests, "get", fake_get({"Error Message": "Invalid API KEY."}))
    with pytest.raises(ValueError):
        ticker.fetch_quotes("k")


def test_ticker_empty_quotes_keep_cached_basket(store, monkeypatch):
    monkeypatch.setattr(config, "FMP_API_KEY", "k")
    store.put_json(TickerProvider.STORAGE_KEY, {"tickers": [quote("BTC", "BTCUSD", 2.0)]})
    before = len(store.writes)

    monkeypatch.setattr(ticker.requests, "get", fake_get([]))
    provider = TickerProvider()
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 0))

    assert len(store.writes) == before
    frames = provider.render(store.get_json(TickerProvider.STORAGE_KEY))["frames"]
    assert frames[0]["text"] == "BTC +2.0%"


# ── weather ────────────────────────────────────────────────────────────

def reading(city, current=60):
    return {
        "name": city.name, "icon": city.icon, "high": 70, "low": 50,
        "current": current, "feelsLike": current - 2, "conditionCode": 3,
        "condition": "OVERCAST",
    }


def test_weather_keeps_previous_city_on_failure(store, monkeypatch):
    provider = WeatherProvider()
    monkeypatch.setattr(weather, "fetch_city", lambda city: reading(city))
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 0))

    def flaky(city):
        if city.name == "NYC":
            raise requests.Timeout("slow")
        return reading(city, current=61)

    monkeypatch.setattr(weather, "fetch_city", flaky)
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 15))

    cities = {c["name"]: c for c in store.get_json("app:weather")["cities"]}
    assert len(cities) == len(CITIES)
    assert cities["NYC"]["current"] == 60
    assert cities["LA"]["current"] == 61


def test_weather_ignores_fetched_at_when_comparing(store, monkeypatch):
    provider = WeatherProvider()
    monkeypatch.setattr(weather, "fetch_city", lambda city: reading(city))
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 0))
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 15))
    assert len(store.writes) == 1


def test_weather_all_failed_writes_nothing(store, monkeypatch):
    def down(city):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(weather, "fetch_city", down)
    WeatherProvider().custom_refresh(store, utc(2026, 1, 5, 12, 0))
    assert store.writes == []


def test_weather_render_pages_by_minute():
    cities = [dict(reading(CITIES[0]), name=f"C{i}") for i in range(7)]
    provider = WeatherProvider()
    first = provider.render({"cities": cities}, minute=0)["frames"]
    second = provider.render({"cities": cities}, minute=1)["frames"]
    assert len(first) == 15
    assert len(second) == 6
    assert provider.render({"cities": []})["frames"][0]["text"] == "No weather data"


def test_weather_throttle():
    provider = WeatherProvider()
    assert provider.should_refresh(utc(2026, 1, 5, 12, 30))
    assert not provider.should_refresh(utc(2026, 1, 5, 12, 35))


def forecast(current=61.4, high=70.2, low=49.6, code=3):
    return {
        "current": {"temperature_2m": current, "apparent_temperature": current - 2, "weather_code": code},
        "daily": {"temperature_2m_max": [high], "temperature_2m_min": [low]},
    }


def test_fetch_city_parses_open_meteo(monkeypatch):
    calls = []
    monkeypatch.setattr(weather.requests, "get", fake_get(forecast(), calls=calls))
    city = CITIES[0]
    result = weather.fetch_city(city)

    assert result["name"] == city.name
    assert (result["high"], result["low"], result["current"]) == (70, 50, 61)
    assert result["conditionCode"] == 3
    assert calls[0][1]["params"]["latitude"] == city.lat


def test_fetch_city_rejects_malformed_forecast(monkeypatch):
    payload = forecast()
    del payload["daily"]
    monkeypatch.setattr(weather.requests, "get", fake_get(payload))
    with pytest.raises(ValueError, match="malformed forecast"):
        weather.fetch_city(CITIES[0])


def test_fetch_city_raises_on_http_error(monkeypatch):
    monkeypatch.setattr(weather.requests, "get", fake_get({}, status=502))
    with pytest.raises(requests.HTTPError):
        weather.fetch_city(CITIES[0])


# ── scryfall ───────────────────────────────────────────────────────────

def card(name="Shivan Dragon", **overrides):
    data = {
        "name": name,
        "mana_cost": "{4}{R}{R}",
        "colors": ["R"],
        "released_at": "1993-08-05",
        "set": "lea",
        "rarity": "rare",
        "type_line": "Creature — Dragon",
        "prices": {"usd": "512.30", "eur": None, "tix": "0.5"},
    }
    data.update(overrides)
    return data


def test_card_helpers():
    assert parse_card_type("Legendary Creature — Dragon") == "Creature"
    assert parse_card_type("Artifact Creature — Golem") == "Artifact Creature"
    assert parse_card_type("Basic Land — Forest") == "Land"
    assert parse_card_type("Kindred Thing") == "Card"
    assert abbreviate_type("Planeswalker") == "PLANESW."
    assert format_mana_cost("{X}{2}{R}") == "X2R"
    assert format_mana_cost("{1}{W/U}{W/U}") == "1{W/U}{W/U}"
    assert format_price("0.5", "tix") == "0.50 tix"


def test_scryfall_half_hour_throttle():
    provider = ScryfallProvider()
    assert provider.should_refresh(utc(2026, 1, 5, 12, 30))
    assert not provider.should_refresh(utc(2026, 1, 5, 12, 15))


def test_scryfall_preserves_failed_category(store, monkeypatch):
    provider = ScryfallProvider()
    monkeypatch.setattr(scryfall, "fetch_card", lambda t: card(name=f"old {t}"))
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 0))

    def flaky(card_type):
        if card_type == "any":
            raise requests.HTTPError("503")
        return card(name=f"new {card_type}")

    monkeypatch.setattr(scryfall, "fetch_card", flaky)
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 30))

    cards = store.get_json(ScryfallProvider.STORAGE_KEY)
    assert cards["any"]["card"]["name"] == "old any"
    assert cards["paper"]["card"]["name"] == "new paper"


def test_scryfall_render_frames():
    provider = ScryfallProvider()
    texts = [f["text"] for f in provider.render({"card": card()}, currency="usd")["frames"]]
    assert texts == ["Shivan Dragon", "4RR", "CREAT.", "lea|R", "$512.30", "Shivan Dragon"]

    land = card(name="Forest", mana_cost="", type_line="Basic Land — Forest", colors=[])
    texts = [f["text"] for f in provider.render({"card": land}, currency="eur")["frames"]]
    assert texts == ["Forest", "LAND", "lea|R", "Forest"]


def test_scryfall_request_adapter():
    from providers.base import InvalidRequest

    provider = ScryfallProvider()
    assert provider.parse_request({}) == {"card_type": "paper", "currency": "usd"}
    with pytest.raises(InvalidRequest):
        provider.parse_request({"type": "modern"})
    with pytest.raises(InvalidRequest):
        provider.parse_request({"currency": "gbp"})


def test_scryfall_ignores_fetched_at_when_comparing(store, monkeypatch):
    provider = ScryfallProvider()
    monkeypatch.setattr(scryfall, "fetch_card", lambda t: card(name=f"card {t}"))
    provider.custom_refresh(store, utc(2026, 1, 5, 12, 0))

    stale = store.get_json(ScryfallProvider.STORAGE_KEY)
    for entry in stale.values():
        entry["fetchedAt"] = 1
    store.put_json(ScryfallProvider.STORAGE_KEY, stale)
    writes = len(store.writes)

    provider.custom_refresh(store, utc(2026, 1, 5, 12, 30))
    assert len(store.writes) == writes
    assert store.get_json(ScryfallProvider.STORAGE_KEY)["any"]["fetchedAt"] == 1


def test_fetch_card_sends_category_query(monkeypatch):
    calls = []
    monkeypatch.setattr(scryfall.requests, "get", fake_get(card(), calls=calls))
    assert scryfall.fetch_card("old-border")["name"] == "Shivan Dragon"
    assert calls[0][1]["params"] == {"q": "date<=scg"}

    scryfall.fetch_card("any")
    assert calls[1][1]["params"] is None


def test_fetch_card_raises_on_http_error(monkeypatch):
    monkeypatch.setattr(scryfall.requests, "get", fake_get({"object": "error"}, status=404))
    with pytest.raises(requests.HTTPError):
        scryfall.fetch_card("paper")
