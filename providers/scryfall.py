"""
providers.scryfall – a random Magic: The Gathering card per category.

Source: GET https://api.scryfall.com/cards/random?q=...

Four categories are refreshed together on the half hour and stored as one
aggregate under ``app:scryfall:allcards``.  A category whose fetch fails
keeps its previous card.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import requests

from config import HTTP_TIMEOUT
from db.store import KeyValueStore
from display.frames import create_frame, create_response, message_response
from providers.base import BaseProvider, InvalidRequest, USER_AGENT, fetch_all, register_provider

log = logging.getLogger(__name__)

RANDOM_URL = "https://api.scryfall.com/cards/random"

CARD_TYPE_QUERIES: dict[str, str | None] = {
    "old-school": "-is:digital -is:funny date<=eld",
    "old-border": "date<=scg",
    "paper": "-is:digital -is:funny",
    "any": None,
}
VALID_CARD_TYPES = tuple(CARD_TYPE_QUERIES)
CURRENCIES = ("usd", "eur", "tix", "none")

# TODO: swap the placeholder i30983 ids once per-colour / per-type icons are uploaded.
ICON_CARD = "i30983"
MANA_ICONS: dict[str, str] = {
    key: ICON_CARD
    for key in (
        "W", "U", "B", "R", "G",
        "WU", "WB", "WR", "WG", "UB", "UR", "UG", "BR", "BG", "RG",
        "colorless", "multicolor",
    )
}
TYPE_ICONS: dict[str, str] = {
    key: ICON_CARD
    for key in (
        "Creature", "Instant", "Sorcery", "Artifact", "Enchantment",
        "Planeswalker", "Land", "Battle", "default",
    )
}
CURRENCY_ICONS: dict[str, str] = {"usd": ICON_CARD, "eur": ICON_CARD, "tix": ICON_CARD}

_COMPOUND_TYPES = (
    "Artifact Creature",
    "Enchantment Creature",
    "Artifact Land",
    "Enchantment Land",
)
_TYPE_KEYWORDS = (
    "Creature", "Instant", "Sorcery", "Artifact",
    "Enchantment", "Planeswalker", "Land", "Battle",
)
_TYPE_ABBREVIATIONS = {
    "Artifact Creature": "ART.CRE.",
    "Enchantment Creature": "ENC.CRE.",
    "Creature": "CREAT.",
    "Enchantment": "ENCHANT.",
    "Planeswalker": "PLANESW.",
    "Artifact": "ARTIFACT",
    "Instant": "INSTANT",
    "Sorcery": "SORCERY",
    "Land": "LAND",
    "Battle": "BATTLE",
}
_RARITY = {"common": "C", "uncommon": "U", "rare": "R", "mythic": "M", "bonus": "B"}
_CURRENCY_SYMBOLS = {"usd": "$", "eur": "€", "tix": ""}

_MANA_SYMBOL = re.compile(r"\{[^}]+\}")
_WUBRG = "WUBRG"


# ── Formatting helpers ─────────────────────────────────────────────────

def color_icon(colors: list[str]) -> str:
    if not colors:
        return MANA_ICONS["colorless"]
    if len(colors) == 1:
        return MANA_ICONS.get(colors[0], MANA_ICONS["colorless"])
    if len(colors) == 2:
        pair = "".join(sorted(colors, key=lambda c: _WUBRG.find(c)))
        return MANA_ICONS.get(pair, MANA_ICONS["multicolor"])
    return MANA_ICONS["multicolor"]


def parse_card_type(type_line: str) -> str:
    """"Legendary Creature — Dragon" -> "Creature"."""
    before_dash = type_line.split("—")[0].strip()
    for compound in _COMPOUND_TYPES:
        if compound in before_dash:
            return compound
    for word in before_dash.split(" "):
        if word in _TYPE_KEYWORDS:
            return word
    return "Card"


def abbreviate_type(card_type: str) -> str:
    return _TYPE_ABBREVIATIONS.get(card_type, card_type)


def format_mana_cost(mana_cost: str | None) -> str:
    """"{3}{R}{R}" -> "3RR"; hybrid/phyrexian symbols keep their braces."""
    if not mana_cost:
        return ""
    parts = []
    for symbol in _MANA_SYMBOL.findall(mana_cost):
        content = symbol[1:-1]
        parts.append(symbol if "/" in content else content)
    return "".join(parts)


def format_rarity(rarity: str) -> str:
    return _RARITY.get(rarity, "C")


def format_price(price: str | None, currency: str) -> str:
    if not price:
        return ""
    amount = float(price)
    symbol = _CURRENCY_SYMBOLS.get(currency, "$")
    suffix = " tix" if currency == "tix" else ""
    return f"{symbol}{amount:.2f}{suffix}"


# ── Scryfall ───────────────────────────────────────────────────────────

def fetch_card(card_type: str) -> dict[str, Any]:
    query = CARD_TYPE_QUERIES[card_type]
    params = {"q": query} if query else None
    resp = requests.get(
        RANDOM_URL,
        params=params,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        timeout=HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()


def _comparable(cards: Mapping[str, Any]) -> dict[str, Any]:
    """Strip the fetch timestamps so only card content is compared."""
    return {
        card_type: entry.get("card")
        for card_type, entry in cards.items()
        if isinstance(entry, dict)
    }


# ── Provider ───────────────────────────────────────────────────────────

@register_provider
class ScryfallProvider(BaseProvider):
    NAME = "scryfall"
    STORAGE_KEY = "app:scryfall:allcards"

    def should_refresh(self, scheduled_time: datetime) -> bool:
        return scheduled_time.minute in (0, 30)

    def custom_refresh(
        self, store: KeyValueStore, scheduled_time: datetime | None = None
    ) -> None:
        existing = store.get_json(self.STORAGE_KEY)
        if not isinstance(existing, dict):
            existing = {}

        cards: dict[str, Any] = {}
        for card_type, card, error in fetch_all(VALID_CARD_TYPES, fetch_card):
            if error is None:
                cards[card_type] = {"card": card, "fetchedAt": int(time.time() * 1000)}
                log.info("Fetched scryfall card for %s", card_type)
                continue
            log.error("Failed to fetch scryfall %s: %s", card_type, error)
            if card_type in existing:
                cards[card_type] = existing[card_type]
                log.info("Preserved existing data for %s", card_type)

        if not cards:
            log.error("All scryfall fetches failed, keeping existing data")
            return
        if existing and _comparable(existing) == _comparable(cards):
            log.info("Skipped scryfall write (no changes)")
            return

        store.put_json(self.STORAGE_KEY, cards)
        log.info("Updated scryfall aggregated data with %d card types", len(cards))

    # ── request ────────────────────────────────────────────────────────

    def parse_request(self, args: Mapping[str, str]) -> dict[str, Any]:
        card_type = args.get("type") or "paper"
        if card_type not in VALID_CARD_TYPES:
            raise InvalidRequest("Invalid card type")
        currency = (args.get("currency") or "usd").lower()
        if currency not in CURRENCIES:
            raise InvalidRequest("Invalid currency")
        return {"card_type": card_type, "currency": currency}

    def load_snapshot(self, store: KeyValueStore, request: dict[str, Any]) -> Any | None:
        cards = store.get_json(self.STORAGE_KEY)
        if not isinstance(cards, dict):
            return None
        return cards.get(request["card_type"])

    def render(
        self,
        data: Any,
        card_type: str = "paper",
        currency: str = "usd",
        **_: Any,
    ) -> dict[str, Any]:
        card = data.get("card") if isinstance(data, dict) else None
        if not isinstance(card, dict) or not card.get("name"):
            return message_response("No card data")

        name = card["name"]
        icon = color_icon(card.get("colors") or [])
        primary_type = parse_card_type(card.get("type_line") or "")

        frames = [create_frame(name, icon)]

        if "Land" not in primary_type:
            mana_cost = format_mana_cost(card.get("mana_cost"))
            if mana_cost:
                frames.append(create_frame(mana_cost, icon))

        frames.append(create_frame(
            abbreviate_type(primary_type),
            TYPE_ICONS.get(primary_type, TYPE_ICONS["default"]),
        ))

        rarity = format_rarity(card.get("rarity") or "")
        set_code = card.get("set") or ""
        frames.append(create_frame(f"{set_code}|{rarity}", ICON_CARD))

        if currency != "none":
            price = (card.get("prices") or {}).get(currency)
            if price is not None:
                frames.append(create_frame(
                    format_price(price, currency),
                    CURRENCY_ICONS.get(currency, CURRENCY_ICONS["usd"]),
                ))

        frames.append(create_frame(name, icon))
        return create_response(frames)
