"""
providers.osrs – Old School RuneScape XP gains via the WiseOldMan API.

Source: GET https://api.wiseoldman.net/v2/players/{username}/gained?period=day

Storage:
  app:osrs:characters – JSON array of tracked usernames (append-only)
  app:osrs:alldata    – {username: {period: CachedGains}} aggregate

Refresh rotates through the character registry: every username hashes into
one of ``ROTATION_GROUPS`` buckets and a tick only refreshes the bucket that
owns the current 5-minute slot, so each character is refreshed once per
ROTATION_GROUPS × 5 minutes.  Requests are made one at a time with a delay
to stay under WiseOldMan's rate limit.
"""

from __future__ import annotations

import copy
import logging
import time
import zlib
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import requests

from config import HTTP_TIMEOUT
from db.store import KeyValueStore
from display.frames import FRAME_LIMIT, ICON_INFO, create_frame, create_response, message_response
from display.numbers import format_gain
from providers.base import BaseProvider, InvalidRequest, USER_AGENT, register_provider

log = logging.getLogger(__name__)

WOM_URL = "https://api.wiseoldman.net/v2/players/{username}/gained"

REGISTRY_KEY = "app:osrs:characters"
ALLDATA_KEY = "app:osrs:alldata"

PERIODS = ("day", "week", "month")

ROTATION_GROUPS = 6
SLOT_SECONDS = 5 * 60
REQUEST_DELAY = 0.7

MODES = ("all", "top")
DEFAULT_TOP = 5
MAX_TOP = FRAME_LIMIT - 1

ACCOUNT_LABELS: dict[str, str] = {
    "regular": "MAIN",
    "ironman": "IRON",
    "hardcore": "HCIM",
    "ultimate": "UIM",
    "group": "GIM",
}

# Display order, overall excluded.  The first PAGE_ONE_SKILLS go on the
# odd-minute page, the rest on the even-minute page.
SKILL_ORDER = (
    "attack", "strength", "defence", "ranged", "prayer", "magic",
    "runecrafting", "construction", "hitpoints", "agility", "herblore",
    "thieving", "crafting", "fletching", "slayer", "hunter",
    "mining", "smithing", "fishing", "cooking", "firemaking",
    "woodcutting", "farming", "sailing",
)
PAGE_ONE_SKILLS = 13

SKILL_ICONS: dict[str, str] = {
    "overall": "i72683",
    "attack": "i72681",
    "strength": "i72682",
    "defence": "i72684",
    "ranged": "i72685",
    "prayer": "i72686",
    "magic": "i72687",
    "runecrafting": "i72688",
    "construction": "i72689",
    "hitpoints": "i72690",
    "agility": "i72691",
    "herblore": "i72702",
    "thieving": "i72704",
    "crafting": "i72713",
    "fletching": "i72714",
    "slayer": "i72716",
    "hunter": "i72680",
    "mining": "i72719",
    "smithing": "i72720",
    "fishing": "i72721",
    "cooking": "i72722",
    "firemaking": "i72723",
    "woodcutting": "i72724",
    "farming": "i72725",
    "sailing": "i72726",
}
ICON_OVERALL = SKILL_ICONS["overall"]
ICON_FALLBACK = "i186"

CLUE_METRIC = "clue_scrolls_all"


# ── Rotation ───────────────────────────────────────────────────────────

def normalize_username(username: str) -> str:
    return username.strip().lower()


def rotation_bucket(username: str, groups: int = ROTATION_GROUPS) -> int:
    """Stable bucket for *username*; crc32 so it survives process restarts."""
    return zlib.crc32(normalize_username(username).encode("utf-8")) % groups


def current_bucket(moment: datetime, groups: int = ROTATION_GROUPS) -> int:
    slot = int(moment.timestamp()) // SLOT_SECONDS
    return slot % groups


# ── Character registry ─────────────────────────────────────────────────

def get_character_registry(store: KeyValueStore) -> list[str]:
    registry = store.get_json(REGISTRY_KEY)
    if not isinstance(registry, list):
        return []
    return [name for name in registry if isinstance(name, str)]


def add_character_to_registry(store: KeyValueStore, username: str) -> bool:
    """Append *username* unless already present (case-insensitive).

    Returns True when the registry was written.
    """
    registry = get_character_registry(store)
    wanted = normalize_username(username)
    if any(normalize_username(name) == wanted for name in registry):
        return False
    registry.append(username.strip())
    store.put_json(REGISTRY_KEY, registry)
    log.info("Added %s to character registry", username)
    return True


# ── WiseOldMan ─────────────────────────────────────────────────────────

def fetch_gains(username: str, period: str) -> dict[str, Any]:
    url = WOM_URL.format(username=quote(username, safe=""))
    log.debug("Fetching WiseOldMan gains %s (%s)", username, period)
    resp = requests.get(
        url,
        params={"period": period},
        headers={"User-Agent": USER_AGENT},
        timeout=HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    payload = resp.json()
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected WiseOldMan payload for {username}/{period}")
    return payload


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Stat extraction ────────────────────────────────────────────────────

def _gained(entry: Any, field: str) -> float:
    """entry[field]["gained"] as a number, 0 when absent."""
    if not isinstance(entry, dict):
        return 0
    block = entry.get(field)
    if not isinstance(block, dict):
        return 0
    value = block.get("gained")
    return value if isinstance(value, (int, float)) else 0


def _extract_body(data: Any) -> dict[str, Any] | None:
    """Return the gains ``data`` block from a cached entry or raw payload."""
    if not isinstance(data, dict):
        return None
    gains = data.get("gains") if "gains" in data else data
    if not isinstance(gains, dict):
        return None
    body = gains.get("data")
    if not isinstance(body, dict) or not isinstance(body.get("skills"), dict):
        return None
    return body


def _has_overall(skills: dict[str, Any]) -> bool:
    overall = skills.get("overall")
    if not isinstance(overall, dict):
        return False
    return all(
        isinstance(overall.get(field), dict) and "gained" in overall[field]
        for field in ("experience", "level", "rank")
    )


def skill_xp_gains(skills: Mapping[str, Any]) -> dict[str, float]:
    """{skill: xp gained} for overall plus every displayed skill."""
    gains = {"overall": _gained(skills.get("overall"), "experience")}
    for name in SKILL_ORDER:
        gains[name] = _gained(skills.get(name), "experience")
    return gains


def boss_kills(body: Mapping[str, Any]) -> float:
    bosses = body.get("bosses")
    if not isinstance(bosses, dict):
        return 0
    kills = (_gained(entry, "kills") for entry in bosses.values())
    return sum(k for k in kills if k > 0)


def clue_scrolls(body: Mapping[str, Any]) -> float:
    activities = body.get("activities")
    if not isinstance(activities, dict):
        return 0
    return _gained(activities.get(CLUE_METRIC), "score")


def select_top_gains(gains: Mapping[str, float], n: int) -> list[tuple[str, float]]:
    """Overall first, then the *n* biggest non-overall gains.

    Ties keep the mapping's order (sorted() is stable).
    """
    ranked = sorted(
        ((name, xp) for name, xp in gains.items() if name != "overall"),
        key=lambda item: item[1],
        reverse=True,
    )
    head = [("overall", gains["overall"])] if "overall" in gains else []
    return head + ranked[:n]


# ── Provider ───────────────────────────────────────────────────────────

@register_provider
class OSRSProvider(BaseProvider):
    NAME = "osrs"
    STORAGE_KEY = ALLDATA_KEY

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    # ── refresh ────────────────────────────────────────────────────────

    def custom_refresh(
        self, store: KeyValueStore, scheduled_time: datetime | None = None
    ) -> None:
        registry = get_character_registry(store)
        if not registry:
            log.info("No characters registered yet")
            return

        if scheduled_time is None:
            selected = registry
        else:
            bucket = current_bucket(scheduled_time)
            selected = [name for name in registry if rotation_bucket(name) == bucket]
            if not selected:
                log.info("No characters in rotation bucket %d", bucket)
                return

        log.info("Refreshing %d of %d character(s): %s",
                 len(selected), len(registry), ", ".join(selected))

        existing = store.get_json(ALLDATA_KEY)
        if not isinstance(existing, dict):
            existing = {}
        aggregate: dict[str, Any] = copy.deepcopy(existing)

        changed = False
        first_request = True
        for username in selected:
            previous_user = existing.get(username)
            if not isinstance(previous_user, dict):
                previous_user = {}
            slots = aggregate.get(username)
            if not isinstance(slots, dict):
                slots = aggregate[username] = {}

            for period in PERIODS:
                if not first_request:
                    self._sleep(REQUEST_DELAY)
                first_request = False

                previous = previous_user.get(period)
                try:
                    gains = fetch_gains(username, period)
                except (requests.RequestException, ValueError) as exc:
                    # slots still holds the deep-copied previous entry, if any
                    log.error("Failed to fetch %s (%s): %s", username, period, exc)
                    continue

                slot_changed = not isinstance(previous, dict) or previous.get("gains") != gains
                if slot_changed:
                    last_updated = _now_iso()
                    changed = True
                else:
                    last_updated = previous.get("lastUpdated") or _now_iso()

                slots[period] = {
                    "username": username,
                    "period": period,
                    "lastUpdated": last_updated,
                    "gains": gains,
                }
                log.info("Fetched %s (%s) %s", username, period,
                         "(changed)" if slot_changed else "(unchanged)")

        if changed:
            store.put_json(ALLDATA_KEY, aggregate)
            log.info("Wrote aggregated OSRS data (gains changed)")
        else:
            log.info("Skipped OSRS write (no gains changed)")

    # ── request ────────────────────────────────────────────────────────

    def parse_request(self, args: Mapping[str, str]) -> dict[str, Any]:
        period = args.get("period") or "day"
        if period not in PERIODS:
            raise InvalidRequest("Invalid period")

        mode = args.get("mode") or "all"
        if mode not in MODES:
            raise InvalidRequest("Invalid mode")

        try:
            top = int(args.get("top") or DEFAULT_TOP)
        except ValueError:
            raise InvalidRequest("Invalid top") from None
        if not 1 <= top <= MAX_TOP:
            raise InvalidRequest("Invalid top")

        account = args.get("account") or "regular"
        if account not in ACCOUNT_LABELS:
            raise InvalidRequest("Invalid account")

        return {
            "username": (args.get("username") or "").strip(),
            "period": period,
            "mode": mode,
            "top": top,
            "account": account,
        }

    def load_snapshot(self, store: KeyValueStore, request: dict[str, Any]) -> Any | None:
        aggregate = store.get_json(ALLDATA_KEY)
        if not isinstance(aggregate, dict):
            return None
        wanted = normalize_username(request["username"])
        for name, periods in aggregate.items():
            if normalize_username(name) == wanted and isinstance(periods, dict):
                return periods.get(request["period"])
        return None

    def handle_request(self, store: KeyValueStore, args: Mapping[str, str]) -> dict[str, Any]:
        # The device validates the app by calling it without parameters.
        if not (args.get("username") or "").strip():
            return message_response("Configure username", ICON_OVERALL)

        request = self.parse_request(args)
        add_character_to_registry(store, request["username"])

        data = self.load_snapshot(store, request)
        if data is None:
            return message_response("Loading data...")
        return self.render(data, **request)

    # ── render ─────────────────────────────────────────────────────────

    def render(
        self,
        data: Any,
        period: str = "day",
        mode: str = "all",
        top: int = DEFAULT_TOP,
        account: str = "regular",
        minute: int | None = None,
        **_: Any,
    ) -> dict[str, Any]:
        body = _extract_body(data)
        if body is None:
            return message_response("No data")
        skills = body["skills"]
        if not _has_overall(skills):
            return message_response("Invalid data")

        if mode == "top":
            return render_top(skills, top)
        if minute is None:
            minute = datetime.now().minute
        return render_all_stats(body, period, account, minute)


def render_top(skills: Mapping[str, Any], n: int) -> dict[str, Any]:
    frames = [
        create_frame(format_gain(xp), SKILL_ICONS.get(name, ICON_FALLBACK))
        for name, xp in select_top_gains(skill_xp_gains(skills), n)
    ]
    return create_response(frames)


def render_all_stats(
    body: Mapping[str, Any], period: str, account: str, minute: int
) -> dict[str, Any]:
    """One of two 15-frame pages, chosen by minute parity."""
    skills = body["skills"]
    xp = skill_xp_gains(skills)
    overall = skills["overall"]

    if minute % 2 == 1:
        frames = [
            create_frame(f"Lvl {format_gain(_gained(overall, 'level'))}", ICON_OVERALL),
            create_frame(f"XP {format_gain(xp['overall'])}", ICON_OVERALL),
        ]
        names = SKILL_ORDER[:PAGE_ONE_SKILLS]
        frames += [create_frame(format_gain(xp[name]), SKILL_ICONS[name]) for name in names]
        return create_response(frames)

    frames = [create_frame(f"{ACCOUNT_LABELS.get(account, 'MAIN')} {period.upper()}", ICON_INFO)]
    names = SKILL_ORDER[PAGE_ONE_SKILLS:]
    frames += [create_frame(format_gain(xp[name]), SKILL_ICONS[name]) for name in names]
    # rank numbers go down as a player improves, so flip the sign
    rank_change = -_gained(overall, "rank")
    frames += [
        create_frame(f"KC {format_gain(boss_kills(body))}", ICON_OVERALL),
        create_frame(f"Clues {format_gain(clue_scrolls(body))}", ICON_OVERALL),
        create_frame(f"Rank {format_gain(rank_change)}", ICON_OVERALL),
    ]
    return create_response(frames)
