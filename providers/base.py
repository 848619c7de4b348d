"""
providers.base – abstract base class and the Provider Factory.

Every concrete provider must:
  1. Subclass ``BaseProvider``.
  2. Set ``NAME`` (path segment under /apps/, e.g. "weather") and
     ``STORAGE_KEY`` (where its snapshot lives in the key-value store).
  3. Implement ``render(data, **request)`` returning a frames payload.
  4. Either implement ``fetch(store)`` for the default
     fetch → compare → store sequence, or override ``custom_refresh``
     to own the whole refresh.

Optional hooks: ``should_refresh`` (time-window throttle),
``parse_request`` (query-string adapter) and ``load_snapshot``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, TypeVar

from db.store import KeyValueStore

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

USER_AGENT = "clock-feeds/1.0"


# ── Errors ─────────────────────────────────────────────────────────────

class ProviderError(Exception):
    """Base class for errors surfaced to the request path."""


class InvalidRequest(ProviderError):
    """A query parameter was rejected.  ``str(exc)`` is shown on the device."""


class NoDataYet(ProviderError):
    """Nothing has been cached for this provider yet."""


# ── Base class ─────────────────────────────────────────────────────────

class BaseProvider(ABC):
    NAME: str = ""
    STORAGE_KEY: str = ""

    # ── refresh side ───────────────────────────────────────────────────

    def fetch(self, store: KeyValueStore) -> Any:
        """Fetch live data for the default refresh sequence."""
        raise NotImplementedError(f"{self.NAME} has no default fetch")

    def should_refresh(self, scheduled_time: datetime) -> bool:
        """Time-window throttle.  False skips the provider for this tick."""
        return True

    def custom_refresh(
        self, store: KeyValueStore, scheduled_time: datetime | None = None
    ) -> None:
        """Own the whole fetch/compare/store cycle.

        ``scheduled_time`` is None for manual invocations (the /test route),
        which bypass any time-based gate inside the routine.
        """
        raise NotImplementedError

    @property
    def has_custom_refresh(self) -> bool:
        return type(self).custom_refresh is not BaseProvider.custom_refresh

    # ── request side ───────────────────────────────────────────────────

    def parse_request(self, args: Mapping[str, str]) -> dict[str, Any]:
        """Turn query parameters into render keyword arguments."""
        return {}

    def load_snapshot(self, store: KeyValueStore, request: dict[str, Any]) -> Any | None:
        return store.get_json(self.STORAGE_KEY)

    @abstractmethod
    def render(self, data: Any, **request: Any) -> dict[str, Any]:
        """Return display-ready frames for a cached snapshot."""
        ...

    def handle_request(self, store: KeyValueStore, args: Mapping[str, str]) -> dict[str, Any]:
        request = self.parse_request(args)
        data = self.load_snapshot(store, request)
        if data is None:
            raise NoDataYet(self.NAME)
        return self.render(data, **request)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.NAME}>"


# ── Helpers shared by providers ────────────────────────────────────────

def fetch_all(
    items: Iterable[T],
    fn: Callable[[T], R],
    max_workers: int = 4,
) -> list[tuple[T, R | None, Exception | None]]:
    """Run *fn* over *items* in parallel, isolating failures per item.

    Returns ``(item, result, error)`` triples in input order; exactly one of
    result / error is meaningful.
    """
    items = list(items)
    if not items:
        return []
    out: list[tuple[T, R | None, Exception | None]] = []
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as pool:
        futures = [pool.submit(fn, item) for item in items]
        for item, future in zip(items, futures):
            try:
                out.append((item, future.result(), None))
            except Exception as exc:
                out.append((item, None, exc))
    return out


def is_quarter_hour(moment: datetime) -> bool:
    return moment.minute % 15 == 0


# ── Factory ────────────────────────────────────────────────────────────

_registry: dict[str, type[BaseProvider]] = {}


def register_provider(cls: type[BaseProvider]) -> type[BaseProvider]:
    """Class decorator that auto-registers a provider by its NAME."""
    if cls.NAME in _registry and _registry[cls.NAME] is not cls:
        raise ValueError(f"Duplicate provider name: {cls.NAME}")
    _registry[cls.NAME] = cls
    return cls


def build_registry() -> tuple[BaseProvider, ...]:
    """Instantiate every registered provider once, in registration order."""
    return tuple(cls() for cls in _registry.values())


def get_provider(registry: Sequence[BaseProvider], name: str) -> BaseProvider | None:
    for provider in registry:
        if provider.NAME == name:
            return provider
    return None


def enabled_providers(
    registry: Sequence[BaseProvider], allow_list: Sequence[str] | None
) -> list[BaseProvider]:
    """Filter *registry* by the configured allow-list (None = everything)."""
    if allow_list is None:
        return list(registry)
    known = {p.NAME for p in registry}
    for name in allow_list:
        if name not in known:
            log.warning("Ignoring unknown provider in enabled list: %s", name)
    wanted = set(allow_list)
    return [p for p in registry if p.NAME in wanted]
