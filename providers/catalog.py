"""
providers.catalog – imports every provider module so its @register_provider
decorator runs, in the order the registry should list them.
"""

# ── Import providers so their @register_provider decorators run ────────
import providers.counter   # noqa: F401
import providers.osrs      # noqa: F401
import providers.scryfall  # noqa: F401
import providers.stoxx     # noqa: F401
import providers.ticker    # noqa: F401
import providers.weather   # noqa: F401

from providers.base import build_registry, enabled_providers, get_provider  # noqa: F401
