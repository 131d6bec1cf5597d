"""Free-gift vertical configuration.

Frozen dataclass with usable defaults; ``FreeGiftConfig.from_env()`` applies
overrides from FREE_GIFTS_* environment variables.
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class FreeGiftConfig:
    """Cache, retry and display settings for the free-gift engine.

    Usage::

        config = FreeGiftConfig.from_env()
        cache = RuleCache(fetch, ttl_seconds=config.cache_ttl_seconds)
    """

    currency_symbol: str = "₹"

    # Snapshots older than this are reported stale. Bounds how long a change
    # made from another process can stay invisible.
    cache_ttl_seconds: float = 30.0

    # Per-tenant caches kept in memory; least recently used beyond this are dropped.
    max_cached_tenants: int = 1024

    refresh_attempts: int = 3
    refresh_backoff_base: float = 0.2
    refresh_backoff_max: float = 2.0

    # Reject Active rules whose gift product the catalog does not know.
    require_known_product: bool = True

    @classmethod
    def from_env(cls, prefix: str = "FREE_GIFTS_") -> "FreeGiftConfig":
        """Create config from environment variables.

        Example: FREE_GIFTS_CACHE_TTL_SECONDS=10
        """
        overrides: dict = {}

        currency = os.getenv(f"{prefix}CURRENCY_SYMBOL")
        if currency:
            overrides["currency_symbol"] = currency

        for name in ("cache_ttl_seconds", "refresh_backoff_base", "refresh_backoff_max"):
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw:
                overrides[name] = float(raw)

        max_tenants = os.getenv(f"{prefix}MAX_CACHED_TENANTS")
        if max_tenants:
            overrides["max_cached_tenants"] = int(max_tenants)

        attempts = os.getenv(f"{prefix}REFRESH_ATTEMPTS")
        if attempts:
            overrides["refresh_attempts"] = int(attempts)

        require = os.getenv(f"{prefix}REQUIRE_KNOWN_PRODUCT")
        if require:
            overrides["require_known_product"] = require.lower() == "true"

        return cls(**overrides)


# Default configuration instance
config = FreeGiftConfig.from_env()
