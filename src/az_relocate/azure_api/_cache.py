"""In-memory TTL cache for ARM catalog responses."""

from __future__ import annotations

import time

# The SKU catalog changes rarely; a run reads it once during validation and
# the web / MCP surfaces may ask again for the same region shortly after.
_CATALOG_CACHE_TTL = 600  # 10 minutes
_catalog_cache: dict[str, tuple[float, object]] = {}


def _cached(key: str, ttl: int = _CATALOG_CACHE_TTL) -> object | None:
    """Return cached value if still valid, else ``None``."""
    entry = _catalog_cache.get(key)
    if entry is not None:
        ts, data = entry
        if time.monotonic() - ts < ttl:
            return data
    return None


def _cache_set(key: str, data: object) -> None:
    """Store a value in the catalog cache."""
    _catalog_cache[key] = (time.monotonic(), data)
