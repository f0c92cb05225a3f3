"""Persistent, non-authoritative cache of reconstructed layers.

Rebuilding a layer from the persistence store means fetching every feature
geometry, which is slow for large collections. The cache keeps the full
serialized Layer per collection id in a ``diskcache`` directory so that it
survives process restarts.

The cache is purely a latency optimization: every operation swallows and
logs its own failures, and reads degrade to a miss so that callers fall
back to the persistence store. There is no TTL and no size-based
eviction; entries are dropped only by invalidation, the load-time sweep or
an explicit clear.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Any

import diskcache

from geolayers.db import models as db_models

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class LayerCache:
    """Async facade over a ``diskcache.Cache`` keyed by collection id.

    Values are Layer dictionaries as produced by
    :func:`geolayers.db.models.layer_to_dict`.
    """

    def __init__(self, directory: pathlib.Path | str) -> None:
        self.directory = directory
        self._cache = diskcache.Cache(str(directory))

    def close(self) -> None:
        self._cache.close()

    async def get(self, layer_id: str) -> dict[str, Any] | None:
        """Return the cached entry, or None on a miss or a cache failure."""
        try:
            entry = await asyncio.to_thread(self._cache.get, layer_id)
        except Exception:
            logger.warning("Cache read failed for %s", layer_id, exc_info=True)
            return None
        if entry is not None and not isinstance(entry, dict):
            logger.warning("Discarding malformed cache entry for %s", layer_id)
            return None
        return entry

    async def set(self, layer_id: str, data: dict[str, Any]) -> None:
        """Insert or replace the entry for ``layer_id``."""
        entry = {**data, "id": layer_id}
        try:
            await asyncio.to_thread(self._cache.set, layer_id, entry)
        except Exception:
            logger.warning("Cache write failed for %s", layer_id, exc_info=True)

    async def remove(self, layer_id: str) -> None:
        try:
            await asyncio.to_thread(self._cache.delete, layer_id)
        except Exception:
            logger.warning("Cache delete failed for %s", layer_id, exc_info=True)

    async def clear(self) -> int:
        """Drop every entry.

        Returns:
            Number of entries removed, 0 if the clear failed.
        """
        try:
            removed = await asyncio.to_thread(self._cache.clear)
        except Exception:
            logger.warning("Cache clear failed", exc_info=True)
            return 0
        logger.info("Cleared %d cached layers", removed)
        return removed

    async def keys(self) -> list[str]:
        try:
            return await asyncio.to_thread(lambda: [str(k) for k in self._cache])
        except Exception:
            logger.warning("Cache key listing failed", exc_info=True)
            return []

    async def invalidate(
        self,
        layer_id: str,
        collection: db_models.Collection | None = None,
    ) -> None:
        """Bring the entry for ``layer_id`` in line with the store.

        Every store mutation funnels through here. Without a collection the
        entry is dropped (the collection no longer exists). With one, the
        name, group and style of an existing entry are refreshed in place
        while its feature data is kept; a missing entry is left missing.
        """
        if collection is None:
            await self.remove(layer_id)
            return

        entry = await self.get(layer_id)
        if entry is None:
            return
        entry.update(
            name=collection.name,
            groupId=collection.group_id,
            style=collection.raw_style,
        )
        await self.set(layer_id, entry)

    async def sweep(
        self,
        known_ids: Iterable[str],
        candidates: Iterable[str] | None = None,
    ) -> list[str]:
        """Evict entries whose collection no longer exists.

        Args:
            known_ids: Ids of every existing collection.
            candidates: Keys eligible for eviction; all current keys when
                None. Entries written after the candidates were taken are
                never evicted.

        Returns:
            The evicted ids.
        """
        known = set(known_ids)
        if candidates is None:
            candidates = await self.keys()
        stale = [key for key in candidates if key not in known]
        for key in stale:
            await self.remove(key)
        if stale:
            logger.info("Evicted %d orphaned cache entries", len(stale))
        return stale


@functools.lru_cache
def get_layer_cache(directory: str) -> LayerCache:
    """Return the process-wide cache for a directory."""
    return LayerCache(directory)
