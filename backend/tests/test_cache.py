"""Tests for the persistent layer cache.

The cache is backed by a real diskcache directory under ``tmp_path``.
Failure tolerance is checked by swapping the underlying cache object for
one whose operations raise.
"""

from __future__ import annotations

import asyncio
import pathlib
from typing import Any

import pytest

from geolayers.db import models as db_models
from geolayers.services import cache as layer_cache


@pytest.fixture
def cache(tmp_path: pathlib.Path):
    layers = layer_cache.LayerCache(tmp_path / "cache")
    yield layers
    layers.close()


def _entry(name: str = "parks") -> dict[str, Any]:
    return {
        "name": name,
        "groupId": None,
        "data": {"type": "FeatureCollection", "features": []},
        "style": None,
    }


def test_set_and_get(cache: layer_cache.LayerCache) -> None:
    """Test entries are keyed by layer id and carry the id."""
    asyncio.run(cache.set("layer-1", _entry()))

    entry = asyncio.run(cache.get("layer-1"))

    assert entry is not None
    assert entry["id"] == "layer-1"
    assert entry["name"] == "parks"
    assert asyncio.run(cache.get("missing")) is None


def test_entries_survive_reopen(tmp_path: pathlib.Path) -> None:
    """Test the cache persists across instances."""
    first = layer_cache.LayerCache(tmp_path)
    asyncio.run(first.set("layer-1", _entry()))
    first.close()

    second = layer_cache.LayerCache(tmp_path)
    try:
        assert asyncio.run(second.get("layer-1")) is not None
    finally:
        second.close()


def test_remove_and_clear(cache: layer_cache.LayerCache) -> None:
    """Test removing one entry and clearing the rest."""
    for layer_id in ("a", "b", "c"):
        asyncio.run(cache.set(layer_id, _entry(layer_id)))

    asyncio.run(cache.remove("a"))
    assert asyncio.run(cache.get("a")) is None
    assert sorted(asyncio.run(cache.keys())) == ["b", "c"]

    assert asyncio.run(cache.clear()) == 2
    assert asyncio.run(cache.keys()) == []


def test_invalidate_without_collection_drops_entry(
    cache: layer_cache.LayerCache,
) -> None:
    """Test invalidation after a delete removes the entry."""
    asyncio.run(cache.set("layer-1", _entry()))
    asyncio.run(cache.invalidate("layer-1"))
    assert asyncio.run(cache.get("layer-1")) is None


def test_invalidate_refreshes_existing_entry(
    cache: layer_cache.LayerCache,
) -> None:
    """Test invalidation copies name, group and style but keeps data."""
    entry = _entry()
    entry["data"]["features"].append({"type": "Feature"})
    asyncio.run(cache.set("layer-1", entry))
    style = {"type": "simple", "color": "#ef4444", "weight": 2.0}
    collection = db_models.Collection(
        id="layer-1",
        name="green areas",
        metadata={"style": style},
        group_id="g1",
    )

    asyncio.run(cache.invalidate("layer-1", collection))

    refreshed = asyncio.run(cache.get("layer-1"))
    assert refreshed is not None
    assert refreshed["name"] == "green areas"
    assert refreshed["groupId"] == "g1"
    assert refreshed["style"] == style
    assert refreshed["data"]["features"] == [{"type": "Feature"}]


def test_invalidate_leaves_missing_entry_missing(
    cache: layer_cache.LayerCache,
) -> None:
    """Test invalidation never creates a partial entry."""
    collection = db_models.Collection(id="layer-1", name="parks")
    asyncio.run(cache.invalidate("layer-1", collection))
    assert asyncio.run(cache.get("layer-1")) is None


def test_sweep_evicts_orphans(cache: layer_cache.LayerCache) -> None:
    """Test entries without a collection are evicted."""
    for layer_id in ("keep", "gone"):
        asyncio.run(cache.set(layer_id, _entry(layer_id)))

    evicted = asyncio.run(cache.sweep(["keep", "not-cached"]))

    assert evicted == ["gone"]
    assert asyncio.run(cache.keys()) == ["keep"]


class BrokenCache:
    """Stand-in for diskcache.Cache whose every operation fails."""

    def get(self, key: str) -> Any:
        raise OSError("disk unavailable")

    def set(self, key: str, value: Any) -> bool:
        raise OSError("disk unavailable")

    def delete(self, key: str) -> bool:
        raise OSError("disk unavailable")

    def clear(self) -> int:
        raise OSError("disk unavailable")

    def __iter__(self):
        raise OSError("disk unavailable")


def test_failures_degrade_to_misses(
    cache: layer_cache.LayerCache,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test cache failures are logged and never raised."""
    real = cache._cache
    cache._cache = BrokenCache()  # type: ignore[assignment]
    try:
        asyncio.run(cache.set("layer-1", _entry()))
        assert asyncio.run(cache.get("layer-1")) is None
        asyncio.run(cache.remove("layer-1"))
        assert asyncio.run(cache.clear()) == 0
        assert asyncio.run(cache.keys()) == []
        assert asyncio.run(cache.sweep([])) == []
    finally:
        cache._cache = real
    assert "Cache write failed" in caplog.text


def test_malformed_entry_is_a_miss(cache: layer_cache.LayerCache) -> None:
    """Test a non-dictionary value is discarded."""
    cache._cache.set("layer-1", "not a layer")
    assert asyncio.run(cache.get("layer-1")) is None


def test_get_layer_cache_reuses_instance(tmp_path: pathlib.Path) -> None:
    """Test one cache object is shared per directory."""
    layer_cache.get_layer_cache.cache_clear()
    try:
        first = layer_cache.get_layer_cache(str(tmp_path))
        assert layer_cache.get_layer_cache(str(tmp_path)) is first
    finally:
        first.close()
        layer_cache.get_layer_cache.cache_clear()


def test_sweep_limited_to_candidates(cache: layer_cache.LayerCache) -> None:
    """Test only candidate keys are eligible for eviction."""
    for layer_id in ("old", "new"):
        asyncio.run(cache.set(layer_id, _entry(layer_id)))

    evicted = asyncio.run(cache.sweep([], candidates=["old"]))

    assert evicted == ["old"]
    assert asyncio.run(cache.keys()) == ["new"]
