"""Tests for saved-layer persistence and cache reconciliation.

The store runs against the in-memory repository and a real on-disk cache,
so these tests cover the full save/load/update/delete cycle including the
cache coherence rules.

See Also:
    - backend/geolayers/services/layer_store.py for the implementation.
"""

from __future__ import annotations

import asyncio
import pathlib
import threading
import time
from typing import Any

import pytest

from geolayers.db import database
from geolayers.db import models as db_models
from geolayers.services import cache as layer_cache
from geolayers.services import layer_store

RED = {"type": "simple", "color": "#ef4444", "weight": 3.0}


def _collection(*names: str) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [index, index]},
                "properties": {"name": name},
            }
            for index, name in enumerate(names)
        ],
    }


@pytest.fixture
def repo() -> database.InMemoryCollectionRepository:
    return database.InMemoryCollectionRepository()


@pytest.fixture
def cache(tmp_path: pathlib.Path):
    layers = layer_cache.LayerCache(tmp_path / "cache")
    yield layers
    layers.close()


@pytest.fixture
def store(repo, cache) -> layer_store.LayerStore:
    return layer_store.LayerStore(repo, cache)


def test_save_and_load_round_trip(store: layer_store.LayerStore) -> None:
    """Test a saved collection loads back as a database layer."""
    collection = asyncio.run(
        store.save_layer_to_database("parks", _collection("a", "b", "c"))
    )

    layers = asyncio.run(store.get_saved_layers())

    assert len(layers) == 1
    layer = layers[0]
    assert layer.id == collection.id
    assert layer.name == "parks"
    assert layer.type == "database"
    assert layer.visible is True
    assert [f["properties"]["name"] for f in layer.data["features"]] == [
        "a",
        "b",
        "c",
    ]


def test_save_populates_cache(store, cache) -> None:
    """Test saving writes the layer to the cache under its id."""
    collection = asyncio.run(
        store.save_layer_to_database(
            "parks", _collection("a"), {"style": RED}
        )
    )
    entry = asyncio.run(cache.get(collection.id))
    assert entry is not None
    assert entry["style"] == RED
    assert entry["type"] == "database"


def test_save_rejects_invalid_style(store, repo) -> None:
    """Test nothing is stored when the style is unknown."""
    with pytest.raises(db_models.StyleError):
        asyncio.run(
            store.save_layer_to_database(
                "parks", _collection("a"), {"style": {"type": "heatmap"}}
            )
        )
    assert repo.list_collections() == []


def test_load_from_store_when_cache_cold(store, cache) -> None:
    """Test a cache miss rebuilds the layer and repopulates the cache."""
    collection = asyncio.run(
        store.save_layer_to_database("parks", _collection("a", "b"))
    )
    asyncio.run(cache.clear())

    layers = asyncio.run(store.get_saved_layers())

    assert len(layers[0].data["features"]) == 2
    assert asyncio.run(cache.get(collection.id)) is not None


def test_load_order_newest_first(store) -> None:
    """Test layers keep the listing order."""
    names = ["first", "second", "third"]
    for name in names:
        asyncio.run(store.save_layer_to_database(name, _collection(name)))

    layers = asyncio.run(store.get_saved_layers())

    assert [layer.name for layer in layers] == list(reversed(names))


def test_load_order_independent_of_completion_order(
    store,
    repo,
    cache,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test newest-first order holds when older fetches finish first."""
    ids = {}
    for name in ("first", "second", "third"):
        collection = asyncio.run(
            store.save_layer_to_database(name, _collection(name))
        )
        ids[collection.id] = name
    asyncio.run(cache.clear())

    delays = {"third": 0.3, "second": 0.15, "first": 0.0}
    finished: list[str] = []
    lock = threading.Lock()
    real_list_features = repo.list_features

    def list_features(collection_id: str) -> list[dict[str, Any]]:
        time.sleep(delays[ids[collection_id]])
        with lock:
            finished.append(ids[collection_id])
        return real_list_features(collection_id)

    monkeypatch.setattr(repo, "list_features", list_features)

    layers = asyncio.run(store.get_saved_layers())

    assert finished == ["first", "second", "third"]
    assert [layer.name for layer in layers] == ["third", "second", "first"]


def test_load_keeps_entries_saved_during_load(
    store,
    repo,
    cache,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test a cache entry written after the listing survives the sweep."""
    asyncio.run(store.save_layer_to_database("parks", _collection("a")))
    asyncio.run(cache.set("orphan", {"name": "ghost"}))
    real_list_collections = repo.list_collections

    def list_collections() -> list[db_models.Collection]:
        listed = real_list_collections()
        # a save completing between the listing and the sweep
        cache._cache.set("late", {"id": "late", "name": "late"})
        return listed

    monkeypatch.setattr(repo, "list_collections", list_collections)

    asyncio.run(store.get_saved_layers())

    assert asyncio.run(cache.get("late")) is not None
    assert asyncio.run(cache.get("orphan")) is None


def test_cached_and_cold_loads_match(store, cache) -> None:
    """Test null properties come back the same from cache and from store."""
    geojson = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [1, 2]},
                "properties": None,
            }
        ],
    }
    collection = asyncio.run(store.save_layer_to_database("bare", geojson))

    entry = asyncio.run(cache.get(collection.id))
    warm = asyncio.run(store.get_saved_layers())
    asyncio.run(cache.clear())
    cold = asyncio.run(store.get_saved_layers())

    assert entry["data"]["features"][0]["properties"] == {}
    assert warm[0].data == cold[0].data


def test_style_update_refreshes_cached_layer(store) -> None:
    """Test a style change is visible on the next load from cache."""
    collection = asyncio.run(
        store.save_layer_to_database("parks", _collection("a"))
    )

    updated = asyncio.run(store.update_layer_style(collection.id, RED))

    assert updated.metadata["style"] == RED
    layers = asyncio.run(store.get_saved_layers())
    assert layers[0].style == db_models.SimpleStyle(color="#ef4444", weight=3.0)


def test_style_update_without_cache_entry(store, cache) -> None:
    """Test a style change applies when the layer was never cached."""
    collection = asyncio.run(
        store.save_layer_to_database("parks", _collection("a"))
    )
    asyncio.run(cache.clear())

    asyncio.run(store.update_layer_style(collection.id, RED))

    assert asyncio.run(cache.get(collection.id)) is None
    layers = asyncio.run(store.get_saved_layers())
    assert db_models.style_to_dict(layers[0].style) == RED


def test_style_update_keeps_other_metadata(store, repo) -> None:
    """Test only the style key of the metadata is replaced."""
    collection = asyncio.run(
        store.save_layer_to_database(
            "parks", _collection("a"), {"source": "upload", "style": RED}
        )
    )

    asyncio.run(store.update_layer_style(collection.id, None))

    stored = repo.get_collection(collection.id)
    assert stored.metadata == {"source": "upload", "style": None}


def test_style_update_errors(store) -> None:
    """Test unknown layers and invalid styles are rejected."""
    with pytest.raises(database.CollectionNotFoundError):
        asyncio.run(store.update_layer_style("missing", RED))
    with pytest.raises(db_models.StyleError):
        asyncio.run(store.update_layer_style("missing", {"type": "bogus"}))


def test_stale_cached_style_is_overridden(store, cache) -> None:
    """Test the store's style wins over a stale cache entry."""
    collection = asyncio.run(
        store.save_layer_to_database("parks", _collection("a"), {"style": RED})
    )
    entry = asyncio.run(cache.get(collection.id))
    entry["style"] = {"type": "simple", "color": "#000000", "weight": 1.0}
    asyncio.run(cache.set(collection.id, entry))

    layers = asyncio.run(store.get_saved_layers())

    assert db_models.style_to_dict(layers[0].style) == RED


def test_delete_layer_evicts_cache(store, cache) -> None:
    """Test deleting a layer removes it from store and cache."""
    collection = asyncio.run(
        store.save_layer_to_database("parks", _collection("a"))
    )

    asyncio.run(store.delete_layer(collection.id))

    assert asyncio.run(cache.get(collection.id)) is None
    assert asyncio.run(store.get_saved_layers()) == []
    with pytest.raises(database.CollectionNotFoundError):
        asyncio.run(store.delete_layer(collection.id))


def test_load_sweeps_orphaned_cache_entries(store, cache) -> None:
    """Test cache entries without a collection are evicted on load."""
    asyncio.run(cache.set("orphan", {"name": "ghost"}))
    asyncio.run(store.get_saved_layers())
    assert asyncio.run(cache.get("orphan")) is None


def test_group_membership(store) -> None:
    """Test moving a layer into a group and deleting the group."""
    group = asyncio.run(store.create_group("Transport"))
    collection = asyncio.run(
        store.save_layer_to_database("stops", _collection("a"))
    )

    asyncio.run(store.update_layer_group(collection.id, group.id))
    assert asyncio.run(store.get_saved_layers())[0].group_id == group.id
    assert [g.name for g in asyncio.run(store.get_groups())] == ["Transport"]

    detached = asyncio.run(store.delete_group(group.id))

    assert detached == [collection.id]
    assert asyncio.run(store.get_saved_layers())[0].group_id is None
    assert asyncio.run(store.get_groups()) == []


def test_save_into_unknown_group(store) -> None:
    with pytest.raises(database.GroupNotFoundError):
        asyncio.run(
            store.save_layer_to_database("stops", _collection("a"), None, "nope")
        )


def test_feature_read_failure_skips_layer(
    store,
    repo,
    cache,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test one unreadable collection does not fail the whole load."""
    broken = asyncio.run(store.save_layer_to_database("broken", _collection("a")))
    asyncio.run(store.save_layer_to_database("ok", _collection("b")))
    asyncio.run(cache.clear())
    real_list_features = repo.list_features

    def list_features(collection_id: str) -> list[dict[str, Any]]:
        if collection_id == broken.id:
            raise RuntimeError("connection lost")
        return real_list_features(collection_id)

    monkeypatch.setattr(repo, "list_features", list_features)

    layers = asyncio.run(store.get_saved_layers())

    assert [layer.name for layer in layers] == ["ok"]


def test_cache_failure_degrades_to_store(store, cache) -> None:
    """Test a broken cache falls back to reading the store."""

    class BrokenCache:
        def __getattr__(self, name: str) -> Any:
            raise OSError("disk unavailable")

        def __iter__(self):
            raise OSError("disk unavailable")

    asyncio.run(store.save_layer_to_database("parks", _collection("a")))
    real = cache._cache
    cache._cache = BrokenCache()  # type: ignore[assignment]
    try:
        layers = asyncio.run(store.get_saved_layers())
    finally:
        cache._cache = real

    assert [layer.name for layer in layers] == ["parks"]


def test_unreadable_stored_style_loads_unstyled(store, repo, cache) -> None:
    """Test an unknown stored style is ignored when loading."""
    collection = repo.add_collection(
        "legacy", {"style": {"type": "heatmap"}}, None, _collection("a")["features"]
    )

    layers = asyncio.run(store.get_saved_layers())

    assert layers[0].id == collection.id
    assert layers[0].style is None


def test_clear_cache(store) -> None:
    asyncio.run(store.save_layer_to_database("a", _collection("a")))
    asyncio.run(store.save_layer_to_database("b", _collection("b")))
    assert asyncio.run(store.clear_cache()) == 2
