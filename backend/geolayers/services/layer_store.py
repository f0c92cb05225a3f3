"""Saved-layer persistence with cache reconciliation.

LayerStore is the async face of the persistence store. It writes feature
collections through a CollectionRepositoryProtocol and keeps the
LayerCache coherent with it: the repository is always the source of truth,
the cache only saves refetching feature geometries.

Loading (:meth:`LayerStore.get_saved_layers`) lists collections newest
first and reconciles each one concurrently:

- cache hit: the cached layer is used, but its group and style are always
  refreshed from the collection row;
- cache miss: features are read from the repository, the FeatureCollection
  is rebuilt and written back to the cache.

Every mutation ends with a single call to ``LayerCache.invalidate``.

Example:
    >>> store = LayerStore(repo, cache)
    >>> collection = await store.save_layer_to_database("parks", geojson)
    >>> layers = await store.get_saved_layers()
    >>> layers[0].name
    'parks'
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from geolayers.db import database
from geolayers.db import models as db_models
from geolayers.services import cache as layer_cache

if TYPE_CHECKING:
    from geolayers.core import config

logger = logging.getLogger(__name__)


def _stored_style(collection: db_models.Collection) -> db_models.Style | None:
    """Parse a collection's stored style, treating bad data as unstyled."""
    try:
        return db_models.parse_style(collection.raw_style)
    except db_models.StyleError:
        logger.warning(
            "Ignoring invalid stored style on collection %s", collection.id
        )
        return None


def layer_from_collection(
    collection: db_models.Collection,
    features: list[dict[str, Any]],
) -> db_models.Layer:
    """Project a collection and its feature rows into a database Layer."""
    return db_models.Layer(
        id=collection.id,
        name=collection.name,
        group_id=collection.group_id,
        data={
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": row.get("geometry"),
                    "properties": row.get("properties") or {},
                }
                for row in features
            ],
        },
        type="database",
        style=_stored_style(collection),
    )


class LayerStore:
    """Async persistence store for saved layers and layer groups.

    Attributes:
        repo: Relational repository holding collections, features, groups.
        cache: Persistent layer cache kept coherent with ``repo``.
    """

    def __init__(
        self,
        repo: database.CollectionRepositoryProtocol,
        cache: layer_cache.LayerCache,
    ) -> None:
        self.repo = repo
        self.cache = cache

    async def save_layer_to_database(
        self,
        name: str,
        feature_collection: db_models.FeatureCollection,
        metadata: dict[str, Any] | None = None,
        group_id: str | None = None,
    ) -> db_models.Collection:
        """Persist a feature collection as one collection plus its features.

        Args:
            name: Layer name.
            feature_collection: GeoJSON FeatureCollection to store.
            metadata: Free-form metadata; ``metadata["style"]`` must be a
                valid serialized Style if present.
            group_id: Optional owning group.

        Returns:
            The created Collection.

        Raises:
            StyleError: If the metadata carries an invalid style.
            GroupNotFoundError: If ``group_id`` does not exist.
        """
        metadata = dict(metadata or {})
        style = db_models.parse_style(metadata.get("style"))
        if style is not None:
            metadata["style"] = db_models.style_to_dict(style)
        features = list(feature_collection.get("features") or [])

        collection = await asyncio.to_thread(
            self.repo.add_collection, name, metadata, group_id, features
        )

        # same shape a cold load rebuilds from the store
        layer = layer_from_collection(collection, features)
        await self.cache.set(collection.id, db_models.layer_to_dict(layer))
        return collection

    async def get_saved_layers(self) -> list[db_models.Layer]:
        """Load every saved layer, newest first.

        Collections are reconciled concurrently; the result keeps the
        listing order regardless of completion order. Collections whose
        features cannot be read are logged and left out. Cache entries for
        collections that no longer exist are evicted; entries written while
        the load runs (a concurrent save) are left alone.
        """
        cached_ids = await self.cache.keys()
        collections = await asyncio.to_thread(self.repo.list_collections)
        results = await asyncio.gather(
            *(self._load_layer(collection) for collection in collections)
        )
        await self.cache.sweep(
            (collection.id for collection in collections), cached_ids
        )
        return [layer for layer in results if layer is not None]

    async def _load_layer(
        self, collection: db_models.Collection
    ) -> db_models.Layer | None:
        cached = await self.cache.get(collection.id)
        if cached is not None:
            try:
                layer = db_models.layer_from_dict(cached)
            except (KeyError, TypeError, ValueError):
                logger.warning(
                    "Unreadable cache entry for %s, refetching",
                    collection.id,
                    exc_info=True,
                )
            else:
                layer.group_id = collection.group_id
                layer.style = _stored_style(collection)
                layer.visible = True
                return layer

        try:
            features = await asyncio.to_thread(
                self.repo.list_features, collection.id
            )
        except Exception:
            logger.exception(
                "Error fetching features for collection %s", collection.id
            )
            return None

        layer = layer_from_collection(collection, features)
        await self.cache.set(collection.id, db_models.layer_to_dict(layer))
        return layer

    async def delete_layer(self, layer_id: str) -> None:
        """Delete a saved layer; its features go with it.

        Raises:
            CollectionNotFoundError: If no such collection exists.
        """
        deleted = await asyncio.to_thread(self.repo.delete_collection, layer_id)
        if not deleted:
            raise database.CollectionNotFoundError(layer_id)
        await self.cache.invalidate(layer_id)
        logger.info("Deleted layer %s", layer_id)

    async def update_layer_style(
        self,
        layer_id: str,
        style: db_models.Style | dict[str, Any] | None,
    ) -> db_models.Collection:
        """Store a new style in the collection's metadata.

        The metadata is read, the ``style`` key replaced and the result
        written back; other metadata keys are kept. Concurrent updates are
        last-write-wins.

        Raises:
            StyleError: If ``style`` is not a valid style.
            CollectionNotFoundError: If no such collection exists.
        """
        if isinstance(style, dict):
            style = db_models.parse_style(style)
        serialized = db_models.style_to_dict(style)

        current = await asyncio.to_thread(self.repo.get_collection, layer_id)
        if current is None:
            raise database.CollectionNotFoundError(layer_id)

        collection = await asyncio.to_thread(
            self.repo.update_metadata,
            layer_id,
            {**current.metadata, "style": serialized},
        )
        await self.cache.invalidate(layer_id, collection)
        return collection

    async def update_layer_group(
        self, layer_id: str, group_id: str | None
    ) -> db_models.Collection:
        """Move a saved layer into a group, or out of any group.

        Raises:
            CollectionNotFoundError: If no such collection exists.
            GroupNotFoundError: If ``group_id`` does not exist.
        """
        collection = await asyncio.to_thread(
            self.repo.update_group, layer_id, group_id
        )
        await self.cache.invalidate(layer_id, collection)
        return collection

    async def get_groups(self) -> list[db_models.Group]:
        return await asyncio.to_thread(self.repo.list_groups)

    async def create_group(self, name: str) -> db_models.Group:
        group = await asyncio.to_thread(self.repo.add_group, name)
        logger.info("Created group %s (%s)", group.id, group.name)
        return group

    async def delete_group(self, group_id: str) -> list[str]:
        """Delete a group; its layers move to the root.

        Returns:
            Ids of the layers that were detached from the group.

        Raises:
            GroupNotFoundError: If no such group exists.
        """
        detached = await asyncio.to_thread(self.repo.delete_group, group_id)
        for layer_id in detached:
            collection = await asyncio.to_thread(
                self.repo.get_collection, layer_id
            )
            await self.cache.invalidate(layer_id, collection)
        return detached

    async def clear_cache(self) -> int:
        return await self.cache.clear()


def get_layer_store(settings: config.Settings) -> LayerStore:
    """Factory building the production store from settings."""
    return LayerStore(
        database.get_collection_repository(settings),
        layer_cache.get_layer_cache(str(settings.cache_dir)),
    )
