"""Saved-layer persistence API endpoints.

This module exposes the persistence store over REST: saving a parsed
feature collection, listing saved layers (reconciled with the local
cache), deleting a layer, and updating a layer's style or group. A manual
cache reset endpoint drops every cached layer.

Example:
    Save a layer and load it back:
        >>> response = client.post(
        ...     "/api/layers",
        ...     json={"name": "parks", "data": geojson},
        ... )
        >>> layer_id = response.json()["id"]
        >>> client.get("/api/layers").json()[0]["name"]
        'parks'

    Change its style:
        >>> client.put(
        ...     f"/api/layers/{layer_id}/style",
        ...     json={"type": "simple", "color": "#ef4444", "weight": 3},
        ... )
"""

from __future__ import annotations

from typing import Any

import fastapi
import pydantic

from geolayers.core import config
from geolayers.db import database
from geolayers.db import models as db_models
from geolayers.services import layer_store

router = fastapi.APIRouter(prefix="/api/layers", tags=["layers"])


class SaveLayerRequest(pydantic.BaseModel):
    name: str = pydantic.Field(min_length=1)
    data: dict[str, Any]
    metadata: dict[str, Any] = pydantic.Field(default_factory=dict)
    group_id: str | None = pydantic.Field(default=None, alias="groupId")


class LayerGroupRequest(pydantic.BaseModel):
    group_id: str | None = pydantic.Field(default=None, alias="groupId")


def _get_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> layer_store.LayerStore:
    """Resolve the layer store dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        LayerStore backed by PostgreSQL and the on-disk layer cache.
    """
    return layer_store.get_layer_store(settings)


def _not_found(exc: LookupError, what: str) -> fastapi.HTTPException:
    return fastapi.HTTPException(
        status_code=404,
        detail=f"{what} not found: {exc}",
    )


@router.get("")
async def list_saved_layers(
    store: layer_store.LayerStore = fastapi.Depends(_get_store),  # noqa: B008
) -> list[dict[str, Any]]:
    """List every saved layer with its features, newest first."""
    layers = await store.get_saved_layers()
    return [db_models.layer_to_dict(layer) for layer in layers]


@router.post("", status_code=201)
async def save_layer(
    body: SaveLayerRequest,
    store: layer_store.LayerStore = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Persist a feature collection as a saved layer.

    Raises:
        HTTPException: 400 if the payload is not a FeatureCollection or
            carries an invalid style, 404 if the group does not exist.
    """
    if body.data.get("type") != "FeatureCollection":
        raise fastapi.HTTPException(
            status_code=400,
            detail="data must be a GeoJSON FeatureCollection",
        )
    try:
        collection = await store.save_layer_to_database(
            body.name, body.data, body.metadata, body.group_id
        )
    except db_models.StyleError as exc:
        raise fastapi.HTTPException(status_code=400, detail=str(exc)) from exc
    except database.GroupNotFoundError as exc:
        raise _not_found(exc, "Group") from exc
    return db_models.collection_to_dict(collection)


@router.post("/cache/clear")
async def clear_cache(
    store: layer_store.LayerStore = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, int]:
    """Drop every cached layer; the next load refetches from the store."""
    return {"cleared": await store.clear_cache()}


@router.delete("/{layer_id}", status_code=204)
async def delete_layer(
    layer_id: str,
    store: layer_store.LayerStore = fastapi.Depends(_get_store),  # noqa: B008
) -> None:
    try:
        await store.delete_layer(layer_id)
    except database.CollectionNotFoundError as exc:
        raise _not_found(exc, "Layer") from exc


@router.put("/{layer_id}/style")
async def update_layer_style(
    layer_id: str,
    style: dict[str, Any] | None = fastapi.Body(default=None),  # noqa: B008
    store: layer_store.LayerStore = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Replace a layer's style; other metadata is preserved.

    Raises:
        HTTPException: 400 for an unknown style type, 404 if the layer
            does not exist.
    """
    try:
        collection = await store.update_layer_style(layer_id, style)
    except db_models.StyleError as exc:
        raise fastapi.HTTPException(status_code=400, detail=str(exc)) from exc
    except database.CollectionNotFoundError as exc:
        raise _not_found(exc, "Layer") from exc
    return db_models.collection_to_dict(collection)


@router.put("/{layer_id}/group")
async def update_layer_group(
    layer_id: str,
    body: LayerGroupRequest,
    store: layer_store.LayerStore = fastapi.Depends(_get_store),  # noqa: B008
) -> dict[str, Any]:
    """Move a layer into a group, or to the root with ``groupId: null``."""
    try:
        collection = await store.update_layer_group(layer_id, body.group_id)
    except database.CollectionNotFoundError as exc:
        raise _not_found(exc, "Layer") from exc
    except database.GroupNotFoundError as exc:
        raise _not_found(exc, "Group") from exc
    return db_models.collection_to_dict(collection)
