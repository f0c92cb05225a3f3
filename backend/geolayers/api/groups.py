"""Layer group API endpoints."""

from __future__ import annotations

from typing import Any

import fastapi
import pydantic

from geolayers.api import layers as api_layers
from geolayers.db import database
from geolayers.db import models as db_models
from geolayers.services import layer_store

router = fastapi.APIRouter(prefix="/api/groups", tags=["groups"])


class CreateGroupRequest(pydantic.BaseModel):
    name: str

    @pydantic.field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Group name must not be empty")
        return value


@router.get("")
async def list_groups(
    store: layer_store.LayerStore = fastapi.Depends(api_layers._get_store),  # noqa: B008
) -> list[dict[str, Any]]:
    return [db_models.group_to_dict(g) for g in await store.get_groups()]


@router.post("", status_code=201)
async def create_group(
    body: CreateGroupRequest,
    store: layer_store.LayerStore = fastapi.Depends(api_layers._get_store),  # noqa: B008
) -> dict[str, Any]:
    group = await store.create_group(body.name)
    return db_models.group_to_dict(group)


@router.delete("/{group_id}")
async def delete_group(
    group_id: str,
    store: layer_store.LayerStore = fastapi.Depends(api_layers._get_store),  # noqa: B008
) -> dict[str, list[str]]:
    """Delete a group; its layers are moved to the root.

    Returns:
        Dictionary with the ids of the detached layers.
    """
    try:
        detached = await store.delete_group(group_id)
    except database.GroupNotFoundError as exc:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Group not found",
        ) from exc
    return {"detached": detached}
