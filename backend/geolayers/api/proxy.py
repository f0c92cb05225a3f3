"""Query-proxy endpoints for ad-hoc external PostgreSQL/PostGIS databases.

The client sends connection parameters with every request; nothing about the
external database is stored. Each endpoint opens one connection, runs one
operation and closes the connection before responding. Failures are
returned as ``{"error": message}``.

Example:
    List the schemas of an external database:
        >>> response = client.post(
        ...     "/api/list-schemas",
        ...     json={"host": "db", "port": 5432, "user": "gis",
        ...           "password": "secret", "database": "gis"},
        ... )
        >>> response.json()
        ['public', 'transport']

    Fetch a table as points:
        >>> response = client.post(
        ...     "/api/fetch-layer",
        ...     json={..., "schema": "transport", "table": "stops",
        ...           "latCol": "lat", "lonCol": "lon"},
        ... )
        >>> response.json()["type"]
        'FeatureCollection'
"""

from __future__ import annotations

import logging
from typing import Any

import fastapi
import pydantic
from fastapi import responses

from geolayers.core import config
from geolayers.db import models as db_models
from geolayers.services import external_layer, identifiers, introspection

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(prefix="/api", tags=["proxy"])


class ConnectionRequest(pydantic.BaseModel):
    host: str
    port: int = 5432
    user: str
    password: str = ""
    database: str

    def to_config(self) -> db_models.ConnectionConfig:
        return db_models.ConnectionConfig(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=self.database,
        )


class TablesRequest(ConnectionRequest):
    db_schema: str | None = pydantic.Field(default=None, alias="schema")


class ColumnsRequest(ConnectionRequest):
    db_schema: str = pydantic.Field(alias="schema")
    table: str


class FetchLayerRequest(ConnectionRequest):
    db_schema: str | None = pydantic.Field(default=None, alias="schema")
    table: str
    lat_col: str = pydantic.Field(alias="latCol")
    lon_col: str = pydantic.Field(alias="lonCol")


def _error(status_code: int, exc: Exception) -> responses.JSONResponse:
    return responses.JSONResponse(
        status_code=status_code,
        content={"error": str(exc)},
    )


@router.post("/check-connection", response_model=None)
async def check_connection(
    body: ConnectionRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any] | responses.JSONResponse:
    """Test that the external database accepts connections."""
    try:
        return await introspection.check_connection(
            body.to_config(), settings.external_connect_timeout
        )
    except introspection.ExternalDatabaseError as exc:
        return _error(400, exc)


@router.post("/list-schemas", response_model=None)
async def list_schemas(
    body: ConnectionRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> list[str] | responses.JSONResponse:
    """List non-system schemas in alphabetical order."""
    try:
        return await introspection.list_schemas(
            body.to_config(), settings.external_connect_timeout
        )
    except introspection.ExternalDatabaseError as exc:
        return _error(500, exc)


@router.post("/list-tables", response_model=None)
async def list_tables(
    body: TablesRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> list[str] | responses.JSONResponse:
    """List tables of a schema (the default schema when none is given)."""
    try:
        return await introspection.list_tables(
            body.to_config(),
            body.db_schema,
            timeout=settings.external_connect_timeout,
            default_schema=settings.default_schema,
        )
    except introspection.ExternalDatabaseError as exc:
        return _error(500, exc)


@router.post("/list-columns", response_model=None)
async def list_columns(
    body: ColumnsRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> list[dict[str, str]] | responses.JSONResponse:
    """Describe a table's columns in physical order."""
    try:
        columns = await introspection.list_columns(
            body.to_config(),
            body.db_schema,
            body.table,
            settings.external_connect_timeout,
        )
    except introspection.ExternalDatabaseError as exc:
        return _error(500, exc)
    return [
        {"name": column.name, "dataType": column.data_type}
        for column in columns
    ]


@router.post("/fetch-layer", response_model=None)
async def fetch_layer(
    body: FetchLayerRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any] | responses.JSONResponse:
    """Read up to ``external_row_limit`` rows of a table as point features.

    Returns 400 when a schema, table or column name is rejected, and 500
    when the external database fails.
    """
    try:
        return await external_layer.fetch_layer(
            body.to_config(),
            body.db_schema or settings.default_schema,
            body.table,
            body.lat_col,
            body.lon_col,
            row_limit=settings.external_row_limit,
            timeout=settings.external_connect_timeout,
        )
    except identifiers.InvalidIdentifierError as exc:
        return _error(400, exc)
    except introspection.ExternalDatabaseError as exc:
        logger.error("Database query failed: %s", exc)
        return _error(500, exc)
