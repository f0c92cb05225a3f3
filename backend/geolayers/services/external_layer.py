"""Point layer extraction from arbitrary tables on external databases.

This module reads a bounded number of rows from a caller-chosen table and
turns them into a GeoJSON FeatureCollection. Point geometry is synthesized
in the database with PostGIS when possible; otherwise, or when synthesis
yields nothing for a row, it is built locally from the raw latitude and
longitude values. Rows whose coordinates are not numeric are dropped.

Example:
    >>> collection = await fetch_layer(
    ...     config, "transport", "stops", lat_column="lat", lon_column="lon"
    ... )
    >>> collection["features"][0]["geometry"]
    {'type': 'Point', 'coordinates': [-46.63, -23.55]}
"""

from __future__ import annotations

import asyncio
import datetime
import decimal
import logging
import math
import uuid
from typing import TYPE_CHECKING, Any

import psycopg2
import psycopg2.errors
import psycopg2.extras

from geolayers.services import identifiers, introspection

if TYPE_CHECKING:
    from geolayers.db import models as db_models

logger = logging.getLogger(__name__)

DEFAULT_ROW_LIMIT = 50_000


def _json_scalar(value: Any) -> Any:
    """Normalize driver values into JSON-serializable scalars.

    NaN and infinite numbers have no JSON form and become None.
    """
    if isinstance(value, decimal.Decimal):
        value = float(value)
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, datetime.datetime | datetime.date | datetime.time):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, memoryview | bytes | bytearray):
        return bytes(value).hex()
    return value


def _parse_coordinate(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def row_to_feature(
    row: dict[str, Any],
    lat_column: str,
    lon_column: str,
) -> dict[str, Any] | None:
    """Convert one result row into a GeoJSON Feature.

    Uses the database-computed geometry when present, falling back to the
    raw coordinate columns. The computed geometry column never appears in
    the properties, and an ``id`` property is always a string.

    Returns:
        The feature, or None when no geometry can be built for the row.
    """
    properties = {
        key: _json_scalar(value)
        for key, value in row.items()
        if key != identifiers.GEOMETRY_COLUMN
    }
    if properties.get("id") is not None:
        properties["id"] = str(properties["id"])

    geometry = row.get(identifiers.GEOMETRY_COLUMN)
    if not geometry:
        lat = _parse_coordinate(row.get(lat_column))
        lon = _parse_coordinate(row.get(lon_column))
        if lat is None or lon is None:
            return None
        geometry = {"type": "Point", "coordinates": [lon, lat]}

    return {"type": "Feature", "geometry": geometry, "properties": properties}


def _fetch_rows(
    conn: Any,
    schema: str,
    table: str,
    lat_column: str,
    lon_column: str,
    row_limit: int,
) -> list[dict[str, Any]]:
    """Run the spatial query, degrading to the plain query when it fails."""
    spatial_query = identifiers.build_fetch_layer_query(
        schema, table, lat_column, lon_column
    )
    plain_query = identifiers.build_plain_fetch_query(schema, table)

    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        try:
            cur.execute(spatial_query, (row_limit,))
        except (psycopg2.errors.UndefinedFunction, psycopg2.DataError) as exc:
            logger.info(
                "Point synthesis unavailable for %s.%s (%s); "
                "building geometry from raw coordinates",
                schema,
                table,
                introspection.describe_error(exc),
            )
            conn.rollback()
            cur.execute(plain_query, (row_limit,))
        return [dict(row) for row in cur.fetchmany(row_limit)]


def _fetch_layer(
    config: db_models.ConnectionConfig,
    schema: str,
    table: str,
    lat_column: str,
    lon_column: str,
    row_limit: int,
    timeout: int,
) -> dict[str, Any]:
    with introspection.open_connection(config, timeout) as conn:
        rows = _fetch_rows(conn, schema, table, lat_column, lon_column, row_limit)

    features = []
    for row in rows:
        feature = row_to_feature(row, lat_column, lon_column)
        if feature is None:
            continue
        features.append(feature)

    dropped = len(rows) - len(features)
    if dropped:
        logger.debug(
            "Dropped %d rows from %s.%s without usable coordinates",
            dropped,
            schema,
            table,
        )
    logger.info(
        "Fetched %d features from %s.%s", len(features), schema, table
    )
    return {"type": "FeatureCollection", "features": features}


async def fetch_layer(
    config: db_models.ConnectionConfig,
    schema: str | None,
    table: str,
    lat_column: str,
    lon_column: str,
    row_limit: int = DEFAULT_ROW_LIMIT,
    timeout: int = introspection.DEFAULT_CONNECT_TIMEOUT,
) -> dict[str, Any]:
    """Read a table from an external database as a point FeatureCollection.

    At most ``row_limit`` rows are read. Every emitted feature has a
    non-null geometry; an empty collection is returned as-is and callers
    decide whether that is an error.

    Args:
        config: External connection parameters.
        schema: Schema holding the table (``public`` when empty).
        table: Table to read.
        lat_column: Column holding latitude values.
        lon_column: Column holding longitude values.
        row_limit: Maximum number of rows to read.
        timeout: Connect timeout in seconds.

    Returns:
        GeoJSON FeatureCollection dictionary.

    Raises:
        InvalidIdentifierError: If a schema, table or column name is unsafe.
        ExternalDatabaseError: If the connection or query fails.
    """
    schema = schema or introspection.DEFAULT_SCHEMA
    for name, kind in (
        (schema, "schema"),
        (table, "table"),
        (lat_column, "latitude column"),
        (lon_column, "longitude column"),
    ):
        identifiers.validate_identifier(name, kind)

    logger.info("Fetching external layer from %s.%s", schema, table)
    return await asyncio.to_thread(
        _fetch_layer,
        config,
        schema,
        table,
        lat_column,
        lon_column,
        row_limit,
        timeout,
    )
