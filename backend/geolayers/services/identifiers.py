"""Safe SQL construction for external database introspection and fetches.

Schema, table and column names arrive from the client and cannot be bound
as query parameters, so they are validated here and then emitted through
``psycopg2.sql.Identifier``, which quotes them as delimited identifiers.
Everything else (row limits, catalog filters) is passed as a bound
parameter.

Example:
    Build the bounded point-synthesis query for a table:
        >>> from geolayers.services.identifiers import build_fetch_layer_query
        >>> query = build_fetch_layer_query("public", "stops", "lat", "lon")
        >>> cursor.execute(query, (50000,))
"""

from __future__ import annotations

import unicodedata

from psycopg2 import sql

GEOMETRY_COLUMN = "_geometry_json"
MAX_IDENTIFIER_LENGTH = 63
WGS84_SRID = 4326

SYSTEM_SCHEMAS = ("information_schema", "pg_catalog", "pg_toast")
SYSTEM_SCHEMA_PREFIX = "pg_"

LIST_SCHEMAS_SQL = """
    SELECT schema_name
    FROM information_schema.schemata
    WHERE schema_name <> ALL(%s)
      AND schema_name NOT LIKE %s
    ORDER BY schema_name
"""

LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s
    ORDER BY table_name
"""

LIST_COLUMNS_SQL = """
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_schema = %s
      AND table_name = %s
    ORDER BY ordinal_position
"""


class InvalidIdentifierError(ValueError):
    """Raised when a schema, table or column name is unsafe to quote."""


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """Check that a caller-supplied name can be safely quoted.

    Rejects empty names, names longer than PostgreSQL's identifier limit,
    names containing double quotes, and names containing control or other
    non-printable characters.

    Args:
        name: The raw identifier.
        kind: What the identifier names, used in error messages.

    Returns:
        The unchanged name.

    Raises:
        InvalidIdentifierError: If the name is unsafe.
    """
    if not isinstance(name, str) or not name:
        raise InvalidIdentifierError(f"Missing {kind} name")
    if len(name.encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(f"{kind.capitalize()} name is too long")
    if '"' in name:
        raise InvalidIdentifierError(
            f"{kind.capitalize()} name must not contain quote characters"
        )
    if any(unicodedata.category(ch).startswith("C") for ch in name):
        raise InvalidIdentifierError(
            f"{kind.capitalize()} name must not contain control characters"
        )
    return name


def _identifier(name: str, kind: str) -> sql.Identifier:
    return sql.Identifier(validate_identifier(name, kind))


def _table_ref(schema: str, table: str) -> sql.Composed:
    return sql.SQL("{}.{}").format(
        _identifier(schema, "schema"),
        _identifier(table, "table"),
    )


def build_fetch_layer_query(
    schema: str,
    table: str,
    lat_column: str,
    lon_column: str,
) -> sql.Composed:
    """Return a bounded query that synthesizes a GeoJSON point per row.

    The point is built from the longitude/latitude columns cast to float
    and tagged with EPSG:4326. The query expects one bound parameter: the
    row limit.

    Args:
        schema: Schema holding the table.
        table: Table to read.
        lat_column: Column holding latitude values.
        lon_column: Column holding longitude values.

    Returns:
        Composed SQL ready for ``cursor.execute(query, (limit,))``.

    Raises:
        InvalidIdentifierError: If any name fails validation.
    """
    return sql.SQL(
        "SELECT *, ST_AsGeoJSON(ST_SetSRID(ST_MakePoint("
        "{lon}::float, {lat}::float), {srid}))::json AS {geometry} "
        "FROM {table} LIMIT %s"
    ).format(
        lon=_identifier(lon_column, "longitude column"),
        lat=_identifier(lat_column, "latitude column"),
        srid=sql.Literal(WGS84_SRID),
        geometry=sql.Identifier(GEOMETRY_COLUMN),
        table=_table_ref(schema, table),
    )


def build_plain_fetch_query(schema: str, table: str) -> sql.Composed:
    """Return the bounded row query without any spatial expression."""
    return sql.SQL("SELECT * FROM {table} LIMIT %s").format(
        table=_table_ref(schema, table),
    )


def system_schema_params() -> tuple[list[str], str]:
    """Bound parameters for LIST_SCHEMAS_SQL."""
    return list(SYSTEM_SCHEMAS), SYSTEM_SCHEMA_PREFIX.replace("_", r"\_") + "%"
