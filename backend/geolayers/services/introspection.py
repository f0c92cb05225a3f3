"""Read-only discovery of schemas, tables and columns on external databases.

Each operation opens its own connection from a transient ConnectionConfig,
runs one catalog query and closes the connection before returning, whether
the query succeeded or not. Driver errors are surfaced as a single
ExternalDatabaseError carrying a readable message.

The blocking psycopg2 calls run in a worker thread so that awaiting an
introspection never stalls other tasks on the event loop.

Example:
    >>> config = ConnectionConfig(
    ...     host="db.example", user="gis", password="secret", database="gis"
    ... )
    >>> await list_schemas(config)
    ['public', 'transport']
    >>> await list_columns(config, "transport", "stops")
    [ColumnDescriptor(name='id', data_type='integer'), ...]
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import psycopg2
import psycopg2.extensions

from geolayers.db import models as db_models
from geolayers.services import identifiers

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"
DEFAULT_CONNECT_TIMEOUT = 10


class ExternalDatabaseError(RuntimeError):
    """Raised when connecting to or querying an external database fails.

    The message is the driver's error text, suitable for showing to the
    user. No retry is attempted.
    """


def describe_error(exc: BaseException) -> str:
    """Extract a human-readable message from a driver exception."""
    message = str(exc).strip()
    if not message and isinstance(exc, psycopg2.Error) and exc.pgerror:
        message = exc.pgerror.strip()
    return message or exc.__class__.__name__


@contextlib.contextmanager
def open_connection(
    config: db_models.ConnectionConfig,
    timeout: int = DEFAULT_CONNECT_TIMEOUT,
) -> Iterator[psycopg2.extensions.connection]:
    """Open a scoped connection that is always closed on exit.

    Raises:
        ExternalDatabaseError: If the connection cannot be established or
            a driver error escapes the managed block.
    """
    try:
        conn = psycopg2.connect(**config.connect_kwargs(timeout))
    except psycopg2.Error as exc:
        raise ExternalDatabaseError(describe_error(exc)) from exc

    try:
        yield conn
    except psycopg2.Error as exc:
        logger.warning(
            "Query against %s/%s failed: %s",
            config.host,
            config.database,
            describe_error(exc),
        )
        raise ExternalDatabaseError(describe_error(exc)) from exc
    finally:
        conn.close()


def _query_column(
    config: db_models.ConnectionConfig,
    query: str,
    params: tuple[Any, ...] | None,
    timeout: int,
) -> list[tuple[Any, ...]]:
    with open_connection(config, timeout) as conn, conn.cursor() as cur:
        cur.execute(query, params)
        return list(cur.fetchall())


def _check(config: db_models.ConnectionConfig, timeout: int) -> None:
    with open_connection(config, timeout) as conn, conn.cursor() as cur:
        cur.execute("SELECT 1")


async def check_connection(
    config: db_models.ConnectionConfig,
    timeout: int = DEFAULT_CONNECT_TIMEOUT,
) -> dict[str, Any]:
    """Verify that the database accepts a connection and a trivial query.

    Returns:
        ``{"success": True, "message": ...}`` on success.

    Raises:
        ExternalDatabaseError: If the connection or query fails.
    """
    await asyncio.to_thread(_check, config, timeout)
    return {"success": True, "message": "Connected successfully"}


async def list_schemas(
    config: db_models.ConnectionConfig,
    timeout: int = DEFAULT_CONNECT_TIMEOUT,
) -> list[str]:
    """List user schemas, excluding PostgreSQL system schemas.

    Raises:
        ExternalDatabaseError: If the connection or query fails.
    """
    rows = await asyncio.to_thread(
        _query_column,
        config,
        identifiers.LIST_SCHEMAS_SQL,
        identifiers.system_schema_params(),
        timeout,
    )
    return [str(row[0]) for row in rows]


async def list_tables(
    config: db_models.ConnectionConfig,
    schema: str | None = None,
    timeout: int = DEFAULT_CONNECT_TIMEOUT,
    default_schema: str = DEFAULT_SCHEMA,
) -> list[str]:
    """List table names of one schema in alphabetical order.

    Args:
        config: External connection parameters.
        schema: Schema to list; ``default_schema`` when empty.
        timeout: Connect timeout in seconds.
        default_schema: Schema used when none is given.

    Raises:
        ExternalDatabaseError: If the connection or query fails.
    """
    rows = await asyncio.to_thread(
        _query_column,
        config,
        identifiers.LIST_TABLES_SQL,
        (schema or default_schema,),
        timeout,
    )
    return [str(row[0]) for row in rows]


async def list_columns(
    config: db_models.ConnectionConfig,
    schema: str,
    table: str,
    timeout: int = DEFAULT_CONNECT_TIMEOUT,
) -> list[db_models.ColumnDescriptor]:
    """Describe the columns of a table in physical column order.

    Raises:
        ExternalDatabaseError: If the connection or query fails.
    """
    rows = await asyncio.to_thread(
        _query_column,
        config,
        identifiers.LIST_COLUMNS_SQL,
        (schema, table),
        timeout,
    )
    return [
        db_models.ColumnDescriptor(name=str(row[0]), data_type=str(row[1]))
        for row in rows
    ]
