"""Database helpers and repositories for collections, features and groups."""

from __future__ import annotations

import copy
import datetime
import json
import logging
import uuid
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.errors
import psycopg2.extensions
import psycopg2.extras

from geolayers.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from geolayers.core import config

logger = logging.getLogger(__name__)


class CollectionNotFoundError(LookupError):
    """Raised when a collection id does not exist in the store."""


class GroupNotFoundError(LookupError):
    """Raised when a layer group id does not exist in the store."""


def _json_roundtrip(value: Any) -> Any:
    """Normalize a value the way a jsonb column would."""
    return json.loads(json.dumps(value))


class CollectionRepositoryProtocol(Protocol):
    """Protocol interface for the relational side of the persistence store.

    Implementations persist collections, their features and layer groups,
    supporting both in-memory (testing) and PostgreSQL (production)
    backends. All methods are synchronous; async callers offload them to a
    worker thread.
    """

    def add_collection(
        self,
        name: str,
        metadata: dict[str, Any],
        group_id: str | None,
        features: Iterable[dict[str, Any]],
    ) -> db_models.Collection: ...

    def get_collection(self, collection_id: str) -> db_models.Collection | None: ...

    def list_collections(self) -> list[db_models.Collection]: ...

    def list_features(self, collection_id: str) -> list[dict[str, Any]]: ...

    def delete_collection(self, collection_id: str) -> bool: ...

    def update_metadata(
        self, collection_id: str, metadata: dict[str, Any]
    ) -> db_models.Collection: ...

    def update_group(
        self, collection_id: str, group_id: str | None
    ) -> db_models.Collection: ...

    def list_groups(self) -> list[db_models.Group]: ...

    def add_group(self, name: str) -> db_models.Group: ...

    def delete_group(self, group_id: str) -> list[str]: ...


class InMemoryCollectionRepository(CollectionRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Mirrors the PostgreSQL behaviour that matters to callers: JSON columns
    are normalized through serialization, deleting a collection drops its
    features, and deleting a group detaches its member collections. Data
    is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize empty collection, feature and group tables."""
        self._collections: dict[str, db_models.Collection] = {}
        self._features: dict[str, list[dict[str, Any]]] = {}
        self._groups: dict[str, db_models.Group] = {}

    def add_collection(
        self,
        name: str,
        metadata: dict[str, Any],
        group_id: str | None,
        features: Iterable[dict[str, Any]],
    ) -> db_models.Collection:
        if group_id is not None and group_id not in self._groups:
            raise GroupNotFoundError(group_id)
        collection = db_models.Collection(
            id=str(uuid.uuid4()),
            name=name,
            metadata=_json_roundtrip(metadata),
            group_id=group_id,
        )
        rows = [
            {
                "geometry": _json_roundtrip(feature.get("geometry")),
                "properties": _json_roundtrip(feature.get("properties") or {}),
            }
            for feature in features
        ]
        self._collections[collection.id] = collection
        self._features[collection.id] = rows
        return copy.deepcopy(collection)

    def get_collection(self, collection_id: str) -> db_models.Collection | None:
        collection = self._collections.get(collection_id)
        return copy.deepcopy(collection) if collection else None

    def list_collections(self) -> list[db_models.Collection]:
        # insertion order doubles as creation order
        return [copy.deepcopy(c) for c in reversed(self._collections.values())]

    def list_features(self, collection_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._features.get(collection_id, []))

    def delete_collection(self, collection_id: str) -> bool:
        if self._collections.pop(collection_id, None) is None:
            return False
        self._features.pop(collection_id, None)
        return True

    def update_metadata(
        self, collection_id: str, metadata: dict[str, Any]
    ) -> db_models.Collection:
        collection = self._require(collection_id)
        collection.metadata = _json_roundtrip(metadata)
        return copy.deepcopy(collection)

    def update_group(
        self, collection_id: str, group_id: str | None
    ) -> db_models.Collection:
        collection = self._require(collection_id)
        if group_id is not None and group_id not in self._groups:
            raise GroupNotFoundError(group_id)
        collection.group_id = group_id
        return copy.deepcopy(collection)

    def list_groups(self) -> list[db_models.Group]:
        return [copy.deepcopy(g) for g in self._groups.values()]

    def add_group(self, name: str) -> db_models.Group:
        group = db_models.Group(id=str(uuid.uuid4()), name=name)
        self._groups[group.id] = group
        return copy.deepcopy(group)

    def delete_group(self, group_id: str) -> list[str]:
        if self._groups.pop(group_id, None) is None:
            raise GroupNotFoundError(group_id)
        detached = []
        for collection in self._collections.values():
            if collection.group_id == group_id:
                collection.group_id = None
                detached.append(collection.id)
        return detached

    def _require(self, collection_id: str) -> db_models.Collection:
        collection = self._collections.get(collection_id)
        if collection is None:
            raise CollectionNotFoundError(collection_id)
        return collection


class PostgresCollectionRepository(CollectionRepositoryProtocol):
    """PostgreSQL/PostGIS-backed persistence store.

    Geometries are stored as PostGIS geometries in EPSG:4326 and returned as
    GeoJSON; feature properties and collection metadata are jsonb. Creates
    the PostGIS extension and all tables on initialization.
    """

    CREATE_TABLES_SQL = """
    CREATE TABLE IF NOT EXISTS layer_groups (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      collapsed BOOLEAN NOT NULL DEFAULT false,
      visible BOOLEAN NOT NULL DEFAULT true,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS collections (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
      group_id TEXT REFERENCES layer_groups(id) ON DELETE SET NULL,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS features (
      id BIGSERIAL PRIMARY KEY,
      collection_id TEXT NOT NULL
        REFERENCES collections(id) ON DELETE CASCADE,
      geom geometry(Geometry, 4326),
      properties JSONB NOT NULL DEFAULT '{}'::jsonb
    );
    CREATE INDEX IF NOT EXISTS features_collection_id_idx
      ON features (collection_id);
    """

    COLLECTION_COLUMNS = "id, name, metadata, group_id, created_at"

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(
            self.settings.database_url,
            cursor_factory=psycopg2.extras.RealDictCursor,
        )

    def _ensure_schema(self) -> None:
        """Ensure PostGIS extension and the store tables exist."""
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute("CREATE EXTENSION IF NOT EXISTS postgis;")
                cur.execute(self.CREATE_TABLES_SQL)
        finally:
            conn.close()

    def add_collection(
        self,
        name: str,
        metadata: dict[str, Any],
        group_id: str | None,
        features: Iterable[dict[str, Any]],
    ) -> db_models.Collection:
        """Insert a collection and all of its features in one transaction.

        Either both the collection row and every feature row are committed,
        or nothing is; a failure leaves no orphaned empty collection.
        """
        collection_id = str(uuid.uuid4())
        rows = [
            (
                collection_id,
                json.dumps(feature.get("geometry")),
                psycopg2.extras.Json(feature.get("properties") or {}),
            )
            for feature in features
        ]
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO collections (id, name, metadata, group_id)
                    VALUES (%s, %s, %s, %s)
                    RETURNING {self.COLLECTION_COLUMNS};
                    """,
                    (
                        collection_id,
                        name,
                        psycopg2.extras.Json(metadata),
                        group_id,
                    ),
                )
                row = cur.fetchone()
                if rows:
                    psycopg2.extras.execute_values(
                        cur,
                        """
                        INSERT INTO features (collection_id, geom, properties)
                        VALUES %s;
                        """,
                        rows,
                        template=(
                            "(%s, ST_SetSRID(ST_GeomFromGeoJSON(%s), 4326), %s)"
                        ),
                        page_size=1000,
                    )
        except psycopg2.errors.ForeignKeyViolation as exc:
            raise GroupNotFoundError(group_id) from exc
        finally:
            conn.close()
        logger.info(
            "Stored collection %s (%s) with %d features",
            collection_id,
            name,
            len(rows),
        )
        return self._from_row(cast(dict[str, object], row))

    def get_collection(self, collection_id: str) -> db_models.Collection | None:
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    f"SELECT {self.COLLECTION_COLUMNS} FROM collections "
                    "WHERE id = %s",
                    (collection_id,),
                )
                row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return self._from_row(cast(dict[str, object], row))

    def list_collections(self) -> list[db_models.Collection]:
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    f"SELECT {self.COLLECTION_COLUMNS} FROM collections "
                    "ORDER BY created_at DESC"
                )
                rows = cur.fetchall()
        finally:
            conn.close()
        return [self._from_row(cast(dict[str, object], row)) for row in rows]

    def list_features(self, collection_id: str) -> list[dict[str, Any]]:
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT ST_AsGeoJSON(geom)::json AS geometry, properties
                    FROM features
                    WHERE collection_id = %s
                    ORDER BY id
                    """,
                    (collection_id,),
                )
                rows = cur.fetchall()
        finally:
            conn.close()
        return [
            {"geometry": row["geometry"], "properties": row["properties"] or {}}
            for row in rows
        ]

    def delete_collection(self, collection_id: str) -> bool:
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM collections WHERE id = %s",
                    (collection_id,),
                )
                deleted = cur.rowcount > 0
        finally:
            conn.close()
        return deleted

    def update_metadata(
        self, collection_id: str, metadata: dict[str, Any]
    ) -> db_models.Collection:
        return self._update_returning(
            "UPDATE collections SET metadata = %s WHERE id = %s",
            (psycopg2.extras.Json(metadata), collection_id),
            collection_id,
        )

    def update_group(
        self, collection_id: str, group_id: str | None
    ) -> db_models.Collection:
        try:
            return self._update_returning(
                "UPDATE collections SET group_id = %s WHERE id = %s",
                (group_id, collection_id),
                collection_id,
            )
        except psycopg2.errors.ForeignKeyViolation as exc:
            raise GroupNotFoundError(group_id) from exc

    def list_groups(self) -> list[db_models.Group]:
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    "SELECT id, name, collapsed, visible FROM layer_groups "
                    "ORDER BY created_at"
                )
                rows = cur.fetchall()
        finally:
            conn.close()
        return [
            db_models.Group(
                id=str(row["id"]),
                name=str(row["name"]),
                collapsed=bool(row["collapsed"]),
                visible=row["visible"] is not False,
            )
            for row in rows
        ]

    def add_group(self, name: str) -> db_models.Group:
        group = db_models.Group(id=str(uuid.uuid4()), name=name)
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO layer_groups (id, name, collapsed, visible) "
                    "VALUES (%s, %s, %s, %s)",
                    (group.id, group.name, group.collapsed, group.visible),
                )
        finally:
            conn.close()
        return group

    def delete_group(self, group_id: str) -> list[str]:
        """Delete a group and detach its member collections.

        Returns:
            Ids of the collections whose ``group_id`` was reset to NULL.
        """
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    "UPDATE collections SET group_id = NULL "
                    "WHERE group_id = %s RETURNING id",
                    (group_id,),
                )
                detached = [str(row["id"]) for row in cur.fetchall()]
                cur.execute(
                    "DELETE FROM layer_groups WHERE id = %s",
                    (group_id,),
                )
                if cur.rowcount == 0:
                    raise GroupNotFoundError(group_id)
        finally:
            conn.close()
        return detached

    def _update_returning(
        self,
        statement: str,
        params: tuple[object, ...],
        collection_id: str,
    ) -> db_models.Collection:
        conn = self._connection()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    f"{statement} RETURNING {self.COLLECTION_COLUMNS}",
                    params,
                )
                row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            raise CollectionNotFoundError(collection_id)
        return self._from_row(cast(dict[str, object], row))

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.Collection:
        """Convert a collections row dictionary to a Collection.

        Args:
            row: Dictionary from a RealDictCursor query result.

        Returns:
            Collection with metadata defaulting to an empty dict.
        """
        metadata = row.get("metadata")
        group_id = row.get("group_id")
        created_at = row.get("created_at")
        return db_models.Collection(
            id=str(row["id"]),
            name=str(row["name"]),
            metadata=cast(dict[str, Any], metadata) if metadata else {},
            group_id=str(group_id) if group_id is not None else None,
            created_at=cast(datetime.datetime, created_at)
            or datetime.datetime.now(datetime.UTC),
        )


def get_collection_repository(
    settings: config.Settings,
) -> CollectionRepositoryProtocol:
    """Factory function to create the persistence store repository.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresCollectionRepository instance for production use.
    """
    return PostgresCollectionRepository(settings)
