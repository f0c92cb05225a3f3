"""Database interface and repository abstractions.

This package holds the data models shared across the application and the
repositories that persist collections, features and layer groups. It
provides a stable import location for repository dependency injection,
supporting production (PostgreSQL/PostGIS) and testing (in-memory)
backends.

Example:
    Use in a service or FastAPI dependency:
        >>> from geolayers.db import database
        >>> repo = database.get_collection_repository(settings)
"""
