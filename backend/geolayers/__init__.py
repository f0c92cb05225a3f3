"""Backend for persisting, styling and re-loading geospatial layers.

Feature collections arrive either as already-parsed GeoJSON uploads or from
ad-hoc connections to external PostgreSQL databases. They are normalized
into a PostGIS-backed store of collections and features, mirrored in a
persistent local cache, and reconciled with that cache on every load.

- Query proxy for schema introspection and bounded point extraction from
  arbitrary external tables, with validated identifiers
- Persistence store for collections, features, styles and layer groups
- Disk-backed layer cache that is never authoritative
- Deterministic categorized styling and a reducer-style layer/group state

See module docstrings for details on architecture and usage.
"""
