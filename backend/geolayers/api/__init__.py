"""API router subpackage for the geolayers backend.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - proxy: Query-proxy endpoints for introspecting and reading external
      PostgreSQL databases.
    - layers: Endpoints for saving, listing, styling and deleting saved
      layers.
    - groups: Endpoints for listing, creating and deleting layer groups.
"""
