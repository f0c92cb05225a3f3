"""Tests for the FastAPI main application factory and health checks.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The proxy, layer and group routers are registered,
    - The /health endpoint returns the expected response.

These tests verify the compositional integrity of the FastAPI app
and are independent of repository or service implementation details.

See Also:
    - backend/geolayers/main.py for the application factory.
"""

from __future__ import annotations

from typing import cast

from fastapi import testclient

from geolayers import main


def test_create_app() -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app is not None
    assert app.title == "Geo Layers"
    assert app.version == "0.1.0"


def test_health_endpoint() -> None:
    """Test the health check endpoint returns ok status."""
    app = main.create_app()
    client = testclient.TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_app_includes_routers() -> None:
    """Test that all API routers are included in the app."""
    app = main.create_app()
    routes: list[str] = [
        cast(str, getattr(route, "path", ""))
        for route in app.routes  # type: ignore[attr-defined]
        if hasattr(route, "path")
    ]
    assert "/health" in routes
    for path in (
        "/api/check-connection",
        "/api/list-schemas",
        "/api/list-tables",
        "/api/list-columns",
        "/api/fetch-layer",
        "/api/layers",
        "/api/layers/{layer_id}",
        "/api/layers/{layer_id}/style",
        "/api/layers/{layer_id}/group",
        "/api/layers/cache/clear",
        "/api/groups",
        "/api/groups/{group_id}",
    ):
        assert path in routes
