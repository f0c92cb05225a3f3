"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that configures
logging, sets up CORS middleware, includes the query-proxy, saved-layer and
group routers, and exposes a health check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn geolayers.main:app --reload

    Or imported and used programmatically:
        >>> from geolayers.main import app
        >>> # Use app in ASGI server
"""

import fastapi
from fastapi.middleware import cors

from geolayers.api import groups, layers, proxy
from geolayers.core import config
from geolayers.core import logging as app_logging


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging from settings, includes the proxy, layers and groups
    routers, and adds a health check endpoint. CORS origins are configured
    from settings, allowing cross-origin requests from specified domains.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    app_logging.configure_logging(settings.log_level)
    app = fastapi.FastAPI(title="Geo Layers", version="0.1.0")

    app.include_router(proxy.router)
    app.include_router(layers.router)
    app.include_router(groups.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
