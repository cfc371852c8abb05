"""HTTP server for ``authgate serve``.

Builds the FastAPI application (protocol endpoints, management API, CORS,
OAuth error rendering) and runs the expiry sweeper for the lifetime of the
app.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app):
    from authgate.api.oauth2.provider import get_oauth_provider

    provider = get_oauth_provider()
    provider.sweeper.start()
    try:
        yield
    finally:
        await provider.sweeper.stop()
        shutdown = getattr(provider.notifier, "shutdown", None)
        if shutdown is not None:
            shutdown()


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from authgate import __version__
    from authgate.api.oauth2.errors import install_exception_handlers
    from authgate.api.v1 import mount_v1_routers
    from authgate.config import get_settings

    app = FastAPI(
        title="authgate",
        description="OAuth 2.0 / OpenID Connect authorization server.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=_lifespan,
    )

    # --- CORS -----------------------------------------------------------
    origins = get_settings().cors_allowed_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    install_exception_handlers(app)

    # --- Mount routers --------------------------------------------------
    mount_v1_routers(app)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8890,
    dev: bool = False,
    log_level: str = "info",
) -> None:
    """Start the server with uvicorn."""
    import uvicorn
    from rich.console import Console

    console = Console(stderr=True)
    console.rule("[bold]authgate[/bold]")
    shown_host = "localhost" if host in ("127.0.0.1", "0.0.0.0") else host
    console.print(f"API docs: http://{shown_host}:{port}/api/v1/docs")
    if host == "0.0.0.0":
        console.print(f"(listening on all interfaces, {host}:{port})")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "authgate.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port, log_level=log_level)
