# API v1 router aggregation.
# Created: 2026-02-20
#
# mount_v1_routers(app) registers the protocol routers at the root and the
# management routers at /api/v1/.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Routers are imported lazily inside mount_v1_routers() to avoid circular imports.
_V1_ROUTERS: list[tuple[str, str, str, str]] = [
    # (module_path, attr_name, prefix, tag)
    ("authgate.api.v1.oauth2", "router", "", "OAuth2"),
    ("authgate.api.v1.device", "router", "", "Device"),
    ("authgate.api.v1.ciba", "router", "", "CIBA"),
    ("authgate.api.v1.discovery", "router", "", "Discovery"),
    ("authgate.api.v1.clients", "router", "/api/v1", "Clients"),
    ("authgate.api.v1.scopes", "router", "/api/v1", "Scopes"),
    ("authgate.api.v1.tokens", "router", "/api/v1", "Personal Access Tokens"),
    ("authgate.api.v1.admin", "router", "/api/v1", "Admin"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount every router on *app* at its prefix.

    A router that fails to import is an installation defect, so the error
    propagates instead of leaving the server half-mounted.
    """
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, prefix, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router, prefix=prefix)
        logger.debug("Mounted router: %s at %r (%s)", module_path, prefix or "/", tag)
