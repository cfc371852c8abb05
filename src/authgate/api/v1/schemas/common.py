# Common API response schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel


class APIResponse(BaseModel):
    """Base response wrapper."""

    model_config = {"from_attributes": True}


class OkResponse(APIResponse):
    """Simple success response."""

    ok: bool = True


class CountResponse(APIResponse):
    """Number of records affected by a bulk operation."""

    count: int
