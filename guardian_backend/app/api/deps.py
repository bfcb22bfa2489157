"""
Shared FastAPI dependencies.

Authentication happens upstream; the gateway forwards the caller's id
in the ``X-Actor-Id`` header.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from guardian_backend.app.container import Services
from guardian_backend.app.core.errors import ForbiddenError


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_actor_id(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> str:
    if not x_actor_id or not x_actor_id.strip():
        raise ForbiddenError()
    return x_actor_id.strip()
