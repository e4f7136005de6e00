# =============================================================================
# API Dependencies — Caller Identity and Services
# =============================================================================
#
# Authentication happens upstream; this service trusts the `X-User-Id`
# header the gateway sets. A request without it is rejected with 401.
#
# The service container is built once at startup and lives on
# app.state.services. Tests replace it by passing their own container to
# create_app().
# =============================================================================

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from expertqa.services.factory import ServiceContainer


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """
    Resolve the calling user.

    Raises:
        HTTPException 401: Missing or blank X-User-Id header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
