"""
Request dependencies shared by the API routers.
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from backend_balance.service import BalanceService


def get_service(request: Request) -> BalanceService:
    """Dependency: the app-scoped BalanceService created in the lifespan."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Balance service not initialized")
    return service


def get_acting_user_id(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """
    Id of the authenticated caller. Authentication happens upstream; this service
    only trusts the header it forwards.
    """
    if x_user_id <= 0:
        raise HTTPException(status_code=400, detail="X-User-Id must be a positive integer")
    return x_user_id
