"""
FastAPI router: admin account status, emergency resets and suspicious-user review.

Mounted under /api/admin. The admin role is enforced by the authentication layer
in front of this service; X-User-Id is recorded as the acting admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend_balance.api_server.balance_api import BalanceEventResponse
from backend_balance.api_server.dependencies import get_acting_user_id, get_service
from backend_balance.balance_logging import get_logger
from backend_balance.database.models import User
from backend_balance.service import BalanceService

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class UpdateStatusRequest(BaseModel):
    status: str = Field(..., description="ACTIVE, INACTIVE or SUSPENDED")
    reason: str = Field("", max_length=500)


class StatusChangeResponse(BaseModel):
    user_id: int
    status: str
    is_active: bool
    balance_event: BalanceEventResponse | None = None


class EmergencyRequest(BaseModel):
    action: str = Field(..., description="EMERGENCY_REBALANCE or RESET_SYSTEM_BALANCE")
    reason: str = Field(..., min_length=1, max_length=500)


class EmergencyResponse(BaseModel):
    action: str
    users_reset: int
    reset_event: BalanceEventResponse
    rebalance_event: BalanceEventResponse | None = None


class AdminUserResponse(BaseModel):
    id: int
    username: str
    freedom_score: int
    security_score: int
    reputation_score: int
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> "AdminUserResponse":
        return cls(
            id=user.id,
            username=user.username,
            freedom_score=user.freedom_score,
            security_score=user.security_score,
            reputation_score=user.reputation_score,
            is_active=user.is_active,
        )


@router.put("/users/{user_id}/status", response_model=StatusChangeResponse)
def update_user_status(
    user_id: int,
    body: UpdateStatusRequest,
    actor_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> StatusChangeResponse:
    change = service.update_user_status(user_id, body.status, body.reason, actor_id=actor_id)
    return StatusChangeResponse(
        user_id=change.user.id,
        status=change.status.value,
        is_active=change.user.is_active,
        balance_event=(
            BalanceEventResponse.from_event(change.balance_event)
            if change.balance_event is not None
            else None
        ),
    )


@router.post("/emergency", response_model=EmergencyResponse)
def emergency_action(
    body: EmergencyRequest,
    actor_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> EmergencyResponse:
    logger.warning("api_emergency_action", action=body.action, actor_id=actor_id)
    result = service.emergency_action(body.action, body.reason, actor_id=actor_id)
    return EmergencyResponse(
        action=result.action.value,
        users_reset=result.users_reset,
        reset_event=BalanceEventResponse.from_event(result.reset_event),
        rebalance_event=(
            BalanceEventResponse.from_event(result.rebalance_event)
            if result.rebalance_event is not None
            else None
        ),
    )


@router.get("/users/suspicious", response_model=list[AdminUserResponse])
def suspicious_users(service: BalanceService = Depends(get_service)) -> list[AdminUserResponse]:
    return [AdminUserResponse.from_user(u) for u in service.suspicious_users()]
