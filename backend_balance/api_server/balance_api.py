"""
FastAPI router: system and user balance, ledger history, manual triggers and adjustments.

Mounted under /api/balance.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend_balance.api_server.dependencies import get_acting_user_id, get_service
from backend_balance.balance_engine.rebalancing import BalanceAdjustment
from backend_balance.balance_logging import get_logger
from backend_balance.database.models import BalanceEvent
from backend_balance.service import BalanceService

logger = get_logger(__name__)

router = APIRouter(prefix="/balance", tags=["balance"])

MAX_EVENTS_PAGE = 500
MAX_TREND_HOURS = 24 * 30


class SystemBalanceResponse(BaseModel):
    freedom_level: int = Field(..., ge=0, le=100)
    security_level: int = Field(..., ge=0, le=100)
    balance_score: float = Field(..., ge=0, le=1)
    trend: str = Field(..., description="STABLE, FREEDOM_INCREASING or SECURITY_INCREASING")
    last_updated: int = Field(..., description="Unix timestamp of the calculation")


class BalanceEventResponse(BaseModel):
    id: int
    trigger_type: str
    event_description: str
    previous_freedom_level: int
    new_freedom_level: int
    previous_security_level: int
    new_security_level: int
    triggered_by: int | None = None
    affected_users: dict[str, Any]
    created_at: int

    @classmethod
    def from_event(cls, event: BalanceEvent) -> "BalanceEventResponse":
        return cls(**event.to_dict())


class UserBalanceResponse(BaseModel):
    user_id: int
    username: str
    freedom_score: int = Field(..., ge=0, le=100)
    security_score: int = Field(..., ge=0, le=100)
    reputation_score: int
    balance_ratio: float = Field(..., description="freedom / security; 100.0 when security is 0")
    last_updated: int


class TriggerBalanceRequest(BaseModel):
    event_type: str = Field(..., description="USER_ACTION, SYSTEM_AUTO or ADMIN_MANUAL")
    description: str = Field(..., min_length=1, max_length=500)
    freedom_adjustment: int | None = Field(None, ge=-100, le=100, description="ADMIN_MANUAL only")
    security_adjustment: int | None = Field(None, ge=-100, le=100, description="ADMIN_MANUAL only")


class AdjustBalanceRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    freedom_delta: int = Field(0, ge=-100, le=100)
    security_delta: int = Field(0, ge=-100, le=100)
    reason: str = Field(..., min_length=1, max_length=500)


class RebalanceResponse(BaseModel):
    rebalanced: bool
    event: BalanceEventResponse | None = None


@router.get("/current", response_model=SystemBalanceResponse)
def current_balance(service: BalanceService = Depends(get_service)) -> SystemBalanceResponse:
    """Current system balance (recomputed; also records the trend samples)."""
    return SystemBalanceResponse(**service.calculate_system_balance().to_dict())


@router.get("/events", response_model=list[BalanceEventResponse])
def balance_events(
    limit: int = Query(50, ge=0, le=MAX_EVENTS_PAGE),
    service: BalanceService = Depends(get_service),
) -> list[BalanceEventResponse]:
    """Most recent balance events, newest first."""
    return [BalanceEventResponse.from_event(e) for e in service.balance_history(limit)]


@router.get("/trends", response_model=list[BalanceEventResponse])
def balance_trends(
    hours: int = Query(24, ge=1, le=MAX_TREND_HOURS),
    service: BalanceService = Depends(get_service),
) -> list[BalanceEventResponse]:
    """Balance events from the last `hours` hours, newest first."""
    return [BalanceEventResponse.from_event(e) for e in service.balance_trends(hours)]


@router.post("/trigger", response_model=BalanceEventResponse)
def trigger_balance_event(
    body: TriggerBalanceRequest,
    user_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> BalanceEventResponse:
    adjustment = None
    if body.freedom_adjustment is not None or body.security_adjustment is not None:
        adjustment = BalanceAdjustment(
            freedom=body.freedom_adjustment or 0,
            security=body.security_adjustment or 0,
        )
    event = service.trigger_balance_event(user_id, body.event_type, body.description, adjustment)
    return BalanceEventResponse.from_event(event)


@router.get("/user/{user_id}", response_model=UserBalanceResponse)
def user_balance(user_id: int, service: BalanceService = Depends(get_service)) -> UserBalanceResponse:
    return UserBalanceResponse(**service.get_user_balance(user_id).to_dict())


@router.get("/user/{user_id}/events", response_model=list[BalanceEventResponse])
def user_balance_events(
    user_id: int,
    service: BalanceService = Depends(get_service),
) -> list[BalanceEventResponse]:
    """Events the user triggered or that were scoped to the user, newest first."""
    service.get_user_balance(user_id)
    return [BalanceEventResponse.from_event(e) for e in service.balance_events_by_user(user_id)]


@router.post("/user/{user_id}/recompute", response_model=UserBalanceResponse)
def recompute_user_balance(
    user_id: int,
    service: BalanceService = Depends(get_service),
) -> UserBalanceResponse:
    """Recompute one user's scores from message activity and account age."""
    return UserBalanceResponse(**service.recompute_user_scores(user_id).to_dict())


@router.post("/adjust", response_model=BalanceEventResponse)
def adjust_balance(
    body: AdjustBalanceRequest,
    actor_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> BalanceEventResponse:
    logger.info("api_balance_adjust", user_id=body.user_id, actor_id=actor_id)
    event = service.adjust_balance(
        body.user_id,
        body.freedom_delta,
        body.security_delta,
        body.reason,
        actor_id=actor_id,
    )
    return BalanceEventResponse.from_event(event)


@router.post("/rebalance", response_model=RebalanceResponse)
def rebalance(service: BalanceService = Depends(get_service)) -> RebalanceResponse:
    """Run the automatic rebalancing evaluation now."""
    event = service.perform_automatic_rebalancing()
    return RebalanceResponse(
        rebalanced=event is not None,
        event=BalanceEventResponse.from_event(event) if event is not None else None,
    )
