"""
FastAPI router: community rules, voting, community metrics and moderation.

Mounted under /api. Rule and metric routes live under /community; message
routes under /messages.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend_balance.api_server.balance_api import BalanceEventResponse
from backend_balance.api_server.dependencies import get_acting_user_id, get_service
from backend_balance.balance_logging import get_logger
from backend_balance.database.models import CommunityRule
from backend_balance.service import BalanceService

logger = get_logger(__name__)

router = APIRouter(prefix="/community", tags=["community"])
messages_router = APIRouter(prefix="/messages", tags=["messages"])


class CreateRuleRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    rule_type: str = Field(..., description="FREEDOM, SECURITY or BALANCE")
    priority: int = Field(1, description="Positive; higher runs first")
    threshold: int = Field(5, ge=0)
    action: str = Field("WARN", description="WARN, RESTRICT or SUSPEND")


class CommunityRuleResponse(BaseModel):
    id: int
    title: str
    description: str
    rule_type: str
    priority: int
    threshold: int
    action: str
    is_active: bool
    votes: int
    created_by: int
    created_at: int | None = None

    @classmethod
    def from_rule(cls, rule: CommunityRule) -> "CommunityRuleResponse":
        return cls(**rule.to_dict())


class VoteRequest(BaseModel):
    positive: bool = Field(..., description="True for an up-vote, False for a down-vote")


class VoteResponse(BaseModel):
    rule_id: int
    total_votes: int
    positive_votes: int
    negative_votes: int
    user_vote: bool
    is_active: bool


class CommunityMetricsResponse(BaseModel):
    total_users: int
    active_users: int
    total_messages: int
    flagged_messages: int
    total_rules: int
    avg_freedom_score: float
    avg_security_score: float
    avg_reputation_score: float
    community_health: float = Field(..., ge=0, le=100)
    calculated_at: int


class FlagThresholdResponse(BaseModel):
    flag_threshold: int


class EvaluateRulesResponse(BaseModel):
    deactivated_rule_ids: list[int]


class RecordMessageRequest(BaseModel):
    freedom_impact: int = Field(0, ge=-100, le=100)
    security_impact: int = Field(0, ge=-100, le=100)


class MessageResponse(BaseModel):
    id: int
    user_id: int
    freedom_impact: int
    security_impact: int
    flag_count: int
    is_visible: bool
    event: BalanceEventResponse | None = None
    rebalancing_evaluated: bool = False
    rebalance_event: BalanceEventResponse | None = None


def _message_response(message: Any, **extra: Any) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        user_id=message.user_id,
        freedom_impact=message.freedom_impact,
        security_impact=message.security_impact,
        flag_count=message.flag_count,
        is_visible=message.is_visible,
        **extra,
    )


# --- Rules ---


@router.post("/rules", response_model=CommunityRuleResponse, status_code=201)
def create_rule(
    body: CreateRuleRequest,
    user_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> CommunityRuleResponse:
    """Submit a rule. It starts inactive with the creator's vote."""
    rule = service.create_rule(
        user_id,
        body.title,
        body.description,
        body.rule_type,
        body.priority,
        body.threshold,
        body.action,
    )
    return CommunityRuleResponse.from_rule(rule)


@router.get("/rules", response_model=list[CommunityRuleResponse])
def active_rules(service: BalanceService = Depends(get_service)) -> list[CommunityRuleResponse]:
    """Active rules, highest priority first."""
    return [CommunityRuleResponse.from_rule(r) for r in service.active_rules()]


@router.get("/rules/top-voted", response_model=list[CommunityRuleResponse])
def top_voted_rules(
    limit: int = Query(10, ge=0, le=100),
    service: BalanceService = Depends(get_service),
) -> list[CommunityRuleResponse]:
    return [CommunityRuleResponse.from_rule(r) for r in service.top_voted_rules(limit)]


@router.get("/rules/recent", response_model=list[CommunityRuleResponse])
def recent_rules(
    limit: int = Query(10, ge=0, le=100),
    service: BalanceService = Depends(get_service),
) -> list[CommunityRuleResponse]:
    return [CommunityRuleResponse.from_rule(r) for r in service.recent_rules(limit)]


@router.get("/rules/mine", response_model=list[CommunityRuleResponse])
def my_rules(
    user_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> list[CommunityRuleResponse]:
    return [CommunityRuleResponse.from_rule(r) for r in service.rules_created_by(user_id)]


@router.get("/rules/type/{rule_type}", response_model=list[CommunityRuleResponse])
def active_rules_by_type(
    rule_type: str,
    service: BalanceService = Depends(get_service),
) -> list[CommunityRuleResponse]:
    return [CommunityRuleResponse.from_rule(r) for r in service.active_rules_by_type(rule_type)]


@router.get("/rules/{rule_id}", response_model=CommunityRuleResponse)
def get_rule(rule_id: int, service: BalanceService = Depends(get_service)) -> CommunityRuleResponse:
    return CommunityRuleResponse.from_rule(service.get_rule(rule_id))


@router.post("/rules/{rule_id}/vote", response_model=VoteResponse)
def vote_on_rule(
    rule_id: int,
    body: VoteRequest,
    user_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> VoteResponse:
    return VoteResponse(**service.vote(rule_id, user_id, body.positive).to_dict())


@router.post("/evaluate-rules", response_model=EvaluateRulesResponse)
def evaluate_rules(service: BalanceService = Depends(get_service)) -> EvaluateRulesResponse:
    """Run the rule effectiveness sweep now."""
    return EvaluateRulesResponse(deactivated_rule_ids=service.evaluate_rule_effectiveness())


# --- Metrics ---


@router.get("/metrics", response_model=CommunityMetricsResponse)
def community_metrics(service: BalanceService = Depends(get_service)) -> CommunityMetricsResponse:
    return CommunityMetricsResponse(**service.analyze_community_metrics().to_dict())


@router.get("/flag-threshold", response_model=FlagThresholdResponse)
def flag_threshold(service: BalanceService = Depends(get_service)) -> FlagThresholdResponse:
    return FlagThresholdResponse(flag_threshold=service.active_flag_threshold())


# --- Messages ---


@messages_router.post("", response_model=MessageResponse, status_code=201)
def record_message(
    body: RecordMessageRequest,
    user_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> MessageResponse:
    """Store a message with precomputed impacts and apply them to the author."""
    recorded = service.record_message(user_id, body.freedom_impact, body.security_impact)
    impact = recorded.impact
    return _message_response(
        recorded.message,
        event=BalanceEventResponse.from_event(impact.event),
        rebalancing_evaluated=impact.rebalancing_evaluated,
        rebalance_event=(
            BalanceEventResponse.from_event(impact.rebalance_event)
            if impact.rebalance_event is not None
            else None
        ),
    )


@messages_router.post("/{message_id}/flag", response_model=MessageResponse)
def flag_message(
    message_id: int,
    user_id: int = Depends(get_acting_user_id),
    service: BalanceService = Depends(get_service),
) -> MessageResponse:
    result = service.flag_message(message_id, user_id)
    return _message_response(result.message, event=BalanceEventResponse.from_event(result.balance_event))
