"""
Ledger Controllers Module

This module provides API endpoints for the progress and reward ledger:
- Reporting quest completions
- Reading learner summaries, completion history and balances
- Badge progress and summary reconciliation
"""

import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from questledger.api import APIResponse
from questledger.common.logger import app_logger
from questledger.ledger.models import (
    MAX_EVENT_ID_LENGTH, MAX_ID_LENGTH, MAX_TITLE_LENGTH, CompletionEvent, CompletionOrigin
)
from questledger.ledger.query import MAX_COMPLETIONS_PAGE, ProgressQueryService
from questledger.ledger.service import LedgerService

# Set up module logger
logger = app_logger.getChild("ledger.controllers")

# Create router
router = APIRouter()


# Request models
class CompletionRequest(BaseModel):
    event_id: Optional[str] = Field(
        None, max_length=MAX_EVENT_ID_LENGTH,
        description="Delivery id; generated when omitted. Reuse it when retrying"
    )
    learner_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH, description="Learner ID")
    source_unit_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH, description="Quest id or gc_<assignment id>")
    title: str = Field("", max_length=MAX_TITLE_LENGTH, description="Quest title")
    category: str = Field(..., description="math, science, language or social_studies")
    difficulty: str = Field(..., description="easy, medium or hard")
    was_correct: bool = Field(..., description="Whether the learner answered correctly")
    coins_awarded: int = Field(..., ge=0, description="Coins the completion is worth")
    xp_awarded: int = Field(..., ge=0, description="XP the completion is worth")
    occurred_at: Optional[datetime.datetime] = Field(None, description="When the quest was completed")
    origin: str = Field(CompletionOrigin.INTERACTIVE.value, description="interactive or external_sync")


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_query_service(request: Request) -> ProgressQueryService:
    return request.app.state.query_service


@router.post("/completions")
async def report_completion(
    payload: CompletionRequest,
    ledger: LedgerService = Depends(get_ledger_service),
) -> Dict[str, Any]:
    """
    Report a completed quest.

    A duplicate delivery is not an error: the response has ``credited``
    set to false and the balance is unchanged.
    """
    event = CompletionEvent.create(
        event_id=payload.event_id,
        learner_id=payload.learner_id,
        source_unit_id=payload.source_unit_id,
        title=payload.title,
        category=payload.category,
        difficulty=payload.difficulty,
        was_correct=payload.was_correct,
        coins_awarded=payload.coins_awarded,
        xp_awarded=payload.xp_awarded,
        occurred_at=payload.occurred_at,
        origin=payload.origin,
    )
    outcome = await ledger.complete(event)
    message = "Completion credited" if outcome.credited else "Completion already credited"
    return APIResponse.success(outcome.to_dict(), message=message)


@router.get("/learners/{learner_id}/summary")
async def get_summary(
    learner_id: str,
    queries: ProgressQueryService = Depends(get_query_service),
) -> Dict[str, Any]:
    summary = await queries.get_summary(learner_id)
    return APIResponse.success(summary.to_dict())


@router.get("/learners/{learner_id}/completions")
async def get_completions(
    learner_id: str,
    limit: int = Query(50, ge=1, le=MAX_COMPLETIONS_PAGE),
    queries: ProgressQueryService = Depends(get_query_service),
) -> Dict[str, Any]:
    events = await queries.get_completions(learner_id, limit=limit)
    return APIResponse.success([event.to_dict() for event in events])


@router.get("/learners/{learner_id}/balance")
async def get_balance(
    learner_id: str,
    queries: ProgressQueryService = Depends(get_query_service),
) -> Dict[str, Any]:
    balance = await queries.get_balance(learner_id)
    return APIResponse.success(balance.to_dict())


@router.get("/learners/{learner_id}/badges")
async def get_badges(
    learner_id: str,
    queries: ProgressQueryService = Depends(get_query_service),
) -> Dict[str, Any]:
    progress = await queries.get_badge_progress(learner_id)
    return APIResponse.success(progress)


@router.post("/learners/{learner_id}/reconcile")
async def reconcile_summary(
    learner_id: str,
    strict: bool = Query(False, description="Report divergence as 409 instead of repairing it"),
    ledger: LedgerService = Depends(get_ledger_service),
) -> Dict[str, Any]:
    summary = await ledger.aggregator.reconcile(learner_id, strict=strict)
    logger.info(f"Reconciled summary for learner {learner_id}")
    return APIResponse.success(summary.to_dict(), message="Summary reconciled")
