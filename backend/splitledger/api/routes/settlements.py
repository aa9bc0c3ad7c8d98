"""
Settlement routes: pay a group member, confirm or dispute, browse history.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from splitledger.db.session import get_db
from splitledger.core.config import settings
from splitledger.core.money import to_cents
from splitledger.models.user import User
from splitledger.schemas.settlement import (
    PartialSettlementItem, SettleDebtResponse, SettledExpenseItem, SettlementConfirm, SettlementCreate,
    SettlementDetails, SettlementHistory, SettlementHistoryFilters, SettlementOutcomeSummary,
    SettlementResponse,
)
from splitledger.api.dependencies import get_cache, get_current_user
from splitledger.services import confirmation_service, settlement_service
from splitledger.services.cache_service import ReadThroughCache, settlement_history_key

router = APIRouter(prefix="/settlements", tags=["settlements"])


@router.post(
    "/groups/{group_id}/users/{to_user_id}",
    response_model=SettleDebtResponse,
    status_code=status.HTTP_201_CREATED
)
async def settle_debt(
    group_id: int,
    to_user_id: int,
    settlement_data: SettlementCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Pay another member toward your debts to them in this group, oldest first."""
    outcome = settlement_service.settle_debt(
        group_id=group_id,
        actor_id=current_user.id,
        to_user_id=to_user_id,
        amount_cents=to_cents(settlement_data.amount),
        settlement_method=settlement_data.settlement_method,
        description=settlement_data.description,
        trusted=settlement_data.trusted,
        db=db,
        cache=cache,
    )
    allocation = outcome.allocation
    partial = allocation.partial
    return SettleDebtResponse(
        settlement=SettlementResponse.model_validate(outcome.settlement),
        settled_expenses=[
            SettledExpenseItem(
                expense_id=line.expense_id,
                description=line.description,
                settled_amount=line.settled_amount_cents,
            )
            for line in allocation.settled
        ],
        partially_settled_expenses=[
            PartialSettlementItem(
                expense_id=partial.expense_id,
                description=partial.description,
                partial_amount=partial.partial_amount_cents,
                total_owed=partial.total_owed_cents,
            )
        ] if partial else [],
        summary=SettlementOutcomeSummary(
            total_settled=allocation.allocated_cents,
            expenses_fully_settled=len(allocation.settled),
            expenses_partially_settled=1 if partial else 0,
            remaining_debt=outcome.remaining_debt_cents,
            is_fully_settled=outcome.is_fully_settled,
        ),
    )


@router.post("/{settlement_id}/confirm", response_model=SettlementResponse)
async def confirm_settlement(
    settlement_id: int,
    confirmation: SettlementConfirm,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Confirm or dispute a pending settlement you are a party to."""
    settlement = confirmation_service.confirm_settlement(
        settlement_id,
        current_user.id,
        confirmation.confirm,
        dispute_reason=confirmation.dispute_reason,
        db=db,
        cache=cache,
    )
    return SettlementResponse.model_validate(settlement)


@router.get("/history", response_model=SettlementHistory)
async def get_settlement_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    status_filter: Optional[str] = Query(None, alias="status"),
    group_id: Optional[int] = None,
    other_user_id: Optional[int] = None,
    direction: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Settlements you sent or received."""
    filters = SettlementHistoryFilters(
        page=page,
        limit=limit,
        status=status_filter,
        group_id=group_id,
        other_user_id=other_user_id,
        direction=direction,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    key = settlement_history_key(
        current_user.id, page, limit, status_filter, group_id, other_user_id,
        direction, date_from, date_to, sort_by, sort_order
    )
    cached = cache.get(key)
    if cached is not None:
        return cached

    history = settlement_service.get_settlement_history(current_user.id, filters, db)
    cache.set(key, history, settings.SETTLEMENT_CACHE_TTL_SECONDS)
    return history


@router.get("/{settlement_id}", response_model=SettlementDetails)
async def get_settlement_details(
    settlement_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """One settlement you are a party to."""
    return settlement_service.get_settlement_details(settlement_id, current_user.id, db)
