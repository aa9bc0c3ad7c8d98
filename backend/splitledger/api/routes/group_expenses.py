"""
Group expense routes.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from splitledger.db.session import get_db
from splitledger.core.money import to_cents
from splitledger.models.user import User
from splitledger.schemas.common import Pagination
from splitledger.schemas.expense import ExpenseListResponse, ExpenseResponse, GroupExpenseCreate
from splitledger.api.dependencies import get_cache, get_current_user
from splitledger.services import expense_service
from splitledger.services.cache_service import ReadThroughCache, group_expenses_key
from splitledger.services.group_service import check_group_access

router = APIRouter(prefix="/groups", tags=["group-expenses"])

GROUP_LIST_TTL_SECONDS = 60


@router.post("/{group_id}/expenses", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_group_expense(
    group_id: int,
    expense_data: GroupExpenseCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Create a group expense paid by the current user and split across all active members."""
    expense = expense_service.create_group_expense(
        group_id=group_id,
        actor_id=current_user.id,
        amount_cents=to_cents(expense_data.amount),
        description=expense_data.description,
        split_type=expense_data.split_type,
        split_details=expense_data.split_details,
        category_name=expense_data.category,
        expense_date=expense_data.expense_date,
        db=db,
        cache=cache,
    )
    return ExpenseResponse.from_expense(expense)


@router.get("/{group_id}/expenses", response_model=ExpenseListResponse)
async def list_group_expenses(
    group_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_settled: Optional[bool] = None,
    paid_by: Optional[int] = None,
    sort_by: str = "expense_date",
    sort_order: str = "desc",
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """List a group's expenses with each member's obligation."""
    check_group_access(group_id, current_user.id, db)

    key = group_expenses_key(group_id, page, limit, is_settled, paid_by, sort_by, sort_order)
    cached = cache.get(key)
    if cached is not None:
        return cached

    expenses, total = expense_service.list_group_expenses(
        group_id, db, page=page, limit=limit, is_settled=is_settled,
        paid_by=paid_by, sort_by=sort_by, sort_order=sort_order
    )
    response = ExpenseListResponse(
        expenses=[ExpenseResponse.from_expense(e) for e in expenses],
        pagination=Pagination.build(page, limit, total),
    )
    cache.set(key, response, GROUP_LIST_TTL_SECONDS)
    return response
