"""
Expense management routes.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from splitledger.db.session import get_db
from splitledger.core.money import to_cents
from splitledger.models.user import User
from splitledger.schemas.common import Pagination
from splitledger.schemas.expense import ExpenseListResponse, ExpenseResponse, ExpenseUpdate, PersonalExpenseCreate
from splitledger.api.dependencies import get_cache, get_current_user
from splitledger.services import expense_service
from splitledger.services.cache_service import ReadThroughCache, user_expenses_key

router = APIRouter(prefix="/expenses", tags=["expenses"])

PERSONAL_LIST_TTL_SECONDS = 60


@router.post("/personal", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_personal_expense(
    expense_data: PersonalExpenseCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Create a personal expense."""
    expense = expense_service.create_personal_expense(
        actor_id=current_user.id,
        amount_cents=to_cents(expense_data.amount),
        description=expense_data.description,
        category_name=expense_data.category,
        expense_date=expense_data.expense_date,
        notes=expense_data.notes,
        payment_method=expense_data.payment_method,
        db=db,
        cache=cache,
    )
    return ExpenseResponse.from_expense(expense)


@router.get("/personal", response_model=ExpenseListResponse)
async def list_personal_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """List the current user's personal expenses, newest first."""
    key = user_expenses_key(current_user.id, page, limit, date_from, date_to)
    cached = cache.get(key)
    if cached is not None:
        return cached

    expenses, total = expense_service.list_personal_expenses(
        current_user.id, db, page=page, limit=limit, date_from=date_from, date_to=date_to
    )
    response = ExpenseListResponse(
        expenses=[ExpenseResponse.from_expense(e) for e in expenses],
        pagination=Pagination.build(page, limit, total),
    )
    cache.set(key, response, PERSONAL_LIST_TTL_SECONDS)
    return response


@router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get one expense the current user is involved in."""
    expense = expense_service.get_expense(expense_id, current_user.id, db)
    return ExpenseResponse.from_expense(expense)


@router.patch("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: int,
    expense_data: ExpenseUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Update a personal expense. Group expenses cannot be edited."""
    expense = expense_service.update_personal_expense(
        expense_id,
        current_user.id,
        amount_cents=to_cents(expense_data.amount) if expense_data.amount is not None else None,
        description=expense_data.description,
        category_name=expense_data.category,
        expense_date=expense_data.expense_date,
        notes=expense_data.notes,
        payment_method=expense_data.payment_method,
        db=db,
        cache=cache,
    )
    return ExpenseResponse.from_expense(expense)


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Soft-delete an expense."""
    expense_service.delete_expense(expense_id, current_user.id, db, cache=cache)
    return None
