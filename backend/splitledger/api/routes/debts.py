"""
Debt summary routes. Read-only views over open obligations, cached per user.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitledger.db.session import get_db
from splitledger.core.config import settings
from splitledger.models.user import User
from splitledger.schemas.debt import DetailedDebts, UserDebtOverview
from splitledger.api.dependencies import get_cache, get_current_user
from splitledger.services import balance_service
from splitledger.services.cache_service import ReadThroughCache, user_debts_detailed_key, user_debts_key
from splitledger.services.group_service import check_group_access

router = APIRouter(prefix="/debts", tags=["debts"])


@router.get("", response_model=UserDebtOverview)
async def get_user_debts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Totals, per-group balances, urgent debts and recent settlements."""
    key = user_debts_key(current_user.id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    overview = balance_service.get_user_debt_overview(current_user.id, db)
    cache.set(key, overview, settings.DEBT_CACHE_TTL_SECONDS)
    return overview


@router.get("/detailed", response_model=DetailedDebts)
async def get_detailed_debts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Pairwise debts across every group."""
    key = user_debts_detailed_key(current_user.id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    detailed = balance_service.get_detailed_debts(current_user.id, db)
    cache.set(key, detailed, settings.DEBT_CACHE_TTL_SECONDS)
    return detailed


@router.get("/detailed/{group_id}", response_model=DetailedDebts)
async def get_detailed_group_debts(
    group_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache)
):
    """Pairwise debts inside one group."""
    check_group_access(group_id, current_user.id, db)

    key = user_debts_detailed_key(current_user.id, group_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    detailed = balance_service.get_detailed_debts(current_user.id, db, group_id=group_id)
    cache.set(key, detailed, settings.DEBT_CACHE_TTL_SECONDS)
    return detailed
