"""
Expense service: the ledger's write path.

An expense and its participant obligations are written in one transaction.
Group expenses are immutable once created; personal expenses stay editable.
"""
import logging
from datetime import date
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from splitledger.core.exceptions import (
    AccessDeniedError, ConsistencyError, LedgerValidationError, NotFoundError,
)
from splitledger.core.utils import utcnow
from splitledger.db.session import unit_of_work
from splitledger.models.expense import (
    Expense, ExpenseCategory, ExpenseParticipant, ExpenseScope,
)
from splitledger.models.settlement import Settlement, SettlementAllocation, SettlementStatus
from splitledger.services.cache_service import (
    CacheBackend, debt_cache_keys, group_cache_keys, invalidate_quietly, user_expenses_key,
)
from splitledger.services.group_service import get_active_members, get_group
from splitledger.services.split_service import ObligationDraft, compute_split, parse_split_policy

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ["cash", "credit_card", "debit_card", "digital_wallet", "bank_transfer"]
GROUP_EXPENSE_SORT_FIELDS = {
    "expense_date": Expense.expense_date,
    "amount": Expense.amount_cents,
    "created_at": Expense.created_at,
}


def _validate_basics(amount_cents: int, description: str) -> str:
    if amount_cents is None or amount_cents <= 0:
        raise LedgerValidationError("Amount must be greater than 0")
    if not description or not description.strip():
        raise LedgerValidationError("Description is required")
    return description.strip()


def resolve_category(category_name: Optional[str], db: Session) -> Optional[ExpenseCategory]:
    """Find a category by name (case-insensitive), creating it if missing."""
    if not category_name or not category_name.strip():
        return None
    name = category_name.strip()
    category = db.query(ExpenseCategory).filter(
        func.lower(ExpenseCategory.name) == name.lower()
    ).first()
    if category is None:
        category = ExpenseCategory(name=name, is_default=False)
        db.add(category)
        db.flush()
        logger.info(f"Created new category: {name}")
    return category


def record_participants(expense: Expense, drafts: Sequence[ObligationDraft], db: Session) -> List[ExpenseParticipant]:
    """Insert one obligation row per draft. Caller owns the transaction."""
    rows = []
    for draft in drafts:
        row = ExpenseParticipant(
            expense_id=expense.id,
            user_id=draft.user_id,
            amount_owed_cents=draft.amount_owed_cents,
            percentage=draft.percentage,
            is_settled=draft.is_settled,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def _verify_persisted(expense: Expense, rows: Sequence[ExpenseParticipant]) -> None:
    payer_rows = [r for r in rows if r.user_id == expense.paid_by]
    if len(payer_rows) != 1 or payer_rows[0].amount_owed_cents != 0:
        raise ConsistencyError(f"Expense {expense.id}: payer obligation row is missing or owes money")
    owed_by_others = sum(r.amount_owed_cents for r in rows if r.user_id != expense.paid_by)
    if owed_by_others > expense.amount_cents:
        raise ConsistencyError(
            f"Expense {expense.id}: obligations total {owed_by_others} cents, exceeds {expense.amount_cents}"
        )


def create_group_expense(
    group_id: int,
    actor_id: int,
    amount_cents: int,
    description: str,
    split_type: str = "equal",
    split_details: Optional[Sequence] = None,
    category_name: Optional[str] = None,
    expense_date: Optional[date] = None,
    db: Session = None,
    cache: Optional[CacheBackend] = None,
) -> Expense:
    """
    Create a group expense paid by the actor, split across all active members.

    Every input is validated and the split computed before the first write;
    the expense and all obligations commit together or not at all.
    """
    description = _validate_basics(amount_cents, description)
    policy = parse_split_policy(split_type, split_details)

    with unit_of_work(db):
        get_group(group_id, db)
        members = get_active_members(group_id, db)
        if not members:
            raise NotFoundError("No active members found in this group")
        member_ids = [m.user_id for m in members]
        if actor_id not in member_ids:
            raise AccessDeniedError("You must be a member of the group to create expenses")
        if len(member_ids) == 1 and member_ids[0] != actor_id:
            raise LedgerValidationError("Single group member must be the expense creator")

        drafts = compute_split(member_ids, amount_cents, actor_id, policy)

        category = resolve_category(category_name, db)
        expense = Expense(
            amount_cents=amount_cents,
            description=description,
            category_id=category.id if category else None,
            expense_date=expense_date or date.today(),
            created_by=actor_id,
            paid_by=actor_id,
            scope=ExpenseScope.GROUP,
            group_id=group_id,
            split_type=policy.split_type,
            is_settled=all(d.is_settled for d in drafts),
        )
        db.add(expense)
        db.flush()

        rows = record_participants(expense, drafts, db)
        try:
            _verify_persisted(expense, rows)
        except ConsistencyError as e:
            logger.critical(f"Rolling back group expense: {e.message}")
            raise

    db.refresh(expense)
    logger.info(
        f"Created group expense {expense.id} in group {group_id}: {amount_cents} cents, "
        f"{policy.split_type.value} split among {len(member_ids)} members"
    )

    invalidate_quietly(
        cache,
        debt_cache_keys(member_ids)
        + group_cache_keys(group_id)
        + [user_expenses_key(uid, "*") for uid in member_ids]
    )
    return expense


def create_personal_expense(
    actor_id: int,
    amount_cents: int,
    description: str,
    category_name: Optional[str] = None,
    expense_date: Optional[date] = None,
    notes: Optional[str] = None,
    payment_method: Optional[str] = None,
    db: Session = None,
    cache: Optional[CacheBackend] = None,
) -> Expense:
    """Create a personal expense. It has no counterparty, so nothing is ever owed."""
    description = _validate_basics(amount_cents, description)
    if payment_method and payment_method not in PAYMENT_METHODS:
        raise LedgerValidationError("Invalid payment method")

    with unit_of_work(db):
        category = resolve_category(category_name, db)
        expense = Expense(
            amount_cents=amount_cents,
            description=description,
            notes=notes,
            payment_method=payment_method,
            category_id=category.id if category else None,
            expense_date=expense_date or date.today(),
            created_by=actor_id,
            paid_by=actor_id,
            scope=ExpenseScope.PERSONAL,
            group_id=None,
            split_type=None,
            is_settled=True,
        )
        db.add(expense)

    db.refresh(expense)
    logger.info(f"Created personal expense {expense.id} for user {actor_id}: {amount_cents} cents")
    invalidate_quietly(cache, [user_expenses_key(actor_id, "*")])
    return expense


def _load_expense(expense_id: int, db: Session) -> Expense:
    expense = db.query(Expense).options(
        joinedload(Expense.participants),
        joinedload(Expense.category),
    ).filter(Expense.id == expense_id, Expense.is_deleted.is_(False)).first()
    if not expense:
        raise NotFoundError("Expense not found")
    return expense


def get_expense(expense_id: int, actor_id: int, db: Session) -> Expense:
    """Fetch an expense visible to the actor (creator, payer or participant)."""
    expense = _load_expense(expense_id, db)
    involved = {expense.created_by, expense.paid_by} | {p.user_id for p in expense.participants}
    if actor_id not in involved:
        raise AccessDeniedError("Access denied to this expense")
    return expense


def update_personal_expense(
    expense_id: int,
    actor_id: int,
    amount_cents: Optional[int] = None,
    description: Optional[str] = None,
    category_name: Optional[str] = None,
    expense_date: Optional[date] = None,
    notes: Optional[str] = None,
    payment_method: Optional[str] = None,
    db: Session = None,
    cache: Optional[CacheBackend] = None,
) -> Expense:
    """Edit a personal expense. Group expenses are refused: their obligations are fixed."""
    with unit_of_work(db):
        expense = _load_expense(expense_id, db)
        if expense.created_by != actor_id:
            raise AccessDeniedError("Only the creator can edit this expense")
        if expense.scope == ExpenseScope.GROUP:
            raise LedgerValidationError("Group expenses cannot be edited once obligations exist")

        if amount_cents is not None:
            if amount_cents <= 0:
                raise LedgerValidationError("Amount must be greater than 0")
            expense.amount_cents = amount_cents
        if description is not None:
            if not description.strip():
                raise LedgerValidationError("Description is required")
            expense.description = description.strip()
        if category_name is not None:
            category = resolve_category(category_name, db)
            expense.category_id = category.id if category else None
        if expense_date is not None:
            expense.expense_date = expense_date
        if notes is not None:
            expense.notes = notes
        if payment_method is not None:
            if payment_method not in PAYMENT_METHODS:
                raise LedgerValidationError("Invalid payment method")
            expense.payment_method = payment_method

    db.refresh(expense)
    invalidate_quietly(cache, [user_expenses_key(actor_id, "*")])
    return expense


def delete_expense(expense_id: int, actor_id: int, db: Session, cache: Optional[CacheBackend] = None) -> Expense:
    """
    Soft-delete an expense the actor created.

    A group expense can only be withdrawn while none of its debts have been
    settled or claimed by a pending settlement.
    """
    with unit_of_work(db):
        expense = _load_expense(expense_id, db)
        if expense.created_by != actor_id:
            raise AccessDeniedError("Only the creator can delete this expense")

        if expense.scope == ExpenseScope.GROUP:
            debtor_rows = [p for p in expense.participants if p.user_id != expense.paid_by]
            if any(p.is_settled and p.amount_owed_cents > 0 for p in debtor_rows):
                raise LedgerValidationError("Cannot delete a group expense with settled obligations")
            reserved = db.query(SettlementAllocation.id).join(Settlement).filter(
                SettlementAllocation.expense_id == expense.id,
                Settlement.status == SettlementStatus.PENDING
            ).first()
            if reserved:
                raise LedgerValidationError("Cannot delete a group expense with a pending settlement")

        expense.is_deleted = True
        expense.deleted_at = utcnow()

    logger.info(f"Soft-deleted expense {expense.id} by user {actor_id}")
    affected = [expense.created_by] + [p.user_id for p in expense.participants]
    keys = [user_expenses_key(uid, "*") for uid in set(affected)]
    if expense.scope == ExpenseScope.GROUP:
        keys += debt_cache_keys(affected) + group_cache_keys(expense.group_id)
    invalidate_quietly(cache, keys)
    return expense


def mark_obligation_settled(expense_id: int, user_id: int, db: Session) -> bool:
    """
    Flip one obligation to settled. Returns False if it was already settled.

    Guarded UPDATE, so two concurrent retirements cannot both count it.
    Caller owns the transaction.
    """
    flipped = db.query(ExpenseParticipant).filter(
        ExpenseParticipant.expense_id == expense_id,
        ExpenseParticipant.user_id == user_id,
        ExpenseParticipant.is_settled.is_(False)
    ).update({ExpenseParticipant.is_settled: True}, synchronize_session=False)
    return flipped == 1


def mark_expense_settled_if_complete(expense_id: int, db: Session) -> bool:
    """Flip the expense's settled flag once no obligation on it is open.

    Must run in the same transaction as the obligation update that
    preceded it.
    """
    db.flush()
    open_count = db.query(func.count(ExpenseParticipant.id)).filter(
        ExpenseParticipant.expense_id == expense_id,
        ExpenseParticipant.is_settled.is_(False)
    ).scalar()
    if open_count:
        return False
    flipped = db.query(Expense).filter(
        Expense.id == expense_id,
        Expense.is_settled.is_(False)
    ).update({Expense.is_settled: True}, synchronize_session=False)
    return flipped == 1


def list_personal_expenses(
    actor_id: int,
    db: Session,
    page: int = 1,
    limit: int = 20,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Tuple[List[Expense], int]:
    """List the actor's personal expenses, newest first."""
    query = db.query(Expense).filter(
        Expense.created_by == actor_id,
        Expense.scope == ExpenseScope.PERSONAL,
        Expense.is_deleted.is_(False)
    )
    if date_from:
        query = query.filter(Expense.expense_date >= date_from)
    if date_to:
        query = query.filter(Expense.expense_date <= date_to)

    total = query.count()
    expenses = query.options(joinedload(Expense.category)).order_by(
        Expense.expense_date.desc(), Expense.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()
    return expenses, total


def list_group_expenses(
    group_id: int,
    db: Session,
    page: int = 1,
    limit: int = 20,
    is_settled: Optional[bool] = None,
    paid_by: Optional[int] = None,
    sort_by: str = "expense_date",
    sort_order: str = "desc",
) -> Tuple[List[Expense], int]:
    """List a group's expenses with their obligations."""
    column = GROUP_EXPENSE_SORT_FIELDS.get(sort_by, Expense.expense_date)
    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()

    query = db.query(Expense).filter(
        Expense.group_id == group_id,
        Expense.scope == ExpenseScope.GROUP,
        Expense.is_deleted.is_(False)
    )
    if is_settled is not None:
        query = query.filter(Expense.is_settled.is_(is_settled))
    if paid_by is not None:
        query = query.filter(Expense.paid_by == paid_by)

    total = query.count()
    expenses = query.options(
        joinedload(Expense.participants),
        joinedload(Expense.category),
    ).order_by(ordering, Expense.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return expenses, total
