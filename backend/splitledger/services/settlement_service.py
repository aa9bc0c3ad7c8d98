"""
Settlement service: applies a payment to the payer's open debts toward one
receiver, oldest first.

Fully covered obligations are reserved by the new settlement and retired
when both parties confirm it. At most one obligation per settlement is
touched without being covered; it is reported but the ledger keeps its full
amount, so a later settlement starts from the original figure again.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, joinedload

from splitledger.core.config import settings
from splitledger.core.exceptions import (
    AccessDeniedError, ConsistencyError, LedgerValidationError, NotFoundError,
)
from splitledger.core.money import format_cents
from splitledger.core.utils import utcnow
from splitledger.db.session import unit_of_work
from splitledger.models.expense import Expense, ExpenseParticipant, ExpenseScope
from splitledger.models.settlement import Settlement, SettlementAllocation, SettlementStatus
from splitledger.models.user import User
from splitledger.schemas.common import Pagination
from splitledger.schemas.settlement import (
    ConfirmationStatus, HistorySummary, PartyRef, SettlementDetails, SettlementHistory,
    SettlementHistoryFilters, SettlementHistoryItem,
)
from splitledger.services.cache_service import (
    CacheBackend, debt_cache_keys, group_cache_keys, invalidate_quietly,
)
from splitledger.services.expense_service import mark_expense_settled_if_complete, mark_obligation_settled
from splitledger.services.group_service import check_group_access, is_active_member

logger = logging.getLogger(__name__)

SETTLEMENT_METHODS = ["cash", "bank_transfer", "digital_wallet", "credit_card", "debit_card", "other"]
HISTORY_SORT_FIELDS = {
    "created_at": Settlement.created_at,
    "amount": Settlement.amount_cents,
    "confirmed_at": Settlement.confirmed_at,
    "status": Settlement.status,
}


@dataclass
class OutstandingDebt:
    """One open obligation of the payer toward the receiver."""
    expense_id: int
    description: str
    expense_date: date
    created_at: datetime
    amount_cents: int


@dataclass
class SettledLine:
    expense_id: int
    description: str
    settled_amount_cents: int


@dataclass
class PartialLine:
    expense_id: int
    description: str
    partial_amount_cents: int
    total_owed_cents: int


@dataclass
class Allocation:
    """How a payment spreads over outstanding debts."""
    settled: List[SettledLine] = field(default_factory=list)
    partial: Optional[PartialLine] = None

    @property
    def allocated_cents(self) -> int:
        covered = sum(line.settled_amount_cents for line in self.settled)
        return covered + (self.partial.partial_amount_cents if self.partial else 0)


@dataclass
class SettlementOutcome:
    settlement: Settlement
    allocation: Allocation
    remaining_debt_cents: int

    @property
    def is_fully_settled(self) -> bool:
        return self.remaining_debt_cents == 0


def fifo_key(debt: OutstandingDebt):
    return (debt.expense_date, debt.created_at, debt.expense_id)


def allocate_fifo(debts: Sequence[OutstandingDebt], amount_cents: int) -> Allocation:
    """
    Walk debts oldest first, retiring each one the remaining amount covers.

    The first debt larger than what is left is recorded as partial and the
    walk stops. Overpaying is rejected outright.
    """
    if amount_cents <= 0:
        raise LedgerValidationError("Settlement amount must be greater than 0")
    total = sum(d.amount_cents for d in debts)
    if amount_cents > total:
        raise LedgerValidationError(
            f"Settlement amount ({format_cents(amount_cents)}) cannot exceed total debt ({format_cents(total)})",
            details={"amount": amount_cents, "total_debt": total},
        )

    allocation = Allocation()
    remaining = amount_cents
    for debt in sorted(debts, key=fifo_key):
        if remaining <= 0:
            break
        if debt.amount_cents <= remaining:
            allocation.settled.append(SettledLine(debt.expense_id, debt.description, debt.amount_cents))
            remaining -= debt.amount_cents
        else:
            allocation.partial = PartialLine(debt.expense_id, debt.description, remaining, debt.amount_cents)
            remaining = 0

    if allocation.allocated_cents != amount_cents:
        raise ConsistencyError(
            f"Allocation error: applied {allocation.allocated_cents} cents of a {amount_cents} cent payment"
        )
    return allocation


def _reserved_expense_ids(debtor_id: int):
    """Expenses whose obligation for debtor_id a pending settlement already covers."""
    return select(SettlementAllocation.expense_id).join(
        Settlement, SettlementAllocation.settlement_id == Settlement.id
    ).where(
        SettlementAllocation.user_id == debtor_id,
        Settlement.status == SettlementStatus.PENDING
    )


def outstanding_debts(
    debtor_id: int,
    creditor_id: int,
    group_id: int,
    db: Session,
    lock: bool = False,
) -> List[OutstandingDebt]:
    """Open, unreserved obligations of debtor toward creditor in a group, oldest first."""
    query = db.query(ExpenseParticipant, Expense).join(
        Expense, ExpenseParticipant.expense_id == Expense.id
    ).filter(
        Expense.paid_by == creditor_id,
        Expense.group_id == group_id,
        Expense.scope == ExpenseScope.GROUP,
        Expense.is_deleted.is_(False),
        Expense.is_settled.is_(False),
        ExpenseParticipant.user_id == debtor_id,
        ExpenseParticipant.is_settled.is_(False),
        ExpenseParticipant.amount_owed_cents > 0,
        ExpenseParticipant.expense_id.not_in(_reserved_expense_ids(debtor_id))
    ).order_by(Expense.expense_date.asc(), Expense.created_at.asc(), Expense.id.asc())
    if lock:
        query = query.with_for_update(of=ExpenseParticipant)

    return [
        OutstandingDebt(
            expense_id=expense.id,
            description=expense.description,
            expense_date=expense.expense_date,
            created_at=expense.created_at,
            amount_cents=participant.amount_owed_cents,
        )
        for participant, expense in query.all()
    ]


def retire_allocations(settlement: Settlement, db: Session) -> List[int]:
    """
    Mark every obligation reserved by the settlement as settled, then flip
    any expense left with no open obligation. Caller owns the transaction.
    """
    retired = []
    for allocation in settlement.allocations:
        if mark_obligation_settled(allocation.expense_id, allocation.user_id, db):
            retired.append(allocation.expense_id)
        mark_expense_settled_if_complete(allocation.expense_id, db)
    return retired


def settle_debt(
    group_id: int,
    actor_id: int,
    to_user_id: int,
    amount_cents: int,
    settlement_method: str = "cash",
    description: Optional[str] = None,
    trusted: bool = False,
    db: Session = None,
    cache: Optional[CacheBackend] = None,
) -> SettlementOutcome:
    """
    Record that the actor paid to_user amount_cents toward debts in a group.

    The settlement starts pending with the actor's confirmation already set.
    With trusted=True (allowed only when ALLOW_TRUSTED_SETTLEMENTS is on) it is
    confirmed immediately and the covered obligations are retired in the
    same transaction.
    """
    if amount_cents is None or amount_cents <= 0:
        raise LedgerValidationError("Settlement amount must be greater than 0")
    if actor_id == to_user_id:
        raise LedgerValidationError("Cannot settle debt with yourself")
    if settlement_method not in SETTLEMENT_METHODS:
        raise LedgerValidationError(f"Invalid settlement method. Must be one of: {', '.join(SETTLEMENT_METHODS)}")
    if trusted and not settings.ALLOW_TRUSTED_SETTLEMENTS:
        raise LedgerValidationError("Single-step settlements are disabled")

    with unit_of_work(db):
        group = check_group_access(group_id, actor_id, db)
        if not is_active_member(group_id, to_user_id, db):
            raise AccessDeniedError("Recipient is not a member of this group")

        debts = outstanding_debts(actor_id, to_user_id, group_id, db, lock=True)
        if not debts:
            raise NotFoundError("No unsettled debts found between these users in this group")

        allocation = allocate_fifo(debts, amount_cents)

        now = utcnow()
        settlement = Settlement(
            from_user_id=actor_id,
            to_user_id=to_user_id,
            group_id=group_id,
            created_by=actor_id,
            amount_cents=amount_cents,
            description=description or f"Debt settlement in {group.name}",
            settlement_method=settlement_method,
            status=SettlementStatus.CONFIRMED if trusted else SettlementStatus.PENDING,
            confirmed_by_payer=True,
            confirmed_by_receiver=trusted,
            confirmed_at=now if trusted else None,
        )
        db.add(settlement)
        db.flush()

        for line in allocation.settled:
            settlement.allocations.append(SettlementAllocation(
                settlement_id=settlement.id,
                expense_id=line.expense_id,
                user_id=actor_id,
                amount_cents=line.settled_amount_cents,
            ))
        db.flush()

        if trusted:
            retire_allocations(settlement, db)

    remaining = sum(d.amount_cents for d in outstanding_debts(actor_id, to_user_id, group_id, db))
    db.refresh(settlement)

    invalidate_quietly(cache, debt_cache_keys([actor_id, to_user_id]) + group_cache_keys(group_id))
    logger.info(
        f"Settlement {settlement.id} ({settlement.status.value}): user {actor_id} paid user {to_user_id} "
        f"{amount_cents} cents in group {group_id}; {len(allocation.settled)} expenses covered, "
        f"{remaining} cents remaining"
    )
    return SettlementOutcome(settlement=settlement, allocation=allocation, remaining_debt_cents=remaining)


def _party(user: User) -> PartyRef:
    return PartyRef(id=user.id, name=user.full_name, email=user.email)


def get_settlement_history(user_id: int, filters: SettlementHistoryFilters, db: Session) -> SettlementHistory:
    """Settlements the user sent or received, filtered, sorted and paginated."""
    limit = min(filters.limit, settings.SETTLEMENT_HISTORY_MAX_LIMIT)
    sort_by = filters.sort_by if filters.sort_by in HISTORY_SORT_FIELDS else "created_at"
    sort_order = "asc" if filters.sort_order.lower() == "asc" else "desc"
    filters = filters.model_copy(update={"limit": limit, "sort_by": sort_by, "sort_order": sort_order})

    query = db.query(Settlement).filter(
        or_(Settlement.from_user_id == user_id, Settlement.to_user_id == user_id)
    )
    if filters.status and filters.status != "all":
        try:
            query = query.filter(Settlement.status == SettlementStatus(filters.status))
        except ValueError:
            raise LedgerValidationError(f"Invalid status filter: {filters.status}")
    if filters.group_id is not None:
        query = query.filter(Settlement.group_id == filters.group_id)
    if filters.other_user_id is not None:
        query = query.filter(or_(
            Settlement.from_user_id == filters.other_user_id,
            Settlement.to_user_id == filters.other_user_id
        ))
    if filters.direction == "outgoing":
        query = query.filter(Settlement.from_user_id == user_id)
    elif filters.direction == "incoming":
        query = query.filter(Settlement.to_user_id == user_id)
    if filters.date_from:
        query = query.filter(Settlement.created_at >= datetime.combine(filters.date_from, time.min))
    if filters.date_to:
        query = query.filter(Settlement.created_at <= datetime.combine(filters.date_to, time.max))

    total = query.count()
    column = HISTORY_SORT_FIELDS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    settlements = query.options(
        joinedload(Settlement.from_user),
        joinedload(Settlement.to_user),
        joinedload(Settlement.group),
    ).order_by(ordering, Settlement.id.desc()).offset((filters.page - 1) * limit).limit(limit).all()

    items = []
    for s in settlements:
        outgoing = s.from_user_id == user_id
        other = s.to_user if outgoing else s.from_user
        confirmed_by_user = s.confirmed_by_payer if outgoing else s.confirmed_by_receiver
        confirmed_by_other = s.confirmed_by_receiver if outgoing else s.confirmed_by_payer
        items.append(SettlementHistoryItem(
            id=s.id,
            amount=s.amount_cents,
            description=s.description,
            method=s.settlement_method,
            status=s.status.value,
            direction="outgoing" if outgoing else "incoming",
            other_party=_party(other),
            group_id=s.group_id,
            group_name=s.group.name if s.group else None,
            confirmation_status=ConfirmationStatus(
                confirmed_by_user=confirmed_by_user,
                confirmed_by_other=confirmed_by_other,
                fully_confirmed=s.fully_confirmed,
                pending_confirmation=s.status == SettlementStatus.PENDING,
                disputed=s.status == SettlementStatus.DISPUTED,
            ),
            created_at=s.created_at,
            confirmed_at=s.confirmed_at,
            updated_at=s.updated_at,
            display_text=(
                f"You paid {other.full_name} {format_cents(s.amount_cents)}" if outgoing
                else f"{other.full_name} paid you {format_cents(s.amount_cents)}"
            ),
            action_required=s.status == SettlementStatus.PENDING and not confirmed_by_user,
        ))

    summary = HistorySummary(
        total_settlements=total,
        total_amount=sum(i.amount for i in items),
        outgoing_amount=sum(i.amount for i in items if i.direction == "outgoing"),
        incoming_amount=sum(i.amount for i in items if i.direction == "incoming"),
        pending_count=sum(1 for i in items if i.status == SettlementStatus.PENDING.value),
        confirmed_count=sum(1 for i in items if i.status == SettlementStatus.CONFIRMED.value),
        disputed_count=sum(1 for i in items if i.status == SettlementStatus.DISPUTED.value),
        action_required_count=sum(1 for i in items if i.action_required),
    )
    return SettlementHistory(
        settlements=items,
        pagination=Pagination.build(filters.page, limit, total),
        filters=filters,
        summary=summary,
    )


def get_settlement_details(settlement_id: int, user_id: int, db: Session) -> SettlementDetails:
    """One settlement, visible only to its payer and receiver."""
    settlement = db.query(Settlement).options(
        joinedload(Settlement.from_user),
        joinedload(Settlement.to_user),
        joinedload(Settlement.group),
    ).filter(
        Settlement.id == settlement_id,
        or_(Settlement.from_user_id == user_id, Settlement.to_user_id == user_id)
    ).first()
    if not settlement:
        raise NotFoundError("Settlement not found or access denied")

    role = "payer" if settlement.from_user_id == user_id else "receiver"
    own_flag = settlement.confirmed_by_payer if role == "payer" else settlement.confirmed_by_receiver
    return SettlementDetails(
        id=settlement.id,
        amount=settlement.amount_cents,
        description=settlement.description,
        method=settlement.settlement_method,
        status=settlement.status.value,
        payer=_party(settlement.from_user),
        receiver=_party(settlement.to_user),
        group_id=settlement.group_id,
        group_name=settlement.group.name if settlement.group else None,
        confirmed_by_payer=settlement.confirmed_by_payer,
        confirmed_by_receiver=settlement.confirmed_by_receiver,
        fully_confirmed=settlement.fully_confirmed,
        dispute_reason=settlement.dispute_reason,
        user_role=role,
        can_confirm=settlement.status == SettlementStatus.PENDING and not own_flag,
        created_at=settlement.created_at,
        confirmed_at=settlement.confirmed_at,
        updated_at=settlement.updated_at,
    )

