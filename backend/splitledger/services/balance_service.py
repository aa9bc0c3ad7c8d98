"""
Balance aggregation: read-only views derived from open obligations.

Nothing here is stored. Every figure is recomputed from unsettled
participant rows of live group expenses, so balances cannot drift from the
ledger. The queries are not run under one snapshot; a settlement committed
between two of them can make one section briefly stale.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from splitledger.core.config import settings
from splitledger.core.money import format_cents
from splitledger.core.utils import days_between, utcnow
from splitledger.models.expense import Expense, ExpenseParticipant, ExpenseScope
from splitledger.models.group import Group, GroupMember
from splitledger.models.settlement import Settlement
from splitledger.models.user import User
from splitledger.schemas.debt import (
    DebtExpense, DebtSummary, DetailedDebts, DetailedSummary, GroupBalance, GroupRef,
    NetBalance, PairDebts, PersonRef, RecentActivity, UrgentDebt, UserDebtOverview,
)

logger = logging.getLogger(__name__)


@dataclass
class OpenObligation:
    """An unsettled debt: debtor owes payer amount_cents for one expense."""
    expense_id: int
    description: str
    expense_amount_cents: int
    expense_date: date
    expense_created_at: datetime
    group_id: int
    payer_id: int
    debtor_id: int
    amount_cents: int
    percentage: Decimal


def open_obligations(user_id: int, db: Session, group_id: Optional[int] = None) -> List[OpenObligation]:
    """Every open obligation where the user is either the creditor or the debtor."""
    query = db.query(ExpenseParticipant, Expense).join(
        Expense, ExpenseParticipant.expense_id == Expense.id
    ).filter(
        Expense.scope == ExpenseScope.GROUP,
        Expense.is_deleted.is_(False),
        ExpenseParticipant.is_settled.is_(False),
        ExpenseParticipant.user_id != Expense.paid_by,
        or_(Expense.paid_by == user_id, ExpenseParticipant.user_id == user_id)
    )
    if group_id is not None:
        query = query.filter(Expense.group_id == group_id)

    return [
        OpenObligation(
            expense_id=expense.id,
            description=expense.description,
            expense_amount_cents=expense.amount_cents,
            expense_date=expense.expense_date,
            expense_created_at=expense.created_at,
            group_id=expense.group_id,
            payer_id=expense.paid_by,
            debtor_id=participant.user_id,
            amount_cents=participant.amount_owed_cents,
            percentage=Decimal(participant.percentage),
        )
        for participant, expense in query.all()
    ]


def _users_by_id(user_ids: Iterable[int], db: Session) -> Dict[int, User]:
    ids = set(user_ids)
    if not ids:
        return {}
    return {u.id: u for u in db.query(User).filter(User.id.in_(ids)).all()}


def _groups_by_id(group_ids: Iterable[int], db: Session) -> Dict[int, Group]:
    ids = set(group_ids)
    if not ids:
        return {}
    return {g.id: g for g in db.query(Group).filter(Group.id.in_(ids)).all()}


def _net_position(net_cents: int) -> str:
    return "creditor" if net_cents >= 0 else "debtor"


def urgency_level(days_old: int) -> str:
    """Bucket a debt by age: high past URGENCY_HIGH_DAYS, medium past URGENCY_MEDIUM_DAYS."""
    if days_old > settings.URGENCY_HIGH_DAYS:
        return "high"
    if days_old > settings.URGENCY_MEDIUM_DAYS:
        return "medium"
    return "low"


def get_debt_summary(user_id: int, db: Session) -> DebtSummary:
    """Totals owed to and by the user across all group expenses."""
    obligations = open_obligations(user_id, db)
    owed_to_user = sum(o.amount_cents for o in obligations if o.payer_id == user_id)
    user_owes = sum(o.amount_cents for o in obligations if o.debtor_id == user_id)
    net = owed_to_user - user_owes
    return DebtSummary(
        total_owed_to_user=owed_to_user,
        total_user_owes=user_owes,
        net_balance=net,
        net_position=_net_position(net),
        total_unsettled_expenses=len({o.expense_id for o in obligations}),
    )


def get_group_balances(user_id: int, db: Session) -> List[GroupBalance]:
    """
    Net position per group, largest imbalance first.

    Only groups the user is still an active member of, and only those with a
    non-zero net. Ties go to the group with the most recent expense.
    """
    member_group_ids = {
        row[0] for row in db.query(GroupMember.group_id).filter(
            GroupMember.user_id == user_id,
            GroupMember.is_active.is_(True)
        ).all()
    }
    by_group: Dict[int, List[OpenObligation]] = {}
    for obligation in open_obligations(user_id, db):
        if obligation.group_id in member_group_ids:
            by_group.setdefault(obligation.group_id, []).append(obligation)

    groups = _groups_by_id(by_group, db)
    balances = []
    for group_id, obligations in by_group.items():
        owed_to_user = sum(o.amount_cents for o in obligations if o.payer_id == user_id)
        user_owes = sum(o.amount_cents for o in obligations if o.debtor_id == user_id)
        net = owed_to_user - user_owes
        if net == 0:
            continue
        group = groups[group_id]
        balances.append(GroupBalance(
            group_id=group_id,
            group_name=group.name,
            group_description=group.description,
            owed_to_user=owed_to_user,
            user_owes=user_owes,
            net_balance=net,
            net_position=_net_position(net),
            last_expense_date=max(o.expense_date for o in obligations),
            unsettled_expenses_count=len({o.expense_id for o in obligations}),
        ))

    balances.sort(key=lambda b: (abs(b.net_balance), b.last_expense_date or date.min), reverse=True)
    return balances


def get_urgent_debts(user_id: int, db: Session, today: Optional[date] = None) -> List[UrgentDebt]:
    """The user's open debts, largest first, then oldest first, tagged by age."""
    today = today or date.today()
    debts = [o for o in open_obligations(user_id, db) if o.debtor_id == user_id]
    debts.sort(key=lambda o: (-o.amount_cents, o.expense_date, o.expense_created_at, o.expense_id))
    debts = debts[:settings.URGENT_DEBTS_LIMIT]

    payers = _users_by_id((o.payer_id for o in debts), db)
    groups = _groups_by_id((o.group_id for o in debts), db)
    urgent = []
    for o in debts:
        days_old = days_between(o.expense_date, today)
        payer = payers[o.payer_id]
        urgent.append(UrgentDebt(
            expense_id=o.expense_id,
            expense_description=o.description,
            expense_amount=o.expense_amount_cents,
            expense_date=o.expense_date,
            group_id=o.group_id,
            group_name=groups[o.group_id].name,
            payer_id=o.payer_id,
            payer_name=payer.full_name,
            payer_email=payer.email,
            user_debt_amount=o.amount_cents,
            user_percentage=o.percentage,
            days_old=days_old,
            urgency_level=urgency_level(days_old),
        ))
    return urgent


def get_recent_activity(user_id: int, db: Session) -> List[RecentActivity]:
    """Settlements involving the user in the last RECENT_ACTIVITY_DAYS, newest first."""
    since = utcnow() - timedelta(days=settings.RECENT_ACTIVITY_DAYS)
    settlements = db.query(Settlement).filter(
        or_(Settlement.from_user_id == user_id, Settlement.to_user_id == user_id),
        Settlement.created_at >= since
    ).order_by(Settlement.created_at.desc(), Settlement.id.desc()).limit(settings.RECENT_ACTIVITY_LIMIT).all()

    activity = []
    for s in settlements:
        paid = s.from_user_id == user_id
        other = s.to_user if paid else s.from_user
        activity.append(RecentActivity(
            settlement_id=s.id,
            amount=s.amount_cents,
            description=s.description,
            method=s.settlement_method,
            status=s.status.value,
            created_at=s.created_at,
            transaction_type="paid" if paid else "received",
            other_party_name=other.full_name,
            group_name=s.group.name if s.group else None,
        ))
    return activity


def get_user_debt_overview(user_id: int, db: Session, today: Optional[date] = None) -> UserDebtOverview:
    """Summary, per-group balances, urgent debts and recent settlements for one user."""
    return UserDebtOverview(
        summary=get_debt_summary(user_id, db),
        group_balances=get_group_balances(user_id, db),
        urgent_debts=get_urgent_debts(user_id, db, today=today),
        recent_activity=get_recent_activity(user_id, db),
    )


def _pair_key(person_id: int, group_id: int) -> str:
    return f"{person_id}_{group_id}"


def _collect_pairs(
    obligations: List[OpenObligation],
    counterparty_of,
    users: Dict[int, User],
    groups: Dict[int, Group],
    today: date,
) -> Dict[str, PairDebts]:
    pairs: Dict[str, PairDebts] = {}
    for o in obligations:
        person_id = counterparty_of(o)
        key = _pair_key(person_id, o.group_id)
        if key not in pairs:
            person = users[person_id]
            pairs[key] = PairDebts(
                person=PersonRef(id=person.id, name=person.full_name, email=person.email),
                group=GroupRef(id=o.group_id, name=groups[o.group_id].name),
                total_amount=0,
                expense_count=0,
                expenses=[],
            )
        days_since = days_between(o.expense_date, today)
        pair = pairs[key]
        pair.total_amount += o.amount_cents
        pair.expense_count += 1
        pair.expenses.append(DebtExpense(
            expense_id=o.expense_id,
            description=o.description,
            total_amount=o.expense_amount_cents,
            expense_date=o.expense_date,
            debt_amount=o.amount_cents,
            percentage=o.percentage,
            days_since_expense=days_since,
            is_overdue=days_since > settings.OVERDUE_DAYS,
        ))
    return pairs


def settlement_suggestion(balance: NetBalance) -> str:
    """One human-readable line describing how a pair stands."""
    if balance.net_amount < 0:
        return f'You owe {balance.person.name} {format_cents(-balance.net_amount)} in group "{balance.group.name}".'
    if balance.net_amount > 0:
        return f'{balance.person.name} owes you {format_cents(balance.net_amount)} in group "{balance.group.name}".'
    return f'Your balance with {balance.person.name} in group "{balance.group.name}" is settled.'


def get_detailed_debts(
    user_id: int,
    db: Session,
    group_id: Optional[int] = None,
    today: Optional[date] = None,
) -> DetailedDebts:
    """
    Pairwise breakdown keyed by (counterparty, group).

    Builds who owes the user and whom the user owes, then nets each pair:
    net_amount = they_owe - user_owes. A pair seen on only one side still
    gets a net entry.
    """
    today = today or date.today()
    obligations = open_obligations(user_id, db, group_id=group_id)
    users = _users_by_id(
        [o.payer_id for o in obligations] + [o.debtor_id for o in obligations], db
    )
    groups = _groups_by_id((o.group_id for o in obligations), db)

    def display_order(counterparty_of):
        return lambda o: (
            groups[o.group_id].name,
            users[counterparty_of(o)].first_name,
            -o.expense_date.toordinal(),
            o.expense_id,
        )

    credits = [o for o in obligations if o.payer_id == user_id]
    debts = [o for o in obligations if o.debtor_id == user_id]
    credits.sort(key=display_order(lambda o: o.debtor_id))
    debts.sort(key=display_order(lambda o: o.payer_id))

    people_who_owe_user = _collect_pairs(credits, lambda o: o.debtor_id, users, groups, today)
    people_user_owes = _collect_pairs(debts, lambda o: o.payer_id, users, groups, today)

    net_balances: Dict[str, NetBalance] = {}
    for key in list(people_user_owes) + [k for k in people_who_owe_user if k not in people_user_owes]:
        side = people_user_owes.get(key) or people_who_owe_user[key]
        user_owes = people_user_owes[key].total_amount if key in people_user_owes else 0
        they_owe = people_who_owe_user[key].total_amount if key in people_who_owe_user else 0
        net = they_owe - user_owes
        if net > 0:
            position = "user_is_owed"
        elif net < 0:
            position = "user_owes"
        else:
            position = "settled"
        net_balances[key] = NetBalance(
            person=side.person,
            group=side.group,
            user_owes=user_owes,
            they_owe=they_owe,
            net_amount=net,
            net_position=position,
        )

    total_owed_to_user = sum(p.total_amount for p in people_who_owe_user.values())
    total_user_owes = sum(p.total_amount for p in people_user_owes.values())
    summary = DetailedSummary(
        total_owed_to_user=total_owed_to_user,
        total_user_owes=total_user_owes,
        net_balance=sum(b.net_amount for b in net_balances.values()),
        unique_creditors=len(people_user_owes),
        unique_debtors=len(people_who_owe_user),
        total_expense_count=sum(p.expense_count for p in people_who_owe_user.values())
        + sum(p.expense_count for p in people_user_owes.values()),
    )

    return DetailedDebts(
        summary=summary,
        net_balances=net_balances,
        people_who_owe_user=people_who_owe_user,
        people_user_owes=people_user_owes,
        settlement_suggestions=[settlement_suggestion(b) for b in net_balances.values()],
    )
