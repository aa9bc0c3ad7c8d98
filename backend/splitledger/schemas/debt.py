"""
Pydantic schemas for debt summaries and breakdowns.

All money fields hold integer cents and serialize as decimal strings.
"""
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal

from splitledger.schemas.common import Money


class DebtSummary(BaseModel):
    """Totals across every group the user belongs to."""
    total_owed_to_user: Money
    total_user_owes: Money
    net_balance: Money
    net_position: str  # creditor | debtor
    total_unsettled_expenses: int


class GroupBalance(BaseModel):
    """User's net position inside one group."""
    group_id: int
    group_name: str
    group_description: Optional[str] = None
    owed_to_user: Money
    user_owes: Money
    net_balance: Money
    net_position: str
    last_expense_date: Optional[date] = None
    unsettled_expenses_count: int


class UrgentDebt(BaseModel):
    """One open obligation the user owes."""
    expense_id: int
    expense_description: str
    expense_amount: Money
    expense_date: date
    group_id: int
    group_name: str
    payer_id: int
    payer_name: str
    payer_email: str
    user_debt_amount: Money
    user_percentage: Decimal
    days_old: int
    urgency_level: str  # high | medium | low


class RecentActivity(BaseModel):
    """A settlement the user took part in recently."""
    settlement_id: int
    amount: Money
    description: Optional[str] = None
    method: str
    status: str
    created_at: datetime
    transaction_type: str  # paid | received
    other_party_name: str
    group_name: Optional[str] = None


class UserDebtOverview(BaseModel):
    """Response for the per-user debt summary."""
    summary: DebtSummary
    group_balances: List[GroupBalance]
    urgent_debts: List[UrgentDebt]
    recent_activity: List[RecentActivity]


class PersonRef(BaseModel):
    id: int
    name: str
    email: str


class GroupRef(BaseModel):
    id: int
    name: str


class DebtExpense(BaseModel):
    """One expense contributing to a pairwise debt."""
    expense_id: int
    description: str
    total_amount: Money
    expense_date: date
    debt_amount: Money
    percentage: Decimal
    days_since_expense: int
    is_overdue: bool


class PairDebts(BaseModel):
    """Everything one counterparty owes (or is owed) inside one group."""
    person: PersonRef
    group: GroupRef
    total_amount: Money
    expense_count: int
    expenses: List[DebtExpense]


class NetBalance(BaseModel):
    """Netted position with one counterparty inside one group."""
    person: PersonRef
    group: GroupRef
    user_owes: Money
    they_owe: Money
    net_amount: Money
    net_position: str  # user_is_owed | user_owes | settled


class DetailedSummary(BaseModel):
    total_owed_to_user: Money
    total_user_owes: Money
    net_balance: Money
    unique_creditors: int
    unique_debtors: int
    total_expense_count: int


class DetailedDebts(BaseModel):
    """Response for the pairwise breakdown, keyed by "{person_id}_{group_id}"."""
    summary: DetailedSummary
    net_balances: Dict[str, NetBalance]
    people_who_owe_user: Dict[str, PairDebts]
    people_user_owes: Dict[str, PairDebts]
    settlement_suggestions: List[str]
