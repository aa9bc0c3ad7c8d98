"""
Pydantic schemas for Settlement entity.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime

from splitledger.models.settlement import SettlementStatus
from splitledger.schemas.common import AmountIn, Money, Pagination


class SettlementCreate(BaseModel):
    """Schema for settling debt with another group member."""
    amount: AmountIn
    settlement_method: str = "cash"
    description: Optional[str] = Field(default=None, max_length=500)
    trusted: bool = False  # Single-step settlement, only when enabled in settings


class SettlementConfirm(BaseModel):
    """Schema for confirming or disputing a pending settlement."""
    confirm: bool
    dispute_reason: Optional[str] = Field(default=None, max_length=500)


class SettlementResponse(BaseModel):
    """Schema for settlement response."""
    id: int
    from_user_id: int
    to_user_id: int
    group_id: int
    amount: Money = Field(validation_alias="amount_cents")
    description: Optional[str] = None
    settlement_method: str
    status: SettlementStatus
    confirmed_by_payer: bool
    confirmed_by_receiver: bool
    confirmed_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, use_enum_values=True)


class SettledExpenseItem(BaseModel):
    """An obligation this settlement retires in full."""
    expense_id: int
    description: str
    settled_amount: Money
    fully_settled: bool = True


class PartialSettlementItem(BaseModel):
    """The one obligation a settlement only partly covers (not retired)."""
    expense_id: int
    description: str
    partial_amount: Money
    total_owed: Money
    fully_settled: bool = False


class SettlementOutcomeSummary(BaseModel):
    total_settled: Money
    expenses_fully_settled: int
    expenses_partially_settled: int
    remaining_debt: Money
    is_fully_settled: bool


class SettleDebtResponse(BaseModel):
    """Response for creating a settlement."""
    settlement: SettlementResponse
    settled_expenses: List[SettledExpenseItem]
    partially_settled_expenses: List[PartialSettlementItem]
    summary: SettlementOutcomeSummary


class PartyRef(BaseModel):
    id: int
    name: str
    email: str


class ConfirmationStatus(BaseModel):
    confirmed_by_user: bool
    confirmed_by_other: bool
    fully_confirmed: bool
    pending_confirmation: bool
    disputed: bool


class SettlementHistoryItem(BaseModel):
    """One settlement seen from the requesting user's side."""
    id: int
    amount: Money
    description: Optional[str] = None
    method: str
    status: str
    direction: str  # incoming | outgoing
    other_party: PartyRef
    group_id: int
    group_name: Optional[str] = None
    confirmation_status: ConfirmationStatus
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    updated_at: datetime
    display_text: str
    action_required: bool


class SettlementHistoryFilters(BaseModel):
    """Query filters for settlement history."""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    status: Optional[str] = None  # pending | confirmed | disputed | all
    group_id: Optional[int] = None
    other_user_id: Optional[int] = None
    direction: Optional[str] = None  # incoming | outgoing | all
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"


class HistorySummary(BaseModel):
    total_settlements: int
    total_amount: Money
    outgoing_amount: Money
    incoming_amount: Money
    pending_count: int
    confirmed_count: int
    disputed_count: int
    action_required_count: int


class SettlementHistory(BaseModel):
    settlements: List[SettlementHistoryItem]
    pagination: Pagination
    filters: SettlementHistoryFilters
    summary: HistorySummary


class SettlementDetails(BaseModel):
    """A single settlement as seen by one of its parties."""
    id: int
    amount: Money
    description: Optional[str] = None
    method: str
    status: str
    payer: PartyRef
    receiver: PartyRef
    group_id: int
    group_name: Optional[str] = None
    confirmed_by_payer: bool
    confirmed_by_receiver: bool
    fully_confirmed: bool
    dispute_reason: Optional[str] = None
    user_role: str  # payer | receiver
    can_confirm: bool
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    updated_at: datetime
