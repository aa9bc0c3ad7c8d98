"""
Pydantic schemas for Expense entity.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from splitledger.schemas.common import AmountIn, Money, Pagination


class SplitDetail(BaseModel):
    """Per-member input for exact and percentage splits."""
    user_id: int
    amount: Optional[AmountIn] = None
    percentage: Optional[Decimal] = Field(default=None, gt=0, le=100, decimal_places=2)


class PersonalExpenseCreate(BaseModel):
    """Schema for personal expense creation."""
    amount: AmountIn
    description: str = Field(min_length=1, max_length=255)
    category: Optional[str] = None
    expense_date: Optional[date] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None


class GroupExpenseCreate(BaseModel):
    """Schema for group expense creation. The creator is the payer."""
    amount: AmountIn
    description: str = Field(min_length=1, max_length=255)
    category: Optional[str] = None
    expense_date: Optional[date] = None
    split_type: str = "equal"
    split_details: Optional[List[SplitDetail]] = None


class ExpenseUpdate(BaseModel):
    """Schema for personal expense update."""
    amount: Optional[AmountIn] = None
    description: Optional[str] = Field(default=None, max_length=255)
    category: Optional[str] = None
    expense_date: Optional[date] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None


class ExpenseParticipantResponse(BaseModel):
    """Schema for expense participant response."""
    user_id: int
    amount_owed: Money = Field(validation_alias="amount_owed_cents")
    percentage: Decimal
    is_settled: bool

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ExpenseResponse(BaseModel):
    """Schema for expense response."""
    id: int
    amount: Money = Field(validation_alias="amount_cents")
    description: str
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    category: Optional[str] = None
    expense_date: date
    created_by: int
    paid_by: int
    scope: str
    group_id: Optional[int] = None
    split_type: Optional[str] = None
    is_settled: bool
    participants: List[ExpenseParticipantResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @classmethod
    def from_expense(cls, expense) -> "ExpenseResponse":
        return cls(
            id=expense.id,
            amount=expense.amount_cents,
            description=expense.description,
            notes=expense.notes,
            payment_method=expense.payment_method,
            category=expense.category.name if expense.category else None,
            expense_date=expense.expense_date,
            created_by=expense.created_by,
            paid_by=expense.paid_by,
            scope=expense.scope.value,
            group_id=expense.group_id,
            split_type=expense.split_type.value if expense.split_type else None,
            is_settled=expense.is_settled,
            participants=[ExpenseParticipantResponse.model_validate(p) for p in expense.participants],
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        )


class ExpenseListResponse(BaseModel):
    """A page of expenses."""
    expenses: List[ExpenseResponse]
    pagination: Pagination
