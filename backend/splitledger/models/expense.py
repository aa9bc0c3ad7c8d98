"""
Expense model for tracking spending, and the per-participant obligations
a group expense creates.
"""
import enum
from sqlalchemy import (
    Column, String, Date, Boolean, DateTime, ForeignKey, Integer, Numeric, Text,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from splitledger.db.base import BaseModel


class ExpenseScope(str, enum.Enum):
    """Whether an expense belongs to one user or to a group."""
    PERSONAL = "personal"
    GROUP = "group"


class SplitType(str, enum.Enum):
    """Split policy names accepted at the boundary."""
    EQUAL = "equal"
    EXACT = "exact"
    PERCENTAGE = "percentage"


class ExpenseCategory(BaseModel):
    """Expense category, resolved by name."""
    __tablename__ = "expense_categories"

    name = Column(String(50), unique=True, nullable=False, index=True)
    is_default = Column(Boolean, default=False, nullable=False)

    expenses = relationship("Expense", back_populates="category")


class Expense(BaseModel):
    """Expense model representing a single spending event."""
    __tablename__ = "expenses"

    amount_cents = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    payment_method = Column(String(30), nullable=True)
    category_id = Column(Integer, ForeignKey("expense_categories.id"), nullable=True, index=True)
    expense_date = Column(Date, nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    paid_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    scope = Column(SQLEnum(ExpenseScope), nullable=False, default=ExpenseScope.PERSONAL)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=True, index=True)
    split_type = Column(SQLEnum(SplitType), nullable=True)
    is_settled = Column(Boolean, default=False, nullable=False, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    category = relationship("ExpenseCategory", back_populates="expenses")
    group = relationship("Group", back_populates="expenses")
    payer = relationship("User", foreign_keys=[paid_by], back_populates="expenses_paid")
    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship(
        "ExpenseParticipant",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseParticipant.id",
    )

    @property
    def payer_fair_share_cents(self) -> int:
        """What the payer consumed: the total minus everything others owe."""
        owed_by_others = sum(p.amount_owed_cents for p in self.participants if p.user_id != self.paid_by)
        return self.amount_cents - owed_by_others


class ExpenseParticipant(BaseModel):
    """One participant's obligation on one expense."""
    __tablename__ = "expense_participants"
    __table_args__ = (UniqueConstraint("expense_id", "user_id", name="uq_expense_participant"),)

    expense_id = Column(Integer, ForeignKey("expenses.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount_owed_cents = Column(Integer, nullable=False, default=0)  # Always 0 on the payer's row
    percentage = Column(Numeric(5, 2), nullable=False)  # Display only
    is_settled = Column(Boolean, default=False, nullable=False, index=True)

    # Relationships
    expense = relationship("Expense", back_populates="participants")
    user = relationship("User", back_populates="expense_participants")
