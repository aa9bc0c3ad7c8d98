"""
Settlement model: a proposed transfer between two group members, and the
obligations it will retire once both sides confirm.
"""
import enum
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Integer, Enum as SQLEnum
from sqlalchemy.orm import relationship
from splitledger.db.base import BaseModel


class SettlementStatus(str, enum.Enum):
    """Settlement lifecycle. CONFIRMED and DISPUTED are terminal."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"


class Settlement(BaseModel):
    """Settlement between from_user (paying) and to_user (receiving)."""
    __tablename__ = "settlements"

    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    settlement_method = Column(String(30), nullable=False, default="cash")
    status = Column(SQLEnum(SettlementStatus), nullable=False, default=SettlementStatus.PENDING, index=True)
    confirmed_by_payer = Column(Boolean, default=False, nullable=False)
    confirmed_by_receiver = Column(Boolean, default=False, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    dispute_reason = Column(Text, nullable=True)

    # Relationships
    from_user = relationship("User", foreign_keys=[from_user_id])
    to_user = relationship("User", foreign_keys=[to_user_id])
    group = relationship("Group", back_populates="settlements")
    allocations = relationship("SettlementAllocation", back_populates="settlement", cascade="all, delete-orphan")

    @property
    def fully_confirmed(self) -> bool:
        return bool(self.confirmed_by_payer and self.confirmed_by_receiver)


class SettlementAllocation(BaseModel):
    """An obligation fully covered by a settlement, retired on confirmation."""
    __tablename__ = "settlement_allocations"

    settlement_id = Column(Integer, ForeignKey("settlements.id"), nullable=False, index=True)
    expense_id = Column(Integer, ForeignKey("expenses.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # Debtor
    amount_cents = Column(Integer, nullable=False)

    # Relationships
    settlement = relationship("Settlement", back_populates="allocations")
    expense = relationship("Expense")
