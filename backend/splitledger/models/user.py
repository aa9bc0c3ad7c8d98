"""
User model. Accounts are registered by the auth service; the ledger only
reads them.
"""
from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship
from splitledger.db.base import BaseModel


class User(BaseModel):
    """User referenced by expenses, obligations and settlements."""
    __tablename__ = "users"

    email = Column(String(100), unique=True, nullable=False, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False, default="")
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    memberships = relationship("GroupMember", back_populates="user", cascade="all, delete-orphan")
    expenses_paid = relationship("Expense", foreign_keys="Expense.paid_by", back_populates="payer")
    expense_participants = relationship("ExpenseParticipant", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
