"""Models package - Import all models for SQLAlchemy registration."""
from splitledger.models.user import User
from splitledger.models.group import Group, GroupMember
from splitledger.models.expense import Expense, ExpenseParticipant, ExpenseCategory, ExpenseScope, SplitType
from splitledger.models.settlement import Settlement, SettlementAllocation, SettlementStatus

__all__ = [
    "User",
    "Group",
    "GroupMember",
    "Expense",
    "ExpenseParticipant",
    "ExpenseCategory",
    "ExpenseScope",
    "SplitType",
    "Settlement",
    "SettlementAllocation",
    "SettlementStatus",
]
