"""
Group and membership models. Membership CRUD lives in the groups service;
the ledger reads active members in join order.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from splitledger.core.utils import utcnow
from splitledger.db.base import BaseModel


class Group(BaseModel):
    """A set of users sharing expenses."""
    __tablename__ = "groups"

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="group")
    settlements = relationship("Settlement", back_populates="group")


class GroupMember(BaseModel):
    """Junction table for Group and User many-to-many relationship."""
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")  # member | admin
    joined_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")
