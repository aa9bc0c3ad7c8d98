"""
Read-only group membership lookups used by the ledger.
"""
from typing import List
from sqlalchemy.orm import Session
from splitledger.core.exceptions import AccessDeniedError, NotFoundError
from splitledger.models.group import Group, GroupMember


def get_group(group_id: int, db: Session) -> Group:
    """Fetch an active group or raise NotFoundError."""
    group = db.query(Group).filter(Group.id == group_id, Group.is_active.is_(True)).first()
    if not group:
        raise NotFoundError("Group not found")
    return group


def get_active_members(group_id: int, db: Session) -> List[GroupMember]:
    """Active members in join order; split remainders depend on this order."""
    return db.query(GroupMember).filter(
        GroupMember.group_id == group_id,
        GroupMember.is_active.is_(True)
    ).order_by(GroupMember.joined_at.asc(), GroupMember.id.asc()).all()


def is_active_member(group_id: int, user_id: int, db: Session) -> bool:
    return db.query(GroupMember.id).filter(
        GroupMember.group_id == group_id,
        GroupMember.user_id == user_id,
        GroupMember.is_active.is_(True)
    ).first() is not None


def check_group_access(group_id: int, user_id: int, db: Session) -> Group:
    """Check that the group exists and the user is an active member of it."""
    group = get_group(group_id, db)
    if not is_active_member(group_id, user_id, db):
        raise AccessDeniedError("You must be a member of the group")
    return group
