"""
Declarative base shared by all models.
"""
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base
from splitledger.core.utils import utcnow

Base = declarative_base()


class BaseModel(Base):
    """Abstract model adding id and audit timestamps."""
    __abstract__ = True

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
