"""
User Model

Identity referenced by grants, group memberships and workspace membership.
Account management lives outside the access core.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime

from docaccess.core.database import Base


class User(Base):
    """User that can receive grants and join groups"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(120), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
