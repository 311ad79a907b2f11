"""
Workspace Models

A workspace owns a forest of pages and carries the fallback permission level
applied to its members when no grant exists on a page's ancestor chain.
"""
from datetime import datetime
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from docaccess.core.database import Base


class WorkspaceRole(str, enum.Enum):
    """Workspace member role"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    GUEST = "guest"


class Workspace(Base):
    """Workspace - isolated page forest with a default level for its members"""
    __tablename__ = 'workspaces'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)

    # PermissionLevel value, NULL = no workspace default
    default_level = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    members = relationship("WorkspaceMember", back_populates="workspace", cascade="all, delete-orphan")

    def to_dict(self):
        """Convert to dictionary"""
        data = {
            'id': self.id,
            'name': self.name,
            'default_level': self.default_level,
            'member_count': len(self.members),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        return data


class WorkspaceMember(Base):
    """Workspace membership - links users to workspaces with roles"""
    __tablename__ = 'workspace_members'
    __table_args__ = (
        UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_user'),
        Index('idx_workspace_members_user', 'user_id'),
    )

    id = Column(Integer, primary_key=True)
    workspace_id = Column(Integer, ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    role = Column(String(20), default=WorkspaceRole.MEMBER.value)  # WorkspaceRole
    joined_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User")
