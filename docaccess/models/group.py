"""
Group Models

- Group: identity only
- GroupMember: a direct edge from a group to either a user or a child group
- GroupAncestorPath: closure of the nesting graph (shortest depth per pair)
- GroupMembershipClosure: flattened "user is a transitive member of group"
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from docaccess.core.database import Base


class Group(Base):
    """User group; may contain users and other groups"""
    __tablename__ = 'groups'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    members = relationship(
        "GroupMember",
        foreign_keys="GroupMember.group_id",
        back_populates="group",
        cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class GroupMember(Base):
    """Direct group member: exactly one of user_id or child_group_id is set"""
    __tablename__ = 'group_members'
    __table_args__ = (
        CheckConstraint(
            '(user_id IS NOT NULL AND child_group_id IS NULL) OR '
            '(user_id IS NULL AND child_group_id IS NOT NULL)',
            name='ck_group_members_exactly_one_target'
        ),
        UniqueConstraint('group_id', 'user_id', name='uq_group_members_user'),
        UniqueConstraint('group_id', 'child_group_id', name='uq_group_members_child_group'),
        Index('idx_group_members_user', 'user_id'),
        Index('idx_group_members_child_group', 'child_group_id'),
    )

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey('groups.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=True)
    child_group_id = Column(Integer, ForeignKey('groups.id', ondelete='CASCADE'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    group = relationship("Group", foreign_keys=[group_id], back_populates="members")


class GroupAncestorPath(Base):
    """One (ancestor group, descendant group, depth) row of the nesting closure"""
    __tablename__ = 'group_ancestor_paths'
    __table_args__ = (
        CheckConstraint('depth >= 0', name='ck_group_ancestor_paths_depth'),
        Index('idx_group_ancestor_paths_descendant', 'descendant_group_id'),
    )

    ancestor_group_id = Column(Integer, ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True)
    descendant_group_id = Column(Integer, ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True)
    depth = Column(Integer, nullable=False)


class GroupMembershipClosure(Base):
    """User is a member of group directly or through nested groups"""
    __tablename__ = 'group_membership_closure'
    __table_args__ = (
        Index('idx_group_membership_closure_user', 'user_id'),
    )

    group_id = Column(Integer, ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
