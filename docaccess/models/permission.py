"""
Permission Models

A page grant targets exactly one grantee (a user or a group) with one
scalar level. Levels are totally ordered: none < read < write < full_access.
`none` is an explicit denial; it is not the same as having no grant.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint

from docaccess.core.database import Base


class PermissionLevel(str, enum.Enum):
    """Permission level, ordered by privilege"""
    NONE = "none"
    READ = "read"
    WRITE = "write"
    FULL_ACCESS = "full_access"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def parse(cls, value: Union[str, "PermissionLevel"]) -> "PermissionLevel":
        """Accept a PermissionLevel or its string value"""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or '').strip().lower())
        except ValueError:
            raise ValueError(f"Unknown permission level: {value!r}") from None

    def is_at_least(self, required: "PermissionLevel") -> bool:
        return self.rank >= PermissionLevel.parse(required).rank

    @classmethod
    def most_permissive(cls, levels) -> "PermissionLevel":
        return max((cls.parse(level) for level in levels), key=lambda level: level.rank)


_LEVEL_RANK = {
    PermissionLevel.NONE: 0,
    PermissionLevel.READ: 1,
    PermissionLevel.WRITE: 2,
    PermissionLevel.FULL_ACCESS: 3,
}


@dataclass(frozen=True)
class Grantee:
    """Subject of a grant: exactly one of user_id or group_id"""
    user_id: Optional[int] = None
    group_id: Optional[int] = None

    def __post_init__(self):
        if (self.user_id is None) == (self.group_id is None):
            raise ValueError("Grantee needs exactly one of user_id or group_id")

    @classmethod
    def user(cls, user_id: int) -> "Grantee":
        return cls(user_id=user_id)

    @classmethod
    def group(cls, group_id: int) -> "Grantee":
        return cls(group_id=group_id)

    @property
    def is_user(self) -> bool:
        return self.user_id is not None

    def __str__(self):
        return f"user:{self.user_id}" if self.is_user else f"group:{self.group_id}"


class PagePermission(Base):
    """Grant of one level on one page to one user or group"""
    __tablename__ = 'page_permissions'
    __table_args__ = (
        CheckConstraint(
            '(user_id IS NOT NULL AND group_id IS NULL) OR '
            '(user_id IS NULL AND group_id IS NOT NULL)',
            name='ck_page_permissions_exactly_one_grantee'
        ),
        # NULLs never collide, so these behave as partial unique indexes
        UniqueConstraint('page_id', 'user_id', name='uq_page_permissions_page_user'),
        UniqueConstraint('page_id', 'group_id', name='uq_page_permissions_page_group'),
        Index('idx_page_permissions_page_id', 'page_id'),
    )

    id = Column(Integer, primary_key=True)
    page_id = Column(Integer, ForeignKey('pages.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=True)
    group_id = Column(Integer, ForeignKey('groups.id', ondelete='CASCADE'), nullable=True)
    level = Column(String(20), nullable=False)  # PermissionLevel

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.parse(self.level)

    @property
    def grantee(self) -> Grantee:
        return Grantee(user_id=self.user_id, group_id=self.group_id)

    def to_dict(self):
        return {
            'id': self.id,
            'page_id': self.page_id,
            'user_id': self.user_id,
            'group_id': self.group_id,
            'grantee': str(self.grantee),
            'level': self.level,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
