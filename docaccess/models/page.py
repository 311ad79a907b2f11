"""
Page Models

Pages form a forest per workspace through `parent_id` (adjacency).
PageTreePath is the materialized transitive closure of that forest: every
page has one self row (depth 0) plus one row per ancestor.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from docaccess.core.database import Base


class Page(Base):
    """Document page; the unit permissions are granted on"""
    __tablename__ = 'pages'
    __table_args__ = (
        Index('idx_pages_parent_id', 'parent_id'),
        Index('idx_pages_workspace_id', 'workspace_id'),
    )

    id = Column(Integer, primary_key=True)
    workspace_id = Column(Integer, ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False)
    parent_id = Column(Integer, ForeignKey('pages.id'), nullable=True)
    title = Column(String(255), nullable=False)
    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    workspace = relationship("Workspace")
    parent = relationship("Page", remote_side=[id])

    def to_dict(self):
        """Convert to dictionary"""
        return {
            'id': self.id,
            'workspace_id': self.workspace_id,
            'parent_id': self.parent_id,
            'title': self.title,
            'created_by_id': self.created_by_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class PageTreePath(Base):
    """One (ancestor, descendant, depth) row of the page closure index"""
    __tablename__ = 'page_tree_paths'
    __table_args__ = (
        CheckConstraint('depth >= 0', name='ck_page_tree_paths_depth'),
        # "find all ancestors of page X" ordered by depth (resolution read path)
        Index('idx_page_tree_paths_descendant_depth', 'descendant_id', 'depth'),
    )

    ancestor_id = Column(Integer, ForeignKey('pages.id', ondelete='CASCADE'), primary_key=True)
    descendant_id = Column(Integer, ForeignKey('pages.id', ondelete='CASCADE'), primary_key=True)
    depth = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<PageTreePath {self.ancestor_id}->{self.descendant_id} depth={self.depth}>"
