"""
Page Tree Service - closure index over the page forest

Keeps `page_tree_paths` equal to the transitive closure of `pages.parent_id`:

- create: self row + copies of the parent's ancestor rows at depth + 1
- move:   sever the subtree from its old ancestors, then attach it to the new
          parent's ancestors (cross product), then update the adjacency pointer
- delete: drop the whole subtree with its paths and grants

All writes assume the caller owns the transaction (see `atomic`).
Reads (`ancestors_of`) are single indexed lookups.
"""
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import insert
from sqlalchemy.orm import Session

from docaccess.core.errors import ConflictError, CycleError, NotFoundError, invariant
from docaccess.models import Page, PagePermission, PageTreePath


LOGGER = logging.getLogger(__name__)


class PageTreeService:
    """Maintains and queries the page closure index"""

    def __init__(self, db: Session):
        self.db = db

    # ==================== READS ====================

    def get_page(self, page_id: int, for_update: bool = False) -> Page:
        query = self.db.query(Page).filter(Page.id == page_id)
        if for_update:
            query = query.with_for_update()
        page = query.first()
        if not page:
            raise NotFoundError('Page', page_id)
        return page

    def ancestors_of(self, page_id: int) -> List[Tuple[int, int]]:
        """(ancestor_id, depth) pairs ascending by depth, the page itself first"""
        rows = (
            self.db.query(PageTreePath.ancestor_id, PageTreePath.depth)
            .filter(PageTreePath.descendant_id == page_id)
            .order_by(PageTreePath.depth.asc())
            .all()
        )
        return [(row.ancestor_id, row.depth) for row in rows]

    def descendants_of(self, page_id: int) -> List[Tuple[int, int]]:
        """(descendant_id, depth) pairs ascending by depth, the page itself first"""
        rows = (
            self.db.query(PageTreePath.descendant_id, PageTreePath.depth)
            .filter(PageTreePath.ancestor_id == page_id)
            .order_by(PageTreePath.depth.asc(), PageTreePath.descendant_id.asc())
            .all()
        )
        return [(row.descendant_id, row.depth) for row in rows]

    def is_ancestor(self, ancestor_id: int, descendant_id: int) -> bool:
        """True when a closure row ancestor -> descendant exists (self included)"""
        return self.db.query(PageTreePath).filter(
            PageTreePath.ancestor_id == ancestor_id,
            PageTreePath.descendant_id == descendant_id
        ).first() is not None

    # ==================== CREATE ====================

    def create_page(
        self,
        workspace_id: int,
        title: str,
        created_by_id: int = None,
        parent_id: int = None
    ) -> Page:
        """Insert a page and index it in one unit of work"""
        if parent_id is not None:
            parent = self.get_page(parent_id)
            if parent.workspace_id != workspace_id:
                raise ConflictError(
                    f"Parent page {parent_id} belongs to workspace {parent.workspace_id}, "
                    f"not {workspace_id}"
                )

        page = Page(
            workspace_id=workspace_id,
            parent_id=parent_id,
            title=title,
            created_by_id=created_by_id
        )
        self.db.add(page)
        self.db.flush()

        self.on_page_created(page.id, parent_id)
        return page

    def on_page_created(self, page_id: int, parent_id: Optional[int]):
        """Index a freshly inserted page: self row plus the parent's chain shifted by one"""
        rows = [{'ancestor_id': page_id, 'descendant_id': page_id, 'depth': 0}]
        if parent_id is not None:
            for ancestor_id, depth in self.ancestors_of(parent_id):
                rows.append({'ancestor_id': ancestor_id, 'descendant_id': page_id, 'depth': depth + 1})
        self._insert_paths(rows)

    def _insert_paths(self, rows: List[dict]):
        # Core-level insert: path rows never live in the identity map, so the
        # scoped bulk deletes below cannot leave stale instances behind
        if rows:
            self.db.execute(insert(PageTreePath), rows)

    # ==================== MOVE ====================

    def move_page(self, page_id: int, new_parent_id: Optional[int]) -> List[int]:
        """
        Re-parent a page together with its subtree.

        Returns:
            Ids of every page in the moved subtree (the page itself first).

        Raises:
            NotFoundError: page or new parent missing
            CycleError: new parent is the page itself or one of its descendants
            ConflictError: new parent lives in another workspace
        """
        page = self.get_page(page_id, for_update=True)

        if new_parent_id is not None:
            if new_parent_id == page_id:
                raise CycleError(f"Cannot move page {page_id} under itself")
            parent = self.get_page(new_parent_id, for_update=True)
            if parent.workspace_id != page.workspace_id:
                raise ConflictError(
                    f"Cannot move page {page_id} into workspace {parent.workspace_id}"
                )
            if self.is_ancestor(page_id, new_parent_id):
                raise CycleError(
                    f"Cannot move page {page_id} under its own descendant {new_parent_id}"
                )

        subtree = self.descendants_of(page_id)
        subtree_ids = [descendant_id for descendant_id, _ in subtree]
        invariant(bool(subtree_ids) and subtree_ids[0] == page_id, f"page {page_id} has no self path")

        if page.parent_id == new_parent_id:
            return subtree_ids

        # Sever links to the old ancestor chain, keep the subtree's internal paths
        self.db.query(PageTreePath).filter(
            PageTreePath.descendant_id.in_(subtree_ids),
            PageTreePath.ancestor_id.not_in(subtree_ids)
        ).delete(synchronize_session=False)

        if new_parent_id is not None:
            new_rows = []
            for ancestor_id, ancestor_depth in self.ancestors_of(new_parent_id):
                for descendant_id, subtree_depth in subtree:
                    new_rows.append({
                        'ancestor_id': ancestor_id,
                        'descendant_id': descendant_id,
                        'depth': ancestor_depth + 1 + subtree_depth,
                    })
            self._insert_paths(new_rows)

        old_parent_id = page.parent_id
        page.parent_id = new_parent_id
        self.db.flush()

        LOGGER.info(
            "moved page=%s from parent=%s to parent=%s subtree_size=%d",
            page_id, old_parent_id, new_parent_id, len(subtree_ids)
        )
        return subtree_ids

    # ==================== DELETE ====================

    def delete_page(self, page_id: int) -> List[int]:
        """Delete a page with its whole subtree; returns the removed page ids"""
        self.get_page(page_id, for_update=True)
        subtree = self.descendants_of(page_id)
        subtree_ids = [descendant_id for descendant_id, _ in subtree]

        self.db.query(PagePermission).filter(
            PagePermission.page_id.in_(subtree_ids)
        ).delete(synchronize_session=False)
        self.db.query(PageTreePath).filter(
            PageTreePath.descendant_id.in_(subtree_ids)
        ).delete(synchronize_session=False)

        # Children before parents keeps the self-referencing FK satisfied
        for descendant_id, _ in reversed(subtree):
            self.db.query(Page).filter(Page.id == descendant_id).delete(synchronize_session=False)
        self.db.flush()
        self.db.expire_all()

        LOGGER.info("deleted page=%s subtree_size=%d", page_id, len(subtree_ids))
        return subtree_ids

    # ==================== CONSISTENCY ====================

    def adjacency_chain(self, page_id: int) -> List[int]:
        """Ancestors by walking parent pointers, the page itself first"""
        chain = []
        seen = set()
        current_id = page_id
        while current_id is not None:
            invariant(current_id not in seen, f"parent pointers of page {page_id} form a cycle")
            seen.add(current_id)
            chain.append(current_id)
            current_id = self.db.query(Page.parent_id).filter(Page.id == current_id).scalar()
        return chain

    def verify_closure_consistency(self, page_id: int) -> bool:
        """Check the closure ancestors of a page against its parent-pointer chain"""
        expected = self.adjacency_chain(page_id)
        actual = self.ancestors_of(page_id)
        if len(actual) != len(expected):
            return False
        for depth, (ancestor_id, actual_depth) in enumerate(actual):
            if ancestor_id != expected[depth] or actual_depth != depth:
                return False
        return True

    def rebuild_paths(self, workspace_id: int = None) -> int:
        """Recompute the closure from parent pointers; returns rows written"""
        query = self.db.query(Page.id, Page.parent_id)
        if workspace_id is not None:
            query = query.filter(Page.workspace_id == workspace_id)
        parents: Dict[int, Optional[int]] = {row.id: row.parent_id for row in query.all()}
        if not parents:
            return 0

        page_ids = list(parents)
        self.db.query(PageTreePath).filter(
            PageTreePath.descendant_id.in_(page_ids)
        ).delete(synchronize_session=False)

        rows = []
        for page_id in page_ids:
            for depth, ancestor_id in enumerate(self.adjacency_chain(page_id)):
                rows.append({'ancestor_id': ancestor_id, 'descendant_id': page_id, 'depth': depth})
        self._insert_paths(rows)

        LOGGER.warning("rebuilt page closure workspace=%s rows=%d", workspace_id, len(rows))
        return len(rows)
