"""
Group Membership Service - nesting closure and flattened membership

Two derived tables are kept in step with `group_members`:

- group_ancestor_paths: every (ancestor, descendant) pair of the nesting DAG
  with the shortest nesting distance, self rows included
- group_membership_closure: every (group, user) pair where the user is a
  direct member of the group or of any group nested below it

Additions extend both tables incrementally. Removals cannot: another path may
still justify a row, or may not. They delete the rows that could depend on the
removed edge and recompute them from the remaining edges, scoped to the
ancestors/descendants of that edge.
"""
import logging
from collections import deque
from typing import Dict, Iterable, List, Set

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docaccess.core.errors import ConflictError, CycleError, NotFoundError
from docaccess.models import (
    Group, GroupAncestorPath, GroupMember, GroupMembershipClosure, User
)


LOGGER = logging.getLogger(__name__)


class GroupMembershipService:
    """Maintains and queries the group nesting and membership indexes"""

    def __init__(self, db: Session):
        self.db = db

    # ==================== LOOKUPS ====================

    def get_group(self, group_id: int, for_update: bool = False) -> Group:
        query = self.db.query(Group).filter(Group.id == group_id)
        if for_update:
            query = query.with_for_update()
        group = query.first()
        if not group:
            raise NotFoundError('Group', group_id)
        return group

    def _require_user(self, user_id: int):
        if self.db.query(User.id).filter(User.id == user_id).first() is None:
            raise NotFoundError('User', user_id)

    def ancestors_of(self, group_id: int) -> Dict[int, int]:
        """{ancestor_group_id: depth}, including the group itself at depth 0"""
        rows = self.db.query(GroupAncestorPath.ancestor_group_id, GroupAncestorPath.depth).filter(
            GroupAncestorPath.descendant_group_id == group_id
        ).all()
        result = {row.ancestor_group_id: row.depth for row in rows}
        result.setdefault(group_id, 0)
        return result

    def descendants_of(self, group_id: int) -> Dict[int, int]:
        """{descendant_group_id: depth}, including the group itself at depth 0"""
        rows = self.db.query(GroupAncestorPath.descendant_group_id, GroupAncestorPath.depth).filter(
            GroupAncestorPath.ancestor_group_id == group_id
        ).all()
        result = {row.descendant_group_id: row.depth for row in rows}
        result.setdefault(group_id, 0)
        return result

    def groups_of(self, user_id: int) -> Set[int]:
        """All groups the user belongs to, directly or through nesting"""
        rows = self.db.query(GroupMembershipClosure.group_id).filter(
            GroupMembershipClosure.user_id == user_id
        ).all()
        return {row.group_id for row in rows}

    def members_of(self, group_id: int) -> Set[int]:
        """All users that belong to the group, directly or through nesting"""
        rows = self.db.query(GroupMembershipClosure.user_id).filter(
            GroupMembershipClosure.group_id == group_id
        ).all()
        return {row.user_id for row in rows}

    def direct_users(self, group_ids: Iterable[int]) -> Set[int]:
        group_ids = list(group_ids)
        if not group_ids:
            return set()
        rows = self.db.query(GroupMember.user_id).filter(
            GroupMember.group_id.in_(group_ids),
            GroupMember.user_id.isnot(None)
        ).all()
        return {row.user_id for row in rows}

    def child_groups(self, group_id: int) -> List[int]:
        rows = self.db.query(GroupMember.child_group_id).filter(
            GroupMember.group_id == group_id,
            GroupMember.child_group_id.isnot(None)
        ).all()
        return [row.child_group_id for row in rows]

    # ==================== GROUP HOOKS ====================

    def create_group(self, name: str) -> Group:
        """Insert a group and index it"""
        group = Group(name=name)
        self.db.add(group)
        try:
            self.db.flush()
        except IntegrityError:
            raise ConflictError(f"Group name already in use: {name}") from None
        self.on_group_created(group.id)
        return group

    def on_group_created(self, group_id: int):
        """Ensure the self path row (depth 0) exists for a group"""
        exists = self.db.query(GroupAncestorPath.depth).filter(
            GroupAncestorPath.ancestor_group_id == group_id,
            GroupAncestorPath.descendant_group_id == group_id
        ).first()
        if exists is None:
            self.db.execute(insert(GroupAncestorPath), [
                {'ancestor_group_id': group_id, 'descendant_group_id': group_id, 'depth': 0}
            ])

    # ==================== USERS ====================

    def add_user(self, group_id: int, user_id: int) -> Set[int]:
        """Make a user a direct member; returns the affected user ids"""
        self.get_group(group_id, for_update=True)
        self._require_user(user_id)

        existing = self.db.query(GroupMember).filter_by(group_id=group_id, user_id=user_id).first()
        if existing:
            raise ConflictError(f"User {user_id} is already a member of group {group_id}")

        self.db.add(GroupMember(group_id=group_id, user_id=user_id))
        try:
            self.db.flush()
        except IntegrityError:
            raise ConflictError(f"User {user_id} is already a member of group {group_id}") from None

        self.on_group_created(group_id)
        self._extend_membership(self.ancestors_of(group_id), {user_id})

        LOGGER.info("added user=%s to group=%s", user_id, group_id)
        return {user_id}

    def remove_user(self, group_id: int, user_id: int) -> Set[int]:
        """Drop a direct membership and recompute the user's flattened groups"""
        self.get_group(group_id, for_update=True)
        deleted = self.db.query(GroupMember).filter(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id
        ).delete(synchronize_session=False)
        if deleted == 0:
            raise NotFoundError('GroupMember', f"{group_id}/{user_id}")

        self._rebuild_user_membership(user_id)

        LOGGER.info("removed user=%s from group=%s", user_id, group_id)
        return {user_id}

    def _rebuild_user_membership(self, user_id: int):
        self.db.query(GroupMembershipClosure).filter(
            GroupMembershipClosure.user_id == user_id
        ).delete(synchronize_session=False)

        direct_groups = [
            row.group_id for row in
            self.db.query(GroupMember.group_id).filter(GroupMember.user_id == user_id).all()
        ]
        targets: Set[int] = set()
        for group_id in direct_groups:
            targets.update(self.ancestors_of(group_id))

        if targets:
            self.db.execute(insert(GroupMembershipClosure), [
                {'group_id': group_id, 'user_id': user_id} for group_id in sorted(targets)
            ])

    # ==================== NESTING ====================

    def nest_group(self, parent_group_id: int, child_group_id: int) -> Set[int]:
        """
        Place child group inside parent group.

        Returns:
            Users whose flattened membership may have grown.

        Raises:
            NotFoundError: either group missing
            CycleError: child is the parent or already one of its ancestors
            ConflictError: the nesting edge already exists
        """
        self.get_group(parent_group_id, for_update=True)
        self.get_group(child_group_id, for_update=True)

        if parent_group_id == child_group_id:
            raise CycleError(f"Group {parent_group_id} cannot contain itself")

        self.on_group_created(parent_group_id)
        self.on_group_created(child_group_id)

        parent_ancestors = self.ancestors_of(parent_group_id)
        if child_group_id in parent_ancestors:
            raise CycleError(
                f"Nesting group {child_group_id} in {parent_group_id} would create a cycle"
            )

        existing = self.db.query(GroupMember).filter_by(
            group_id=parent_group_id, child_group_id=child_group_id
        ).first()
        if existing:
            raise ConflictError(f"Group {child_group_id} is already nested in group {parent_group_id}")

        self.db.add(GroupMember(group_id=parent_group_id, child_group_id=child_group_id))
        try:
            self.db.flush()
        except IntegrityError:
            raise ConflictError(
                f"Group {child_group_id} is already nested in group {parent_group_id}"
            ) from None

        child_descendants = self.descendants_of(child_group_id)
        self._merge_paths(parent_ancestors, child_descendants)

        users = self.members_of(child_group_id)
        self._extend_membership(parent_ancestors, users)

        LOGGER.info(
            "nested group=%s in group=%s ancestors=%d descendants=%d users=%d",
            child_group_id, parent_group_id, len(parent_ancestors), len(child_descendants), len(users)
        )
        return users

    def unnest_group(self, parent_group_id: int, child_group_id: int) -> Set[int]:
        """Remove a nesting edge; returns every user whose membership may have shrunk"""
        self.get_group(parent_group_id, for_update=True)
        edge = self.db.query(GroupMember).filter_by(
            group_id=parent_group_id, child_group_id=child_group_id
        ).first()
        if edge is None:
            raise NotFoundError('GroupNesting', f"{parent_group_id}/{child_group_id}")

        upper = set(self.ancestors_of(parent_group_id))
        lower = set(self.descendants_of(child_group_id))
        affected_users = self._members_of_any(upper)

        self.db.delete(edge)
        self.db.flush()

        # Only pairs (upper x lower) can have routed through the removed edge
        self.db.query(GroupAncestorPath).filter(
            GroupAncestorPath.ancestor_group_id.in_(sorted(upper)),
            GroupAncestorPath.descendant_group_id.in_(sorted(lower))
        ).delete(synchronize_session=False)

        children_cache: Dict[int, List[int]] = {}
        rows = []
        for ancestor_id in sorted(upper):
            for descendant_id, depth in self._shortest_descendants(ancestor_id, children_cache).items():
                if descendant_id in lower:
                    rows.append({
                        'ancestor_group_id': ancestor_id,
                        'descendant_group_id': descendant_id,
                        'depth': depth,
                    })
        if rows:
            self.db.execute(insert(GroupAncestorPath), rows)

        self._rebuild_group_membership(upper)

        LOGGER.info(
            "unnested group=%s from group=%s rebuilt_groups=%d affected_users=%d",
            child_group_id, parent_group_id, len(upper), len(affected_users)
        )
        return affected_users

    # ==================== REBUILD HELPERS ====================

    def _merge_paths(self, ancestors: Dict[int, int], descendants: Dict[int, int]):
        """Insert or shorten path rows for every ancestor x descendant pair"""
        current = {
            (row.ancestor_group_id, row.descendant_group_id): row.depth
            for row in self.db.query(
                GroupAncestorPath.ancestor_group_id,
                GroupAncestorPath.descendant_group_id,
                GroupAncestorPath.depth
            ).filter(
                GroupAncestorPath.ancestor_group_id.in_(list(ancestors)),
                GroupAncestorPath.descendant_group_id.in_(list(descendants))
            ).all()
        }
        new_rows = []
        for ancestor_id, ancestor_depth in ancestors.items():
            for descendant_id, descendant_depth in descendants.items():
                depth = ancestor_depth + 1 + descendant_depth
                known = current.get((ancestor_id, descendant_id))
                if known is None:
                    new_rows.append({
                        'ancestor_group_id': ancestor_id,
                        'descendant_group_id': descendant_id,
                        'depth': depth,
                    })
                elif depth < known:
                    self.db.execute(
                        update(GroupAncestorPath)
                        .where(GroupAncestorPath.ancestor_group_id == ancestor_id)
                        .where(GroupAncestorPath.descendant_group_id == descendant_id)
                        .values(depth=depth)
                    )
        if new_rows:
            self.db.execute(insert(GroupAncestorPath), new_rows)

    def _extend_membership(self, group_ids: Iterable[int], user_ids: Iterable[int]):
        group_ids = list(group_ids)
        user_ids = list(user_ids)
        if not group_ids or not user_ids:
            return
        present = {
            (row.group_id, row.user_id)
            for row in self.db.query(GroupMembershipClosure.group_id, GroupMembershipClosure.user_id).filter(
                GroupMembershipClosure.group_id.in_(group_ids),
                GroupMembershipClosure.user_id.in_(user_ids)
            ).all()
        }
        rows = [
            {'group_id': group_id, 'user_id': user_id}
            for group_id in group_ids
            for user_id in user_ids
            if (group_id, user_id) not in present
        ]
        if rows:
            self.db.execute(insert(GroupMembershipClosure), rows)

    def _members_of_any(self, group_ids: Iterable[int]) -> Set[int]:
        group_ids = list(group_ids)
        if not group_ids:
            return set()
        rows = self.db.query(GroupMembershipClosure.user_id).filter(
            GroupMembershipClosure.group_id.in_(group_ids)
        ).distinct().all()
        return {row.user_id for row in rows}

    def _rebuild_group_membership(self, group_ids: Iterable[int]):
        group_ids = sorted(set(group_ids))
        if not group_ids:
            return
        self.db.query(GroupMembershipClosure).filter(
            GroupMembershipClosure.group_id.in_(group_ids)
        ).delete(synchronize_session=False)

        rows = []
        for group_id in group_ids:
            for user_id in sorted(self.direct_users(self.descendants_of(group_id))):
                rows.append({'group_id': group_id, 'user_id': user_id})
        if rows:
            self.db.execute(insert(GroupMembershipClosure), rows)

    def _shortest_descendants(self, root_id: int, children_cache: Dict[int, List[int]]) -> Dict[int, int]:
        """Breadth-first walk of the nesting edges from root_id"""
        depths = {root_id: 0}
        queue = deque([root_id])
        while queue:
            node = queue.popleft()
            if node not in children_cache:
                children_cache[node] = self.child_groups(node)
            for child_id in children_cache[node]:
                if child_id not in depths:
                    depths[child_id] = depths[node] + 1
                    queue.append(child_id)
        return depths

    def rebuild_all(self) -> Dict[str, int]:
        """Recompute both group indexes from group_members"""
        group_ids = [row.id for row in self.db.query(Group.id).all()]
        self.db.query(GroupMembershipClosure).delete(synchronize_session=False)
        self.db.query(GroupAncestorPath).delete(synchronize_session=False)

        children_cache: Dict[int, List[int]] = {}
        path_rows = []
        for group_id in group_ids:
            for descendant_id, depth in self._shortest_descendants(group_id, children_cache).items():
                path_rows.append({
                    'ancestor_group_id': group_id,
                    'descendant_group_id': descendant_id,
                    'depth': depth,
                })
        if path_rows:
            self.db.execute(insert(GroupAncestorPath), path_rows)

        self._rebuild_group_membership(group_ids)
        membership_rows = self.db.query(GroupMembershipClosure).count()

        LOGGER.warning(
            "rebuilt group indexes groups=%d path_rows=%d membership_rows=%d",
            len(group_ids), len(path_rows), membership_rows
        )
        return {'groups': len(group_ids), 'paths': len(path_rows), 'memberships': membership_rows}
