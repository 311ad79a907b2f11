"""
Index integrity checks and a closure-free reference resolver.

The checks recompute each derived table from its source edges (parent
pointers, group_members) and report every difference. `check_integrity`
raises InvariantViolation; PermissionService calls it before committing a
structural mutation when `settings.should_check_invariants` is on.

`reference_resolve` answers the same question as `resolve_permission` without
touching any closure table: it walks parent pointers and expands group
nesting recursively. Tests use it as an oracle.
"""
import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from docaccess.core.errors import InvariantViolation, NotFoundError
from docaccess.models import (
    Direct, Group, GroupAncestorPath, GroupMember, GroupMembershipClosure,
    Inherited, NoAccess, Page, PagePermission, PermissionLevel,
    ResolvedPermission, Workspace, WorkspaceDefault, WorkspaceMember
)
from .page_tree import PageTreeService


LOGGER = logging.getLogger(__name__)


# ==================== PAGE CLOSURE ====================

def verify_page_closure(db: Session, page_ids: Iterable[int] = None) -> List[str]:
    """Compare closure ancestors with parent-pointer chains"""
    tree = PageTreeService(db)
    if page_ids is None:
        page_ids = [row.id for row in db.query(Page.id).all()]

    problems = []
    for page_id in page_ids:
        if not tree.verify_closure_consistency(page_id):
            problems.append(
                f"page {page_id}: closure {tree.ancestors_of(page_id)} "
                f"!= adjacency {tree.adjacency_chain(page_id)}"
            )
    return problems


# ==================== GROUP CLOSURE ====================

def _nesting_edges(db: Session) -> Dict[int, List[int]]:
    children: Dict[int, List[int]] = {}
    rows = db.query(GroupMember.group_id, GroupMember.child_group_id).filter(
        GroupMember.child_group_id.isnot(None)
    ).all()
    for row in rows:
        children.setdefault(row.group_id, []).append(row.child_group_id)
    return children


def _bfs(children: Dict[int, List[int]], root_id: int) -> Dict[int, int]:
    depths = {root_id: 0}
    queue = deque([root_id])
    while queue:
        node = queue.popleft()
        for child_id in children.get(node, ()):
            if child_id not in depths:
                depths[child_id] = depths[node] + 1
                queue.append(child_id)
    return depths


def expected_group_paths(db: Session) -> Set[Tuple[int, int, int]]:
    children = _nesting_edges(db)
    expected = set()
    for (group_id,) in db.query(Group.id).all():
        for descendant_id, depth in _bfs(children, group_id).items():
            expected.add((group_id, descendant_id, depth))
    return expected


def expected_group_membership(db: Session) -> Set[Tuple[int, int]]:
    children = _nesting_edges(db)
    direct: Dict[int, Set[int]] = {}
    for row in db.query(GroupMember.group_id, GroupMember.user_id).filter(
        GroupMember.user_id.isnot(None)
    ).all():
        direct.setdefault(row.group_id, set()).add(row.user_id)

    expected = set()
    for (group_id,) in db.query(Group.id).all():
        for descendant_id in _bfs(children, group_id):
            for user_id in direct.get(descendant_id, ()):
                expected.add((group_id, user_id))
    return expected


def verify_group_closure(db: Session) -> List[str]:
    actual = {
        (row.ancestor_group_id, row.descendant_group_id, row.depth)
        for row in db.query(
            GroupAncestorPath.ancestor_group_id,
            GroupAncestorPath.descendant_group_id,
            GroupAncestorPath.depth
        ).all()
    }
    expected = expected_group_paths(db)
    return _diff('group path', expected, actual)


def verify_group_membership(db: Session) -> List[str]:
    actual = {
        (row.group_id, row.user_id)
        for row in db.query(GroupMembershipClosure.group_id, GroupMembershipClosure.user_id).all()
    }
    expected = expected_group_membership(db)
    return _diff('group membership', expected, actual)


def _diff(label: str, expected: set, actual: set) -> List[str]:
    problems = [f"missing {label} {row}" for row in sorted(expected - actual)]
    problems.extend(f"unexpected {label} {row}" for row in sorted(actual - expected))
    return problems


# ==================== ENTRY POINT ====================

def check_integrity(db: Session, page_ids: Iterable[int] = None, pages: bool = True, groups: bool = True):
    """Raise InvariantViolation when any derived index diverges from its source edges"""
    problems = []
    if pages:
        problems.extend(verify_page_closure(db, page_ids))
    if groups:
        problems.extend(verify_group_closure(db))
        problems.extend(verify_group_membership(db))
    if problems:
        for problem in problems:
            LOGGER.error("index integrity: %s", problem)
        summary = "; ".join(problems[:5])
        if len(problems) > 5:
            summary += f" (+{len(problems) - 5} more)"
        raise InvariantViolation(summary)


# ==================== REFERENCE RESOLVER ====================

def _user_groups_by_expansion(db: Session, user_id: int) -> Set[int]:
    groups = {
        row.group_id for row in
        db.query(GroupMember.group_id).filter(GroupMember.user_id == user_id).all()
    }
    frontier = set(groups)
    while frontier:
        parents = {
            row.group_id for row in
            db.query(GroupMember.group_id).filter(GroupMember.child_group_id.in_(sorted(frontier))).all()
        }
        frontier = parents - groups
        groups |= frontier
    return groups


def reference_resolve(db: Session, user_id: int, page_id: int) -> ResolvedPermission:
    """Resolve without closure tables: parent walk plus recursive group expansion"""
    page = db.query(Page).filter(Page.id == page_id).first()
    if page is None:
        raise NotFoundError('Page', page_id)

    groups = _user_groups_by_expansion(db, user_id)
    chain = PageTreeService(db).adjacency_chain(page_id)

    for depth, ancestor_id in enumerate(chain):
        grants = db.query(PagePermission).filter(PagePermission.page_id == ancestor_id).all()
        level: Optional[PermissionLevel] = None
        for grant in grants:
            if grant.user_id == user_id:
                level = grant.permission_level
                break
        if level is None:
            group_levels = [g.permission_level for g in grants if g.group_id in groups]
            if group_levels:
                level = PermissionLevel.most_permissive(group_levels)
        if level is not None:
            if depth == 0:
                return Direct(level=level, page_id=ancestor_id)
            return Inherited(level=level, from_page_id=ancestor_id, depth=depth)

    workspace = db.query(Workspace).filter(Workspace.id == page.workspace_id).first()
    if workspace is None or workspace.default_level is None:
        return NoAccess()
    is_member = db.query(WorkspaceMember).filter_by(
        workspace_id=workspace.id, user_id=user_id
    ).first() is not None
    if not is_member:
        return NoAccess()
    return WorkspaceDefault(level=PermissionLevel.parse(workspace.default_level), workspace_id=workspace.id)
