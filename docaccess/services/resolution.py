"""
Resolution Engine - effective permission of one user on one page

Precedence, applied while walking the page's ancestors from depth 0 upward:

1. Closest depth wins; the first depth with any applicable grant ends the walk
2. At that depth a user grant beats every group grant
3. Among the user's group grants at that depth the most permissive level wins
   (`none` ranks lowest and is not a trump card)
4. No grant anywhere: the workspace default for workspace members, else no access

A user-level `none` at the winning depth is the only way to deny access that
a group grant at the same depth would otherwise give.
"""
from collections import defaultdict
from typing import Dict, List

from sqlalchemy.orm import Session

from docaccess.core.errors import invariant
from docaccess.models import (
    Direct, Inherited, NoAccess, PagePermission, PermissionLevel,
    ResolvedPermission, Workspace, WorkspaceDefault, WorkspaceMember
)
from .group_membership import GroupMembershipService
from .page_tree import PageTreeService


def resolve_permission(db: Session, user_id: int, page_id: int) -> ResolvedPermission:
    """
    Resolve the effective permission for a user on a page.

    Raises:
        NotFoundError: the page does not exist
        InvariantViolation: the page is missing from the closure index
    """
    tree = PageTreeService(db)
    page = tree.get_page(page_id)

    ancestors = tree.ancestors_of(page_id)
    invariant(
        bool(ancestors) and ancestors[0] == (page_id, 0),
        f"page {page_id} has no self path in the closure index"
    )
    ancestor_ids = [ancestor_id for ancestor_id, _ in ancestors]
    group_ids = GroupMembershipService(db).groups_of(user_id)

    user_grants = _user_grants(db, user_id, ancestor_ids)
    group_grants = _group_grants(db, group_ids, ancestor_ids)

    for ancestor_id, depth in ancestors:
        level = user_grants.get(ancestor_id)
        if level is None and ancestor_id in group_grants:
            level = PermissionLevel.most_permissive(group_grants[ancestor_id])
        if level is None:
            continue
        if depth == 0:
            return Direct(level=level, page_id=ancestor_id)
        return Inherited(level=level, from_page_id=ancestor_id, depth=depth)

    return _workspace_fallback(db, user_id, page.workspace_id)


def _user_grants(db: Session, user_id: int, page_ids: List[int]) -> Dict[int, PermissionLevel]:
    rows = db.query(PagePermission.page_id, PagePermission.level).filter(
        PagePermission.page_id.in_(page_ids),
        PagePermission.user_id == user_id
    ).all()
    return {row.page_id: PermissionLevel.parse(row.level) for row in rows}


def _group_grants(db: Session, group_ids, page_ids: List[int]) -> Dict[int, List[PermissionLevel]]:
    grants = defaultdict(list)
    if not group_ids:
        return grants
    rows = db.query(PagePermission.page_id, PagePermission.level).filter(
        PagePermission.page_id.in_(page_ids),
        PagePermission.group_id.in_(sorted(group_ids))
    ).all()
    for row in rows:
        grants[row.page_id].append(PermissionLevel.parse(row.level))
    return grants


def _workspace_fallback(db: Session, user_id: int, workspace_id: int) -> ResolvedPermission:
    default_level = db.query(Workspace.default_level).filter(Workspace.id == workspace_id).scalar()
    if default_level is None:
        return NoAccess()

    is_member = db.query(WorkspaceMember.id).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == user_id
    ).first() is not None
    if not is_member:
        return NoAccess()

    return WorkspaceDefault(level=PermissionLevel.parse(default_level), workspace_id=workspace_id)
