"""
Database Models for docaccess

Includes:
- User: Identity referenced by grants and memberships
- Workspace / WorkspaceMember: Workspace default level and its members
- Page / PageTreePath: Page forest and its closure index
- Group / GroupMember: Groups, direct members and nesting edges
- GroupAncestorPath / GroupMembershipClosure: Group closure and flattened membership
- PagePermission: Per-page user or group grants
- PermissionLevel and resolution results (Direct, Inherited, WorkspaceDefault, NoAccess)
"""
from .user import User
from .workspace import Workspace, WorkspaceMember, WorkspaceRole
from .page import Page, PageTreePath
from .group import Group, GroupMember, GroupAncestorPath, GroupMembershipClosure
from .permission import PagePermission, PermissionLevel, Grantee
from .resolved import (
    ResolvedPermission, Direct, Inherited, WorkspaceDefault, NoAccess,
    effective_level
)

__all__ = [
    'User',
    'Workspace', 'WorkspaceMember', 'WorkspaceRole',
    'Page', 'PageTreePath',
    'Group', 'GroupMember', 'GroupAncestorPath', 'GroupMembershipClosure',
    'PagePermission', 'PermissionLevel', 'Grantee',
    'ResolvedPermission', 'Direct', 'Inherited', 'WorkspaceDefault', 'NoAccess',
    'effective_level',
]
