"""Business Logic Services"""
from .page_tree import PageTreeService
from .group_membership import GroupMembershipService
from .resolution import resolve_permission
from .cache import ResolutionCache
from .permissions import PermissionService, get_permission_service, set_permission_service
from .invariants import check_integrity, reference_resolve

__all__ = [
    'PageTreeService',
    'GroupMembershipService',
    'resolve_permission',
    'ResolutionCache',
    'PermissionService', 'get_permission_service', 'set_permission_service',
    'check_integrity', 'reference_resolve',
]
