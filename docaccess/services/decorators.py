"""
Flask route guards backed by PermissionService
"""
from functools import wraps

from docaccess.core.errors import NotFoundError
from docaccess.models import PermissionLevel
from .permissions import get_permission_service


def require_page_level(level, get_page_id=None, service=None):
    """
    Decorator to require an effective page level for a route.

    The current user is read from `g.user` (an object with `id`, or a plain id).
    The page id comes from `get_page_id()` or the `page_id` view argument.

    Usage:
        @require_page_level('write')
        def edit_page(page_id):
            ...

        @require_page_level('full_access', get_page_id=lambda: request.json['page_id'])
        def share_page():
            ...
    """
    required = PermissionLevel.parse(level)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            from flask import g, abort

            user = getattr(g, 'user', None)
            if user is None:
                abort(401)
            user_id = getattr(user, 'id', user)

            if get_page_id:
                page_id = get_page_id()
            else:
                page_id = kwargs.get('page_id')
            try:
                page_id = int(page_id)
            except (TypeError, ValueError):
                abort(400)

            permission_service = service or get_permission_service()
            try:
                allowed = permission_service.check_access(user_id, page_id, required)
            except NotFoundError:
                abort(404)
            if not allowed:
                abort(403)

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_sharing_rights(get_page_id=None, service=None):
    """Managing grants on a page requires full_access"""
    return require_page_level(PermissionLevel.FULL_ACCESS, get_page_id=get_page_id, service=service)
