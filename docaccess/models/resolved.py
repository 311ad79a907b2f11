"""
Resolution Results

The effective permission of a user on a page, together with where it came from.
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Union

from .permission import PermissionLevel


@dataclass(frozen=True)
class Direct:
    """Grant found on the page itself"""
    level: PermissionLevel
    page_id: int

    kind = 'direct'


@dataclass(frozen=True)
class Inherited:
    """Grant found on an ancestor `depth` levels above the page"""
    level: PermissionLevel
    from_page_id: int
    depth: int

    kind = 'inherited'


@dataclass(frozen=True)
class WorkspaceDefault:
    """No grant on the ancestor chain; the workspace default applies"""
    level: PermissionLevel
    workspace_id: int

    kind = 'workspace_default'


@dataclass(frozen=True)
class NoAccess:
    """No grant and no applicable workspace default"""

    kind = 'no_access'


ResolvedPermission = Union[Direct, Inherited, WorkspaceDefault, NoAccess]


def effective_level(result: ResolvedPermission) -> PermissionLevel:
    """Level carried by a result; NoAccess counts as `none`"""
    if isinstance(result, NoAccess):
        return PermissionLevel.NONE
    return result.level


def to_dict(result: ResolvedPermission) -> Dict[str, Any]:
    data = asdict(result)
    if 'level' in data:
        data['level'] = data['level'].value
    data['kind'] = result.kind
    return data
