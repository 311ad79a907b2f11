"""
Tests for permission levels and resolution result values
"""
import pytest

from docaccess.models import (
    Direct, Grantee, Inherited, NoAccess, PermissionLevel, WorkspaceDefault, effective_level
)
from docaccess.models.resolved import to_dict


class TestPermissionLevel:

    def test_total_order(self):
        ordered = [PermissionLevel.NONE, PermissionLevel.READ, PermissionLevel.WRITE, PermissionLevel.FULL_ACCESS]
        assert [level.rank for level in ordered] == [0, 1, 2, 3]

    def test_parse(self):
        assert PermissionLevel.parse(" Write ") is PermissionLevel.WRITE
        assert PermissionLevel.parse(PermissionLevel.READ) is PermissionLevel.READ
        with pytest.raises(ValueError):
            PermissionLevel.parse("owner")

    def test_none_is_lowest_not_a_trump(self):
        assert PermissionLevel.most_permissive(["none", "read"]) is PermissionLevel.READ
        assert PermissionLevel.most_permissive(["none"]) is PermissionLevel.NONE

    def test_is_at_least(self):
        assert PermissionLevel.FULL_ACCESS.is_at_least("write")
        assert not PermissionLevel.NONE.is_at_least(PermissionLevel.READ)


class TestResolvedPermission:

    def test_effective_level(self):
        assert effective_level(NoAccess()) is PermissionLevel.NONE
        assert effective_level(Direct(level=PermissionLevel.READ, page_id=1)) is PermissionLevel.READ

    def test_to_dict(self):
        assert to_dict(Inherited(level=PermissionLevel.WRITE, from_page_id=3, depth=2)) == {
            'kind': 'inherited', 'level': 'write', 'from_page_id': 3, 'depth': 2
        }
        assert to_dict(WorkspaceDefault(level=PermissionLevel.READ, workspace_id=7))['kind'] == 'workspace_default'
        assert to_dict(NoAccess()) == {'kind': 'no_access'}

    def test_grantee_str(self):
        assert str(Grantee.user(4)) == "user:4"
        assert str(Grantee.group(9)) == "group:9"
