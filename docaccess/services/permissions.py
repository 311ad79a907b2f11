"""
Permission Service - in-process contract consumed by the API layer

Reads:
    resolve / check_access / require_access consult the resolution cache first
    and fall back to the resolution engine.

Writes:
    Every mutation runs in its own session as one atomic transaction. Structural
    mutations (page move/delete, group nesting and membership) re-verify the
    affected indexes before commit when invariant checking is enabled, and are
    serialized in-process. Cache entries are invalidated only after commit:

    - grant set/remove     -> subtree of the granted page
    - page move            -> subtree of the moved page
    - page delete          -> every removed page
    - group change         -> every directly or transitively affected user
    - workspace default    -> every entry of the workspace
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docaccess.core.config import settings
from docaccess.core.database import SessionLocal, atomic
from docaccess.core.errors import AccessDenied, ConflictError, NotFoundError
from docaccess.models import (
    Grantee, Group, Page, PagePermission, PermissionLevel, ResolvedPermission,
    User, Workspace, effective_level
)
from .cache import ResolutionCache
from .group_membership import GroupMembershipService
from .invariants import check_integrity
from .page_tree import PageTreeService
from .resolution import resolve_permission


LOGGER = logging.getLogger(__name__)

# Serializes structural mutations issued from this process
_structure_lock = threading.RLock()

LevelLike = Union[PermissionLevel, str]


class PermissionService:
    """
    Centralized permission resolution and sharing service.
    """

    def __init__(
        self,
        session_factory=None,
        cache: ResolutionCache = None,
        check_invariants: bool = None
    ):
        self.session_factory = session_factory or SessionLocal
        self.cache = cache if cache is not None else ResolutionCache()
        if self.cache.subtree_lookup is None:
            self.cache.subtree_lookup = self._subtree_ids
        self.check_invariants = (
            settings.should_check_invariants if check_invariants is None else check_invariants
        )

    # ==================== SESSIONS ====================

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def _mutation(self, structural: bool = False) -> Iterator[Session]:
        if structural:
            with _structure_lock, self._session() as db, atomic(db):
                yield db
        else:
            with self._session() as db, atomic(db):
                yield db

    def _snapshot(self, db: Session):
        # Resolution issues several reads; pin them to one snapshot where the backend allows it
        if db.get_bind().dialect.name == 'postgresql':
            db.connection(execution_options={'isolation_level': 'REPEATABLE READ'})

    def _verify(self, db: Session, page_ids=None, pages: bool = False, groups: bool = False):
        if self.check_invariants:
            check_integrity(db, page_ids=page_ids, pages=pages, groups=groups)

    def _subtree_ids(self, page_id: int) -> List[int]:
        with self._session() as db:
            return [descendant_id for descendant_id, _ in PageTreeService(db).descendants_of(page_id)]

    # ==================== RESOLUTION ====================

    def resolve(self, user_id: int, page_id: int, use_cache: bool = True) -> ResolvedPermission:
        """Effective permission of a user on a page"""
        if use_cache:
            cached = self.cache.get(user_id, page_id)
            if cached is not None:
                return cached

        epoch = self.cache.current_epoch()
        with self._session() as db:
            self._snapshot(db)
            result = resolve_permission(db, user_id, page_id)
            workspace_id = db.get(Page, page_id).workspace_id

        if use_cache:
            self.cache.put(user_id, page_id, result, workspace_id=workspace_id, epoch=epoch)
        return result

    def resolve_uncached(self, user_id: int, page_id: int) -> ResolvedPermission:
        return self.resolve(user_id, page_id, use_cache=False)

    def effective_level(self, user_id: int, page_id: int) -> PermissionLevel:
        return effective_level(self.resolve(user_id, page_id))

    def check_access(self, user_id: int, page_id: int, required: LevelLike) -> bool:
        """Whether the user's effective level on the page is at least `required`"""
        required = PermissionLevel.parse(required)
        if required == PermissionLevel.NONE:
            return True
        return self.effective_level(user_id, page_id).is_at_least(required)

    def require_access(self, user_id: int, page_id: int, required: LevelLike) -> ResolvedPermission:
        """Resolve and raise AccessDenied when the level is below `required`"""
        required = PermissionLevel.parse(required)
        result = self.resolve(user_id, page_id)
        actual = effective_level(result)
        if required != PermissionLevel.NONE and not actual.is_at_least(required):
            raise AccessDenied(
                f"User {user_id} has {actual.value} on page {page_id}, {required.value} required",
                required=required,
                actual=actual
            )
        return result

    # ==================== GRANTS ====================

    def _grant_query(self, db: Session, page_id: int, grantee: Grantee):
        query = db.query(PagePermission).filter(PagePermission.page_id == page_id)
        if grantee.is_user:
            return query.filter(PagePermission.user_id == grantee.user_id)
        return query.filter(PagePermission.group_id == grantee.group_id)

    def _require_grantee(self, db: Session, grantee: Grantee):
        if grantee.is_user:
            if db.query(User.id).filter(User.id == grantee.user_id).first() is None:
                raise NotFoundError('User', grantee.user_id)
        elif db.query(Group.id).filter(Group.id == grantee.group_id).first() is None:
            raise NotFoundError('Group', grantee.group_id)

    def set_grant(self, page_id: int, grantee: Grantee, level: LevelLike) -> Dict:
        """
        Create or update the grant of `grantee` on a page.

        `level=none` is an explicit denial; use remove_grant to fall back to inheritance.
        """
        level = PermissionLevel.parse(level)
        with self._mutation() as db:
            PageTreeService(db).get_page(page_id)
            self._require_grantee(db, grantee)

            grant = self._grant_query(db, page_id, grantee).first()
            if grant is None:
                grant = PagePermission(
                    page_id=page_id,
                    user_id=grantee.user_id,
                    group_id=grantee.group_id,
                    level=level.value
                )
                db.add(grant)
            elif grant.level != level.value:
                grant.level = level.value
            try:
                db.flush()
            except IntegrityError:
                raise ConflictError(f"Concurrent grant for {grantee} on page {page_id}") from None
            data = grant.to_dict()

        self.cache.invalidate_subtree(page_id)
        LOGGER.info("set grant page=%s grantee=%s level=%s", page_id, grantee, level.value)
        return data

    def remove_grant(self, page_id: int, grantee: Grantee):
        """Delete a grant so the page inherits again"""
        with self._mutation() as db:
            deleted = self._grant_query(db, page_id, grantee).delete(synchronize_session=False)
            if deleted == 0:
                raise NotFoundError('PagePermission', f"{page_id}/{grantee}")

        self.cache.invalidate_subtree(page_id)
        LOGGER.info("removed grant page=%s grantee=%s", page_id, grantee)

    def list_grants(self, page_id: int) -> List[Dict]:
        with self._session() as db:
            PageTreeService(db).get_page(page_id)
            grants = db.query(PagePermission).filter(
                PagePermission.page_id == page_id
            ).order_by(PagePermission.id).all()
            return [grant.to_dict() for grant in grants]

    # ==================== PAGES ====================

    def create_page(
        self,
        workspace_id: int,
        title: str,
        created_by_id: int = None,
        parent_id: int = None
    ) -> Dict:
        with self._mutation(structural=True) as db:
            if db.query(Workspace.id).filter(Workspace.id == workspace_id).first() is None:
                raise NotFoundError('Workspace', workspace_id)
            page = PageTreeService(db).create_page(workspace_id, title, created_by_id, parent_id)
            self._verify(db, page_ids=[page.id], pages=True)
            data = page.to_dict()

        # Page ids can be reused by some backends after a delete
        self.cache.invalidate_pages([data['id']])
        return data

    def move_page(self, page_id: int, new_parent_id: Optional[int]) -> List[int]:
        """Re-parent a page with its subtree; returns the subtree's page ids"""
        with self._mutation(structural=True) as db:
            subtree_ids = PageTreeService(db).move_page(page_id, new_parent_id)
            self._verify(db, page_ids=subtree_ids, pages=True)

        # Subtree identity is unchanged by the move, so this covers old and new position
        self.cache.invalidate_subtree(page_id)
        return subtree_ids

    def delete_page(self, page_id: int) -> List[int]:
        with self._mutation(structural=True) as db:
            removed_ids = PageTreeService(db).delete_page(page_id)
            # The removed ids are gone, so only a full page check can catch stray rows
            self._verify(db, pages=True)

        self.cache.invalidate_pages(removed_ids)
        return removed_ids

    def ancestors_of(self, page_id: int):
        with self._session() as db:
            return PageTreeService(db).ancestors_of(page_id)

    # ==================== GROUPS ====================

    def create_group(self, name: str) -> Dict:
        with self._mutation(structural=True) as db:
            group = GroupMembershipService(db).create_group(name)
            data = group.to_dict()
        return data

    def nest_group(self, parent_group_id: int, child_group_id: int) -> Set[int]:
        with self._mutation(structural=True) as db:
            affected = GroupMembershipService(db).nest_group(parent_group_id, child_group_id)
            self._verify(db, groups=True)

        self.cache.invalidate_users(affected)
        return affected

    def unnest_group(self, parent_group_id: int, child_group_id: int) -> Set[int]:
        with self._mutation(structural=True) as db:
            affected = GroupMembershipService(db).unnest_group(parent_group_id, child_group_id)
            self._verify(db, groups=True)

        self.cache.invalidate_users(affected)
        return affected

    def add_user_to_group(self, group_id: int, user_id: int) -> Set[int]:
        with self._mutation(structural=True) as db:
            affected = GroupMembershipService(db).add_user(group_id, user_id)
            self._verify(db, groups=True)

        self.cache.invalidate_users(affected)
        return affected

    def remove_user_from_group(self, group_id: int, user_id: int) -> Set[int]:
        with self._mutation(structural=True) as db:
            affected = GroupMembershipService(db).remove_user(group_id, user_id)
            self._verify(db, groups=True)

        self.cache.invalidate_users(affected)
        return affected

    def groups_of(self, user_id: int) -> Set[int]:
        with self._session() as db:
            return GroupMembershipService(db).groups_of(user_id)

    # ==================== WORKSPACE ====================

    def set_workspace_default(self, workspace_id: int, level: Optional[LevelLike]) -> Dict:
        """Set (or clear with None) the fallback level for workspace members"""
        value = PermissionLevel.parse(level).value if level is not None else None
        with self._mutation() as db:
            workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first()
            if workspace is None:
                raise NotFoundError('Workspace', workspace_id)
            workspace.default_level = value
            db.flush()
            data = workspace.to_dict()

        self.cache.invalidate_workspace(workspace_id)
        LOGGER.info("set workspace default workspace=%s level=%s", workspace_id, value)
        return data

    def notify_workspace_membership_changed(self, user_id: int):
        """Hook for the member-management layer: the user's workspace fallback may differ"""
        self.cache.invalidate_user(user_id)

    # ==================== MAINTENANCE ====================

    def verify_integrity(self):
        """Full check of every derived index; raises InvariantViolation"""
        with self._session() as db:
            check_integrity(db)

    def clear_cache(self) -> int:
        return self.cache.clear()


# ==================== SINGLETON INSTANCE ====================

_permission_service = None


def get_permission_service() -> PermissionService:
    """Get the singleton permission service instance"""
    global _permission_service
    if _permission_service is None:
        _permission_service = PermissionService()
    return _permission_service


def set_permission_service(service: Optional[PermissionService]):
    """Replace the singleton (application wiring and tests)"""
    global _permission_service
    _permission_service = service
