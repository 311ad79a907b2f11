"""
Shared fixtures: an in-memory SQLite database per test and small factories.
"""
import os

os.environ.setdefault("DOCACCESS_DATABASE_URL", "sqlite://")
os.environ.setdefault("DOCACCESS_ENVIRONMENT", "test")

import pytest
from sqlalchemy.orm import sessionmaker

from docaccess.core.database import Base, create_db_engine, init_db
from docaccess.models import Grantee, User, Workspace, WorkspaceMember
from docaccess.services.cache import ResolutionCache
from docaccess.services.permissions import PermissionService


@pytest.fixture
def db_engine():
    engine = create_db_engine("sqlite://", echo=False)
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def cache():
    return ResolutionCache(ttl_seconds=300, max_entries=10_000)


@pytest.fixture
def service(session_factory, cache):
    return PermissionService(session_factory=session_factory, cache=cache, check_invariants=True)


class Factory:
    """Creates entities through the service so every index hook runs"""

    def __init__(self, service: PermissionService, session_factory):
        self.service = service
        self.session_factory = session_factory
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def user(self, name: str = None) -> int:
        n = self._next()
        db = self.session_factory()
        try:
            user = User(email=f"user{n}@example.com", name=name or f"User {n}")
            db.add(user)
            db.commit()
            return user.id
        finally:
            db.close()

    def workspace(self, default_level=None, members=()) -> int:
        db = self.session_factory()
        try:
            workspace = Workspace(name=f"Workspace {self._next()}", default_level=default_level)
            db.add(workspace)
            db.flush()
            for user_id in members:
                db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user_id))
            db.commit()
            return workspace.id
        finally:
            db.close()

    def join_workspace(self, workspace_id: int, user_id: int):
        db = self.session_factory()
        try:
            db.add(WorkspaceMember(workspace_id=workspace_id, user_id=user_id))
            db.commit()
        finally:
            db.close()
        self.service.notify_workspace_membership_changed(user_id)

    def page(self, workspace_id: int, parent_id: int = None, title: str = None) -> int:
        title = title or f"Page {self._next()}"
        return self.service.create_page(workspace_id, title, parent_id=parent_id)['id']

    def chain(self, workspace_id: int, length: int):
        """Pages p0 -> p1 -> ... each a child of the previous"""
        ids = []
        parent_id = None
        for _ in range(length):
            parent_id = self.page(workspace_id, parent_id)
            ids.append(parent_id)
        return ids

    def group(self, name: str = None) -> int:
        return self.service.create_group(name or f"group-{self._next()}")['id']

    def grant_user(self, page_id: int, user_id: int, level):
        return self.service.set_grant(page_id, Grantee.user(user_id), level)

    def grant_group(self, page_id: int, group_id: int, level):
        return self.service.set_grant(page_id, Grantee.group(group_id), level)


@pytest.fixture
def make(service, session_factory):
    return Factory(service, session_factory)
