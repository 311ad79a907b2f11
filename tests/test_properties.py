"""
Property tests: random mutation sequences checked against the closure-free
reference resolver and the integrity checks.
"""
from contextlib import contextmanager

from hypothesis import HealthCheck, given, settings, strategies as st
from sqlalchemy.orm import sessionmaker

from docaccess.core.database import create_db_engine, init_db
from docaccess.core.errors import ConflictError, CycleError, NotFoundError
from docaccess.models import (
    Direct, Grantee, Inherited, PermissionLevel, User, Workspace, WorkspaceMember,
    effective_level
)
from docaccess.services.cache import ResolutionCache
from docaccess.services.invariants import check_integrity, reference_resolve
from docaccess.services.page_tree import PageTreeService
from docaccess.services.permissions import PermissionService


LEVELS = [level.value for level in PermissionLevel]
OPS = [
    'create', 'create', 'move', 'move', 'delete',
    'grant_user', 'grant_group', 'revoke_user', 'revoke_group',
    'nest', 'unnest', 'add_user', 'remove_user', 'default',
]
EXPECTED_ERRORS = (ConflictError, CycleError, NotFoundError)

operations = st.lists(
    st.tuples(st.sampled_from(OPS), st.integers(0, 7), st.integers(0, 7), st.sampled_from(LEVELS)),
    max_size=20
)


@contextmanager
def fresh_service():
    engine = create_db_engine("sqlite://", echo=False)
    init_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    service = PermissionService(
        session_factory=factory,
        cache=ResolutionCache(ttl_seconds=300, max_entries=10_000),
        check_invariants=True
    )
    try:
        yield service, factory
    finally:
        engine.dispose()


def seed(factory, user_count=3):
    db = factory()
    try:
        users = [User(email=f"p{n}@example.com", name=f"P{n}") for n in range(user_count)]
        workspace = Workspace(name="Props")
        db.add_all(users + [workspace])
        db.flush()
        # The last user stays outside the workspace
        for user in users[:-1]:
            db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id))
        db.commit()
        return [user.id for user in users], workspace.id
    finally:
        db.close()


def apply(service, op, a, b, level, state):
    pages, groups, users, workspace_id = state['pages'], state['groups'], state['users'], state['workspace']
    def pick(items, i):
        return items[i % len(items)]

    if op == 'create':
        parent_id = pick(pages, a) if pages and b % 3 else None
        pages.append(service.create_page(workspace_id, f"p{len(pages)}", parent_id=parent_id)['id'])
    elif not pages and op in ('move', 'delete', 'grant_user', 'grant_group', 'revoke_user', 'revoke_group'):
        return
    elif op == 'move':
        service.move_page(pick(pages, a), pick(pages, b) if b % 4 else None)
    elif op == 'delete':
        for page_id in service.delete_page(pick(pages, a)):
            pages.remove(page_id)
    elif op == 'grant_user':
        service.set_grant(pick(pages, a), Grantee.user(pick(users, b)), level)
    elif op == 'grant_group':
        service.set_grant(pick(pages, a), Grantee.group(pick(groups, b)), level)
    elif op == 'revoke_user':
        service.remove_grant(pick(pages, a), Grantee.user(pick(users, b)))
    elif op == 'revoke_group':
        service.remove_grant(pick(pages, a), Grantee.group(pick(groups, b)))
    elif op == 'nest':
        service.nest_group(pick(groups, a), pick(groups, b))
    elif op == 'unnest':
        service.unnest_group(pick(groups, a), pick(groups, b))
    elif op == 'add_user':
        service.add_user_to_group(pick(groups, a), pick(users, b))
    elif op == 'remove_user':
        service.remove_user_from_group(pick(groups, a), pick(users, b))
    elif op == 'default':
        service.set_workspace_default(workspace_id, level if a % 3 else None)


def assert_matches_reference(service, factory, state):
    db = factory()
    try:
        check_integrity(db)
        tree = PageTreeService(db)
        for user_id in state['users']:
            for page_id in state['pages']:
                expected = reference_resolve(db, user_id, page_id)
                assert service.resolve(user_id, page_id) == expected
                if isinstance(expected, Inherited):
                    assert expected.from_page_id in tree.adjacency_chain(page_id)
    finally:
        db.close()


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(ops=operations)
def test_random_mutations_match_reference(ops):
    """Cached resolution after every mutation equals the closure-free oracle"""
    with fresh_service() as (service, factory):
        users, workspace_id = seed(factory)
        state = {
            'users': users,
            'workspace': workspace_id,
            'pages': [],
            'groups': [service.create_group(f"g{n}")['id'] for n in range(4)],
        }
        for op, a, b, level in ops:
            try:
                apply(service, op, a, b, level, state)
            except EXPECTED_ERRORS:
                pass
            assert_matches_reference(service, factory, state)


@settings(max_examples=30, deadline=None)
@given(
    depth=st.integers(2, 6),
    data=st.data()
)
def test_closest_grant_governs(depth, data):
    """A grant at a smaller depth always decides, whatever lies further up"""
    near = data.draw(st.integers(0, depth - 2))
    far = data.draw(st.integers(near + 1, depth - 1))
    near_level = data.draw(st.sampled_from(LEVELS))
    far_level = data.draw(st.sampled_from(LEVELS))
    near_by_group = data.draw(st.booleans())

    with fresh_service() as (service, factory):
        (user,), workspace_id = seed(factory, user_count=1)
        group = service.create_group("g")['id']
        service.add_user_to_group(group, user)

        chain = []
        parent_id = None
        for n in range(depth):
            parent_id = service.create_page(workspace_id, f"c{n}", parent_id=parent_id)['id']
            chain.append(parent_id)
        leaf = chain[-1]
        near_page = chain[depth - 1 - near]
        far_page = chain[depth - 1 - far]

        near_grantee = Grantee.group(group) if near_by_group else Grantee.user(user)
        service.set_grant(near_page, near_grantee, near_level)
        service.set_grant(far_page, Grantee.user(user), far_level)

        result = service.resolve(user, leaf)
        assert effective_level(result) == PermissionLevel.parse(near_level)
        if near == 0:
            assert result == Direct(level=PermissionLevel.parse(near_level), page_id=leaf)
        else:
            assert result == Inherited(level=PermissionLevel.parse(near_level), from_page_id=near_page, depth=near)


@settings(max_examples=30, deadline=None)
@given(group_level=st.sampled_from(LEVELS), other_level=st.sampled_from(LEVELS))
def test_joining_granting_group_never_lowers_level(group_level, other_level):
    """With no user grant on the page, joining a group that grants on it gives at least that level"""
    with fresh_service() as (service, factory):
        (user,), workspace_id = seed(factory, user_count=1)
        granting, other = service.create_group("granting")['id'], service.create_group("other")['id']
        service.add_user_to_group(other, user)
        page_id = service.create_page(workspace_id, "p")['id']
        service.set_grant(page_id, Grantee.group(granting), group_level)
        service.set_grant(page_id, Grantee.group(other), other_level)

        before = effective_level(service.resolve(user, page_id))
        service.add_user_to_group(granting, user)
        after = effective_level(service.resolve(user, page_id))

        assert after.is_at_least(before)
        assert after.is_at_least(group_level)


@settings(max_examples=20, deadline=None)
@given(level=st.sampled_from(LEVELS))
def test_resolve_is_deterministic(level):
    with fresh_service() as (service, factory):
        (user,), workspace_id = seed(factory, user_count=1)
        root = service.create_page(workspace_id, "root")['id']
        leaf = service.create_page(workspace_id, "leaf", parent_id=root)['id']
        service.set_grant(root, Grantee.user(user), level)

        first = service.resolve_uncached(user, leaf)
        assert service.resolve_uncached(user, leaf) == first
        assert service.resolve(user, leaf) == first
        assert service.resolve(user, leaf) == first
