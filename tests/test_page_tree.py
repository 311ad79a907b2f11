"""
Tests for the page closure index
"""
import pytest

from docaccess.core.errors import ConflictError, CycleError, NotFoundError
from docaccess.models import PageTreePath, Workspace
from docaccess.services.page_tree import PageTreeService


@pytest.fixture
def tree(db):
    return PageTreeService(db)


@pytest.fixture
def workspace_id(db):
    workspace = Workspace(name="Docs")
    db.add(workspace)
    db.commit()
    return workspace.id


def build(tree, workspace_id, shape):
    """shape: list of (name, parent_name); returns {name: id}"""
    ids = {}
    for name, parent in shape:
        page = tree.create_page(workspace_id, name, parent_id=ids.get(parent) if parent else None)
        ids[name] = page.id
    tree.db.commit()
    return ids


class TestCreate:
    """Copy-on-create indexing"""

    def test_root_has_only_self_row(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("root", None)])
        assert tree.ancestors_of(ids["root"]) == [(ids["root"], 0)]

    def test_child_copies_parent_chain(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "b")])
        assert tree.ancestors_of(ids["c"]) == [(ids["c"], 0), (ids["b"], 1), (ids["a"], 2)]

    def test_descendants_ordered_by_depth(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "a"), ("d", "b")])
        assert tree.descendants_of(ids["a"]) == [
            (ids["a"], 0), (ids["b"], 1), (ids["c"], 1), (ids["d"], 2)
        ]

    def test_missing_parent(self, tree, workspace_id):
        with pytest.raises(NotFoundError):
            tree.create_page(workspace_id, "orphan", parent_id=999)

    def test_parent_in_other_workspace(self, tree, db, workspace_id):
        other = Workspace(name="Other")
        db.add(other)
        db.commit()
        ids = build(tree, workspace_id, [("a", None)])
        with pytest.raises(ConflictError):
            tree.create_page(other.id, "x", parent_id=ids["a"])

    def test_row_count_is_sum_of_depths(self, tree, db, workspace_id):
        build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "b"), ("d", "a")])
        # a:1, b:2, c:3, d:2
        assert db.query(PageTreePath).count() == 8


class TestMove:
    """Subtree re-parenting"""

    def test_move_rewrites_subtree_ancestors(self, tree, workspace_id):
        ids = build(tree, workspace_id, [
            ("a", None), ("b", "a"), ("c", "b"), ("x", None), ("y", "x")
        ])
        moved = tree.move_page(ids["b"], ids["y"])
        tree.db.commit()

        assert moved == [ids["b"], ids["c"]]
        assert tree.ancestors_of(ids["c"]) == [
            (ids["c"], 0), (ids["b"], 1), (ids["y"], 2), (ids["x"], 3)
        ]
        assert not tree.is_ancestor(ids["a"], ids["c"])
        assert tree.verify_closure_consistency(ids["b"])
        assert tree.verify_closure_consistency(ids["c"])

    def test_move_to_root(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "b")])
        tree.move_page(ids["b"], None)
        tree.db.commit()
        assert tree.ancestors_of(ids["c"]) == [(ids["c"], 0), (ids["b"], 1)]
        assert tree.get_page(ids["b"]).parent_id is None

    def test_move_under_itself(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("a", None)])
        with pytest.raises(CycleError):
            tree.move_page(ids["a"], ids["a"])

    def test_move_under_descendant_leaves_index_untouched(self, tree, db, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "b")])
        before = db.query(PageTreePath).count()
        with pytest.raises(CycleError):
            tree.move_page(ids["a"], ids["c"])
        assert db.query(PageTreePath).count() == before
        assert tree.verify_closure_consistency(ids["c"])

    def test_move_to_same_parent_is_noop(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a")])
        assert tree.move_page(ids["b"], ids["a"]) == [ids["b"]]
        assert tree.ancestors_of(ids["b"]) == [(ids["b"], 0), (ids["a"], 1)]

    def test_move_across_workspaces(self, tree, db, workspace_id):
        other = Workspace(name="Other")
        db.add(other)
        db.commit()
        ids = build(tree, workspace_id, [("a", None)])
        foreign = tree.create_page(other.id, "foreign")
        db.commit()
        with pytest.raises(ConflictError):
            tree.move_page(ids["a"], foreign.id)

    def test_move_missing_page(self, tree):
        with pytest.raises(NotFoundError):
            tree.move_page(12345, None)


class TestDelete:

    def test_delete_removes_subtree(self, tree, db, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "b"), ("d", "a")])
        removed = tree.delete_page(ids["b"])
        db.commit()

        assert sorted(removed) == sorted([ids["b"], ids["c"]])
        assert db.query(PageTreePath).filter(PageTreePath.descendant_id == ids["c"]).count() == 0
        with pytest.raises(NotFoundError):
            tree.get_page(ids["c"])
        assert tree.descendants_of(ids["a"]) == [(ids["a"], 0), (ids["d"], 1)]


class TestRebuild:

    def test_rebuild_restores_damaged_closure(self, tree, db, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a"), ("c", "b")])
        db.query(PageTreePath).filter(PageTreePath.descendant_id == ids["c"]).delete()
        db.commit()
        assert not tree.verify_closure_consistency(ids["c"])

        written = tree.rebuild_paths(workspace_id)
        db.commit()

        assert written == 6
        assert tree.verify_closure_consistency(ids["c"])

    def test_adjacency_chain(self, tree, workspace_id):
        ids = build(tree, workspace_id, [("a", None), ("b", "a")])
        assert tree.adjacency_chain(ids["b"]) == [ids["b"], ids["a"]]
