from __future__ import annotations

import copy

from worklog_auth.domain.menu import DEFAULT_MENU, MenuGroup, MenuLeaf, menu_to_dict
from worklog_auth.domain.permissions import Access
from worklog_auth.services.menu_filter import MenuFilter


class AllowList:
    def __init__(self, *allowed: tuple[str, Access]) -> None:
        self._allowed = set(allowed)
        self.calls: list[tuple[str, str]] = []

    def can_access(self, subject_id: str | None, key: str, access: Access | str) -> bool:
        self.calls.append((key, str(access)))
        return subject_id is not None and (key, Access(access)) in self._allowed


TREE = (
    MenuLeaf("Dashboard", "/", "task.read"),
    MenuGroup(
        "Work logs",
        "/tasks",
        "task.read",
        children=(
            MenuLeaf("My tasks", "/tasks", "task.read"),
            MenuLeaf("New task", "/tasks/new", "task.write", Access.WRITE),
        ),
    ),
    MenuGroup(
        "Administration",
        "/admin",
        "member.read",
        children=(MenuLeaf("Roles", "/roles", "role.write", Access.WRITE),),
    ),
    MenuGroup("Reports", "/reports", "report.read"),
)


def test_leaves_and_groups_are_pruned_by_access() -> None:
    engine = AllowList(("task.read", Access.READ), ("member.read", Access.READ))

    result = MenuFilter(engine).filter(TREE, "viewer")  # type: ignore[arg-type]

    assert [node.name for node in result] == ["Dashboard", "Work logs"]
    work_logs = result[1]
    assert isinstance(work_logs, MenuGroup)
    assert [child.name for child in work_logs.children] == ["My tasks"]


def test_group_without_children_is_kept_when_allowed() -> None:
    engine = AllowList(("report.read", Access.READ))

    result = MenuFilter(engine).filter(TREE, "auditor")  # type: ignore[arg-type]

    assert result == (MenuGroup("Reports", "/reports", "report.read"),)


def test_denied_group_hides_allowed_children() -> None:
    engine = AllowList(("role.write", Access.WRITE))

    assert MenuFilter(engine).filter(TREE, "someone") == ()  # type: ignore[arg-type]


def test_filter_is_idempotent_and_keeps_order() -> None:
    engine = AllowList(
        ("task.read", Access.READ),
        ("task.write", Access.WRITE),
        ("report.read", Access.READ),
    )
    menu_filter = MenuFilter(engine)  # type: ignore[arg-type]

    once = menu_filter.filter(TREE, "writer")
    twice = menu_filter.filter(once, "writer")

    assert once == twice
    assert [node.name for node in once] == ["Dashboard", "Work logs", "Reports"]


def test_source_tree_is_not_mutated() -> None:
    snapshot = copy.deepcopy(TREE)
    engine = AllowList(("task.read", Access.READ))

    MenuFilter(engine).filter(TREE, "viewer")  # type: ignore[arg-type]

    assert TREE == snapshot


def test_decisions_are_reused_within_one_call() -> None:
    engine = AllowList(("task.read", Access.READ))

    MenuFilter(engine).filter(TREE, "viewer")  # type: ignore[arg-type]

    assert engine.calls.count(("task.read", "read")) == 1


def test_default_menu_for_a_viewer(seed) -> None:
    viewer = seed.role("Viewer", {"task.read": (True, False)})
    member = seed.identity("member-a", role_id=viewer)

    result = MenuFilter().filter(DEFAULT_MENU, member)

    assert [menu_to_dict(node)["name"] for node in result] == ["Dashboard", "Work logs"]
    assert MenuFilter().filter(DEFAULT_MENU, None) == ()
