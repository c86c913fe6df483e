from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from worklog_auth.domain.permissions import (
    PERM_COST_GROUP_READ,
    PERM_HOLIDAY_READ,
    PERM_MEMBER_READ,
    PERM_MEMBER_WRITE,
    PERM_PROJECT_READ,
    PERM_REPORT_READ,
    PERM_ROLE_WRITE,
    PERM_SERVICE_READ,
    PERM_TASK_READ,
    PERM_TASK_WRITE,
    Access,
)


@dataclass(frozen=True)
class MenuLeaf:
    name: str
    href: str
    key: str
    access: Access = Access.READ


@dataclass(frozen=True)
class MenuGroup:
    name: str
    href: str
    key: str
    access: Access = Access.READ
    children: tuple[MenuNode, ...] = field(default_factory=tuple)


MenuNode = MenuLeaf | MenuGroup


def menu_to_dict(node: MenuNode) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": node.name,
        "href": node.href,
        "key": node.key,
        "access": node.access,
    }
    if isinstance(node, MenuGroup):
        data["children"] = [menu_to_dict(child) for child in node.children]
    return data


DEFAULT_MENU: tuple[MenuNode, ...] = (
    MenuLeaf("Dashboard", "/", PERM_TASK_READ),
    MenuGroup(
        "Work logs",
        "/tasks",
        PERM_TASK_READ,
        children=(
            MenuLeaf("My tasks", "/tasks", PERM_TASK_READ),
            MenuLeaf("New task", "/tasks/new", PERM_TASK_WRITE, Access.WRITE),
        ),
    ),
    MenuGroup(
        "Team",
        "/team",
        PERM_MEMBER_READ,
        children=(
            MenuLeaf("Admin dashboard", "/admin/dashboard", PERM_MEMBER_READ),
            MenuLeaf("Team tasks", "/team/tasks", PERM_TASK_READ),
            MenuLeaf("Resource stats", "/team/stats", PERM_TASK_READ),
            MenuLeaf("Monthly report", "/team/report", PERM_REPORT_READ),
        ),
    ),
    MenuGroup(
        "Projects",
        "/projects",
        PERM_PROJECT_READ,
        children=(
            MenuLeaf("Cost groups", "/cost-groups", PERM_COST_GROUP_READ),
            MenuLeaf("Services", "/services", PERM_SERVICE_READ),
            MenuLeaf("Projects", "/projects", PERM_PROJECT_READ),
            MenuLeaf("Holidays", "/holidays", PERM_HOLIDAY_READ),
        ),
    ),
    MenuGroup(
        "Administration",
        "/admin",
        PERM_MEMBER_READ,
        children=(
            MenuLeaf("Members", "/members", PERM_MEMBER_READ),
            MenuLeaf("Roles", "/roles", PERM_ROLE_WRITE, Access.WRITE),
            MenuLeaf("Member approval", "/members/pending", PERM_MEMBER_WRITE, Access.WRITE),
        ),
    ),
)
