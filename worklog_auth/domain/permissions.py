from __future__ import annotations

import os
from enum import StrEnum


class Access(StrEnum):
    READ = "read"
    WRITE = "write"


PERM_TASK_READ = "task.read"
PERM_TASK_WRITE = "task.write"
PERM_PROJECT_READ = "project.read"
PERM_PROJECT_WRITE = "project.write"
PERM_MEMBER_READ = "member.read"
PERM_MEMBER_WRITE = "member.write"
PERM_ROLE_READ = "role.read"
PERM_ROLE_WRITE = "role.write"
PERM_REPORT_READ = "report.read"
PERM_REPORT_WRITE = "report.write"
PERM_HOLIDAY_READ = "holiday.read"
PERM_HOLIDAY_WRITE = "holiday.write"
PERM_COST_GROUP_READ = "cost_group.read"
PERM_COST_GROUP_WRITE = "cost_group.write"
PERM_SERVICE_READ = "service.read"
PERM_SERVICE_WRITE = "service.write"

MEMBER_MANAGEMENT_KEY = PERM_MEMBER_WRITE
ROLE_MANAGEMENT_KEY = PERM_ROLE_WRITE

DEFAULT_PERMISSIONS: dict[str, str] = {
    PERM_TASK_READ: "view work logs",
    PERM_TASK_WRITE: "record work logs",
    PERM_PROJECT_READ: "view projects",
    PERM_PROJECT_WRITE: "manage projects",
    PERM_MEMBER_READ: "view members",
    PERM_MEMBER_WRITE: "manage members",
    PERM_ROLE_READ: "view roles",
    PERM_ROLE_WRITE: "manage roles and grants",
    PERM_REPORT_READ: "view reports",
    PERM_REPORT_WRITE: "approve reports",
    PERM_HOLIDAY_READ: "view holidays",
    PERM_HOLIDAY_WRITE: "manage holidays",
    PERM_COST_GROUP_READ: "view cost groups",
    PERM_COST_GROUP_WRITE: "manage cost groups",
    PERM_SERVICE_READ: "view services",
    PERM_SERVICE_WRITE: "manage services",
}

PENDING_ROLE_ID = "pending"
PENDING_ROLE_IDS: frozenset[str] = frozenset(
    item.strip() for item in os.getenv("PENDING_ROLE_IDS", PENDING_ROLE_ID).split(",") if item.strip()
)


def normalize_grant(can_read: bool, can_write: bool) -> tuple[bool, bool]:
    # write implies read
    return (can_read or can_write), can_write


def grant_allows(can_read: bool, can_write: bool, access: Access) -> bool:
    if access == Access.WRITE:
        return can_write
    return can_read or can_write
