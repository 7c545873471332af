# permissions.py — Static role → capability table and access rules
# - 3 roles: admin > hr_manager > employee
# - Capability strings follow "<family>:<action>[:<scope>]"
# - Pure functions only; the FastAPI dependencies in auth.py call into these

from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional, Union

from models import UserRole


# ============================================================
# CAPABILITIES
# ============================================================

USER_PERMISSIONS = [
    "users:create",
    "users:read:all",
    "users:read:own",
    "users:update:all",
    "users:update:own",
    "users:delete",
    "users:assign_roles",
]

CHECKLIST_PERMISSIONS = [
    "checklists:create",
    "checklists:read:all",
    "checklists:read:own",
    "checklists:update:all",
    "checklists:update:own",
    "checklists:delete:all",
    "checklists:delete:own",
    "checklists:assign",
]

TEMPLATE_PERMISSIONS = [
    "templates:create",
    "templates:view",
    "templates:read",
    "templates:edit",
    "templates:delete",
    "templates:approve",
    "templates:clone",
]

REPORT_PERMISSIONS = [
    "analytics:view",
    "reports:generate",
    "reports:export",
]

SYSTEM_PERMISSIONS = [
    "system:settings",
    "system:logs",
    "system:backup",
]

SESSION_PERMISSIONS = [
    "sessions:view:all",
    "sessions:view:own",
    "sessions:terminate:all",
    "sessions:terminate:own",
]

ALL_PERMISSIONS = (
    USER_PERMISSIONS + CHECKLIST_PERMISSIONS + TEMPLATE_PERMISSIONS
    + REPORT_PERMISSIONS + SYSTEM_PERMISSIONS + SESSION_PERMISSIONS
)

_HR_EXCLUDED = {
    "users:delete",
    "users:assign_roles",
    "sessions:view:all",
    "sessions:terminate:all",
    *SYSTEM_PERMISSIONS,
}


# ============================================================
# ROLE HIERARCHY & PERMISSIONS
# ============================================================

ROLE_HIERARCHY = {
    UserRole.ADMIN: 3,
    UserRole.HR_MANAGER: 2,
    UserRole.EMPLOYEE: 1,
}

ROLE_PERMISSIONS: Dict[UserRole, List[str]] = {
    UserRole.ADMIN: list(ALL_PERMISSIONS),
    UserRole.HR_MANAGER: [p for p in ALL_PERMISSIONS if p not in _HR_EXCLUDED],
    UserRole.EMPLOYEE: [
        "users:read:own",
        "users:update:own",
        "checklists:read:own",
        "checklists:update:own",
        "templates:view",
        "templates:read",
        "sessions:view:own",
        "sessions:terminate:own",
    ],
}

# Any one of these marks an admin / an HR-or-above caller
ADMIN_MARKERS = ["system:settings", "users:delete", "users:assign_roles"]
HR_MARKERS = ["users:read:all", "checklists:assign", "reports:generate"]


class ResourceAccess(str, PyEnum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    OWNER = "owner"
    DEPARTMENT = "department"
    HR_PLUS = "hr_plus"
    ADMIN = "admin"


def _to_role(role: Union[str, UserRole, None]) -> Optional[UserRole]:
    if role is None:
        return None
    try:
        return UserRole(role)
    except ValueError:
        return None


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def get_role_permissions(role: Union[str, UserRole, None]) -> List[str]:
    resolved = _to_role(role)
    if resolved is None:
        return []
    return list(ROLE_PERMISSIONS[resolved])


def has_permission(role: Union[str, UserRole, None], capability: str) -> bool:
    """Pure table lookup. Unknown roles hold no capabilities."""
    resolved = _to_role(role)
    if resolved is None:
        return False
    return capability in ROLE_PERMISSIONS[resolved]


def has_any_permission(role, capabilities: List[str]) -> bool:
    return any(has_permission(role, c) for c in capabilities)


def has_all_permissions(role, capabilities: List[str]) -> bool:
    return all(has_permission(role, c) for c in capabilities)


def can_access_resource(
    user: Any,
    resource_type: str,
    resource: Any = None,
    access: Union[str, ResourceAccess] = ResourceAccess.AUTHENTICATED,
) -> bool:
    """Decide whether ``user`` may touch ``resource`` under the given access mode.

    ``user`` and ``resource`` may be ORM rows, pydantic models or plain dicts.
    Ownership is ``resource.user_id`` or ``resource.created_by`` matching the
    caller. ``resource_type`` is carried for logging and future per-type rules.
    """
    try:
        mode = ResourceAccess(access)
    except ValueError:
        return False

    if user is None:
        return mode == ResourceAccess.PUBLIC

    role = _to_role(_field(user, "role"))
    user_id = _field(user, "id")

    if mode == ResourceAccess.PUBLIC:
        return True
    if mode == ResourceAccess.AUTHENTICATED:
        return bool(user_id)
    if mode == ResourceAccess.OWNER:
        if resource is None or not user_id:
            return False
        return user_id in (_field(resource, "user_id"), _field(resource, "created_by"))
    if mode == ResourceAccess.DEPARTMENT:
        if resource is None:
            return False
        department = _field(user, "department")
        return department is not None and _field(resource, "department") == department
    if mode == ResourceAccess.HR_PLUS:
        return role in (UserRole.HR_MANAGER, UserRole.ADMIN)
    if mode == ResourceAccess.ADMIN:
        return role == UserRole.ADMIN
    return False


def is_role_higher_or_equal(role_a, role_b) -> bool:
    level_a = ROLE_HIERARCHY.get(_to_role(role_a), 0)
    level_b = ROLE_HIERARCHY.get(_to_role(role_b), 0)
    return level_a >= level_b


def can_assign_role(assigner_role, target_role) -> bool:
    """Admins assign any role; HR managers assign hr_manager or employee."""
    assigner = _to_role(assigner_role)
    target = _to_role(target_role)
    if assigner is None or target is None:
        return False
    if target == UserRole.ADMIN:
        return assigner == UserRole.ADMIN
    return assigner in (UserRole.ADMIN, UserRole.HR_MANAGER)
