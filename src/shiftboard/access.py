from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import ForbiddenError, UnauthorizedError

ROLE_ADMIN = "admin"
ROLE_STORE_MANAGER = "store_manager"
ROLE_MANAGER = "manager"

SCHEDULER_ROLES = frozenset({ROLE_ADMIN, ROLE_STORE_MANAGER, ROLE_MANAGER})
MANAGER_ROLES = frozenset({ROLE_STORE_MANAGER, ROLE_MANAGER})


@dataclass(frozen=True, slots=True)
class Caller:
    """Verified identity of whoever invoked an operation."""

    uid: str
    role: str = ""
    store_id: Optional[str] = None
    can_manage_hr: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def require_identity(caller: Caller | None) -> Caller:
    if caller is None or not caller.uid:
        raise UnauthorizedError("Caller identity is required")
    return caller


def require_scheduler(caller: Caller | None) -> Caller:
    """Admins, managers and HR-capable users may publish and force-assign."""
    caller = require_identity(caller)
    if caller.role in SCHEDULER_ROLES or caller.can_manage_hr:
        return caller
    raise ForbiddenError("Only managers or HR staff may change schedules")


def require_admin(caller: Caller | None) -> Caller:
    caller = require_identity(caller)
    if not caller.is_admin:
        raise ForbiddenError("Only administrators may perform this action")
    return caller
