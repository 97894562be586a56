from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    PROCUREMENT = "procurement"
    FINANCE = "finance"
    GM = "gm"
    DIRECTOR = "director"
    WAREHOUSE = "warehouse"
    DEPT_HEAD = "dept_head"
    STAFF = "staff"


class AuthorizationContext(Protocol):
    id: int
    department_id: int | None

    def has_role(self, name: str) -> bool: ...

    def has_any_role(self, names: Iterable[str]) -> bool: ...

    def has_permission(self, name: str) -> bool: ...


def _role_name(value) -> str:
    return (value.value if isinstance(value, Enum) else str(value)).strip().lower()


@dataclass
class Principal:
    id: int
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)
    department_id: int | None = None
    active: bool = True

    def __post_init__(self) -> None:
        self.roles = frozenset(_role_name(role) for role in self.roles)
        self.permissions = frozenset(str(p).strip() for p in self.permissions)

    def has_role(self, name) -> bool:
        return _role_name(name) in self.roles

    def has_any_role(self, names) -> bool:
        return any(self.has_role(name) for name in names)

    def has_permission(self, name: str) -> bool:
        return name in self.permissions


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_any_role(allowed):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
