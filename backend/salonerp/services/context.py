# Overview: Explicit per-request identity passed into every core operation.

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.auth import ROLE_SUPER_ADMIN


@dataclass(frozen=True)
class SalonContext:
    """
    Who is acting, and for which salon.

    Built by the auth layer (decorators.require_auth) or by callers such as
    the CLI and tests. Services take it as an argument instead of reading
    request globals, so they behave the same in every entry point.
    """
    salon_id: int
    staff_id: int | None = None
    role: str = "staff"
    permissions: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def has_permission(self, code: str) -> bool:
        return code in self.permissions
