from __future__ import annotations

from typing import Final, Literal

from pydantic import BaseModel

Role = Literal['user', 'admin', 'super_admin']

AUTH_ROLES: Final[tuple[str, ...]] = ('user', 'admin', 'super_admin',)
ADMIN_ROLES: Final[tuple[str, ...]] = ('admin', 'super_admin',)
# Tokens minted before roles were unified still say "customer" or "member".
LEGACY_ROLE_ALIASES: Final[dict[str, str]] = {"customer": "user", "member": "user"}


def normalize_role(role: str | None, default: str = "") -> str:
    value = (role or "").strip().lower() or default
    return LEGACY_ROLE_ALIASES.get(value, value)


class AuthPrincipal(BaseModel):
    user_id: str
    role: Role
    access_token_id: str
    jwt_token: str
    token_created_at: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
