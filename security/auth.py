from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.errors import auth_invalid_token, auth_role_mismatch
from repositories.tokens_repo import get_access_token
from security.principal import AUTH_ROLES, AuthPrincipal, normalize_role


token_auth_scheme = HTTPBearer(auto_error=True)


async def _resolve_principal(credentials: HTTPAuthorizationCredentials) -> AuthPrincipal:
    token_record = await get_access_token(accessToken=credentials.credentials)
    if token_record is None:
        raise auth_invalid_token()

    role = normalize_role(token_record.role)
    if role not in AUTH_ROLES:
        raise auth_invalid_token(details={"role": token_record.role})

    return AuthPrincipal(
        user_id=token_record.userId,
        role=role,
        access_token_id=token_record.accesstoken,
        jwt_token=credentials.credentials,
        token_created_at=token_record.dateCreated,
    )


async def verify_any_token(
    credentials: HTTPAuthorizationCredentials = Depends(token_auth_scheme),
) -> AuthPrincipal:
    return await _resolve_principal(credentials)


async def verify_admin_token(
    credentials: HTTPAuthorizationCredentials = Depends(token_auth_scheme),
) -> AuthPrincipal:
    principal = await _resolve_principal(credentials)
    if not principal.is_admin:
        raise auth_role_mismatch(required_role="admin", actual_role=principal.role)
    return principal
