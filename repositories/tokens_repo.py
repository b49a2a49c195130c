from __future__ import annotations

from bson import ObjectId

from core.database import db
from schemas.tokens_schema import accessTokenOut
from security.encrypting_jwt import decode_jwt_token


async def _load_access_token(decoded: dict | None) -> accessTokenOut | None:
    if not decoded:
        return None
    token_id = decoded.get("accessToken")
    if not token_id or not ObjectId.is_valid(token_id):
        return None

    row = await db.access_tokens.find_one({"_id": ObjectId(token_id)})
    if row is None or row.get("status", "active") != "active":
        return None
    return accessTokenOut(**row)


async def get_access_token(accessToken: str) -> accessTokenOut | None:
    decoded = await decode_jwt_token(accessToken)
    return await _load_access_token(decoded)
