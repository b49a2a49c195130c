from __future__ import annotations

import os

import jwt
from dotenv import load_dotenv

from core.logging_config import get_logger

load_dotenv()
logger = get_logger(__name__)

ALGORITHM = "HS256"


def _secret_key() -> str:
    return os.getenv("SECRET_KEY") or "dev-only-insecure-secret"


async def decode_jwt_token(token: str):
    try:
        return jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("jwt_expired")
        return None
    except jwt.InvalidSignatureError:
        logger.warning("jwt_invalid_signature")
        return None
    except jwt.DecodeError:
        logger.warning("jwt_malformed")
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning("jwt_rejected", error=str(exc))
        return None
