from __future__ import annotations

import math
import time
from typing import Awaitable, Callable

from fastapi import Request
from limits import RateLimitItem, parse as parse_rate
from limits.strategies import RateLimiter
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger
from core.response_envelope import error_response, request_id_of
from security.principal import ADMIN_ROLES, AUTH_ROLES, normalize_role

logger = get_logger(__name__)

ANONYMOUS = "anonymous"
DEFAULT_RATES: dict[str, str] = {
    ANONYMOUS: "20/minute",
    "user": "80/minute",
    **{role: "140/minute" for role in ADMIN_ROLES},
}

# Signature-verified callbacks from payment vendors.
EXEMPT_PATH_PREFIXES: tuple[str, ...] = ("/v1/payments/webhook/",)

Identify = Callable[[Request], Awaitable[tuple[str, str]]]


def parse_role_rate_limits(raw: str | None) -> dict[str, str]:
    """Parse ``"user:80/minute,admin:140/minute"``; malformed entries are skipped."""
    parsed: dict[str, str] = {}
    for entry in (raw or "").split(","):
        role, sep, rule = entry.partition(":")
        role_key = normalize_role(role)
        if sep and role_key and rule.strip():
            parsed[role_key] = rule.strip()
    return parsed


def build_rate_limits(raw: str | None) -> dict[str, RateLimitItem]:
    rules = {**DEFAULT_RATES, **parse_role_rate_limits(raw)}
    limits: dict[str, RateLimitItem] = {}
    for role, rule in rules.items():
        try:
            limits[role] = parse_rate(rule)
        except ValueError:
            logger.warning("rate_limit_rule_invalid", role=role, rule=rule)
            if role in DEFAULT_RATES:
                limits[role] = parse_rate(DEFAULT_RATES[role])
    return limits


def client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Fixed-window limits keyed by caller id, with a separate budget per role."""

    def __init__(
        self,
        app,
        *,
        limiter: RateLimiter,
        limits: dict[str, RateLimitItem],
        identify: Identify,
        exempt_prefixes: tuple[str, ...] = EXEMPT_PATH_PREFIXES,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.limits = limits
        self.identify = identify
        self.exempt_prefixes = exempt_prefixes

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        caller_id, role = await self.identify(request)
        if role not in self.limits or role not in (*AUTH_ROLES, ANONYMOUS):
            role = ANONYMOUS
        rule = self.limits[role]

        allowed = self.limiter.hit(rule, role, caller_id)
        reset_time, remaining = self.limiter.get_window_stats(rule, role, caller_id)
        seconds_until_reset = max(math.ceil(reset_time - time.time()), 0)

        headers = {
            "X-RateLimit-Limit": str(rule.amount),
            "X-RateLimit-Remaining": str(max(remaining, 0)),
            "X-RateLimit-Reset": str(seconds_until_reset),
        }

        if not allowed:
            logger.warning("rate_limit_exceeded", caller_id=caller_id, role=role, path=request.url.path)
            headers["Retry-After"] = str(seconds_until_reset)
            return error_response(
                status_code=429,
                message="Too Many Requests",
                data={
                    "code": "TOO_MANY_REQUESTS",
                    "details": {"retry_after_seconds": seconds_until_reset, "role": role},
                },
                headers=headers,
                request_id=request_id_of(request),
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
