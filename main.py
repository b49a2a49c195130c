from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from limits.storage import RedisStorage
from limits.strategies import FixedWindowRateLimiter
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from api.v1.payments_route import router as payments_router
from core.database import client as mongo_client
from core.errors import ConfigurationError
from core.logging_config import configure_logging, get_logger
from core.payments import PaymentProviderFactory
from core.rate_limits import ANONYMOUS, RateLimitingMiddleware, build_rate_limits, client_address
from core.response_envelope import (
    apply_response_documentation,
    document_response,
    error_response,
    http_exception_response,
    request_id_of,
)
from core.settings import get_settings
from core.validation_errors import format_validation_error_details
from repositories.tokens_repo import get_access_token
from security.principal import normalize_role

settings = get_settings()
configure_logging()
logger = get_logger(__name__)

redis_client = redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2, decode_responses=True)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log its outcome once it completes."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(elapsed_ms / 1000)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=elapsed_ms,
            request_id=request_id,
        )
        return response


async def identify_caller(request: Request) -> tuple[str, str]:
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.startswith("Bearer "):
        return client_address(request), ANONYMOUS

    token_record = await get_access_token(accessToken=auth_header.split(" ", maxsplit=1)[1])
    if token_record is None:
        return client_address(request), ANONYMOUS
    return token_record.userId, normalize_role(token_record.role, default=ANONYMOUS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        provider = PaymentProviderFactory.get_provider()
        logger.info("payment_provider_ready", provider=provider.name.value)
    except ConfigurationError as err:
        logger.warning("payment_provider_unavailable", error=str(err))

    try:
        yield
    finally:
        PaymentProviderFactory.reset_provider()
        mongo_client.close()
        redis_client.close()


app = FastAPI(lifespan=lifespan, title="Payments API")
app.add_middleware(
    RateLimitingMiddleware,
    limiter=FixedWindowRateLimiter(RedisStorage(settings.redis_url)),
    limits=build_rate_limits(settings.role_rate_limits),
    identify=identify_caller,
)
# Added last so it runs first and the request id is set for everything below.
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins) if settings.cors_origins else ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def custom_http_exception_handler(request: Request, exc: HTTPException):
    return http_exception_response(exc=exc, request=request)


@app.exception_handler(RequestValidationError)
async def custom_validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(
        status_code=422,
        message="Validation error",
        data={"code": "VALIDATION_FAILED", "details": format_validation_error_details(exc.errors())},
        request_id=request_id_of(request),
    )


@app.exception_handler(Exception)
async def custom_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    details = str(exc) if (settings.debug_include_error_details and not settings.is_production) else None
    return error_response(
        status_code=500,
        message="Internal Server Error",
        data={"code": "INTERNAL_ERROR", "details": details},
        request_id=request_id_of(request),
    )


async def _probe(name: str, check) -> dict[str, str | float]:
    started = time.perf_counter()
    try:
        await check()
        status, message = "healthy", f"{name} reachable"
    except (PyMongoError, redis.RedisError) as exc:
        status, message = "unhealthy", str(exc)
    return {
        "status": status,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "message": message,
    }


async def _ping_redis() -> None:
    await run_in_threadpool(redis_client.ping)


@app.get("/health", tags=["Health"])
@document_response(
    message="Health check completed",
    success_example={
        "status": "healthy",
        "services": {"mongo": {"status": "healthy"}, "redis": {"status": "healthy"}},
        "payment_provider": "stripe",
    },
)
async def health_check():
    services = {
        "mongo": await _probe("MongoDB", lambda: mongo_client.admin.command("ping")),
        "redis": await _probe("Redis", _ping_redis),
    }
    try:
        provider_name = PaymentProviderFactory.get_provider().name.value
    except ConfigurationError:
        provider_name = None

    healthy = provider_name is not None and all(item["status"] == "healthy" for item in services.values())
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services,
        "payment_provider": provider_name,
    }


app.include_router(payments_router, prefix='/v1')

apply_response_documentation(app)
