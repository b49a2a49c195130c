from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from decimal import Decimal
from functools import wraps
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.responses import Response

_ENVELOPE_ATTR = "__envelope_config__"

# Money is serialized as strings.
JSON_ENCODERS: dict[Any, Callable[[Any], Any]] = {Decimal: str}

PAGINATION_EXAMPLE = {"page": 1, "page_size": 20, "total_count": 1, "total_pages": 1}

COMMON_ERROR_RESPONSES: dict[int, str] = {
    401: "Missing or invalid bearer token",
    422: "Request validation failed",
}


@dataclass(frozen=True)
class EnvelopeConfig:
    message: str
    status_code: int
    description: str
    success_example: Any | None = None
    summary: str | None = None
    paginated: bool = False
    response_codes: dict[int, str] = field(default_factory=dict)


def success_payload(
    data: Any,
    message: str = "Success",
    *,
    meta: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": True, "message": message, "data": data}
    if meta is not None:
        payload["meta"] = meta
    if request_id:
        payload["requestId"] = request_id
    return payload


def error_payload(message: str, data: Any = None, *, request_id: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "message": message, "data": data}
    if request_id:
        payload["requestId"] = request_id
    return payload


def error_response(
    *,
    status_code: int,
    message: str,
    data: Any = None,
    headers: dict[str, str] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    body = error_payload(message=message, data=data, request_id=request_id)
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=jsonable_encoder(body, custom_encoder=JSON_ENCODERS),
    )


def _unpack_detail(detail: Any) -> tuple[str, dict[str, Any]]:
    """Turn an ``HTTPException.detail`` into ``(message, {code, details})``.

    Errors raised through ``core.errors`` always carry ``message`` and ``code``;
    anything else (framework 404s, plain ``HTTPException("...")``) is wrapped
    under the generic ``HTTP_EXCEPTION`` code.
    """
    if isinstance(detail, dict) and isinstance(detail.get("message"), str) and detail["message"].strip():
        return detail["message"], {
            "code": detail.get("code", "HTTP_EXCEPTION"),
            "details": detail.get("details"),
        }
    if isinstance(detail, dict):
        nested = detail.get("detail")
        message = nested if isinstance(nested, str) and nested.strip() else "Request failed"
        return message, {"code": "HTTP_EXCEPTION", "details": detail}
    if detail is None:
        return "Request failed", {"code": "HTTP_EXCEPTION", "details": None}
    return str(detail), {"code": "HTTP_EXCEPTION", "details": None}


def request_id_of(request: Request | None) -> str | None:
    if request is None:
        return None
    return getattr(request.state, "request_id", None)


def http_exception_response(exc: HTTPException, request: Request | None = None) -> JSONResponse:
    message, data = _unpack_detail(exc.detail)
    return error_response(
        status_code=exc.status_code,
        message=message,
        data=data,
        request_id=request_id_of(request),
        headers=exc.headers,
    )


def _find_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Request | None:
    for value in (*kwargs.values(), *args):
        if isinstance(value, Request):
            return value
    return None


def _split_page(result: Any) -> tuple[Any, dict[str, Any] | None]:
    if isinstance(result, dict) and "items" in result and "meta" in result:
        return result["items"], result["meta"]
    if isinstance(result, tuple) and len(result) == 2:
        return result[0], result[1]
    return result, None


def document_response(
    *,
    message: str = "Success",
    status_code: int = status.HTTP_200_OK,
    description: str = "Successful response",
    success_example: Any | None = None,
    summary: str | None = None,
    paginated: bool = False,
    response_codes: dict[int, str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Wrap an endpoint's return value in the ``{success, message, data}`` envelope.

    Paginated endpoints return ``{"items": [...], "meta": {...}}`` from the
    service layer; the items become ``data`` and the pagination block becomes
    ``meta``. Endpoints that already return a ``Response`` are passed through.
    """
    config = EnvelopeConfig(
        message=message,
        status_code=status_code,
        description=description,
        success_example=success_example,
        summary=summary,
        paginated=paginated,
        response_codes=dict(response_codes or {}),
    )

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Response:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, Response):
                return result

            data, meta = _split_page(result) if config.paginated else (result, None)
            body = success_payload(
                data=data,
                message=config.message,
                meta=meta,
                request_id=request_id_of(_find_request(args, kwargs)),
            )
            return JSONResponse(
                status_code=config.status_code,
                content=jsonable_encoder(body, custom_encoder=JSON_ENCODERS),
            )

        setattr(wrapper, _ENVELOPE_ATTR, config)
        return wrapper

    return decorator


def document_paginated(
    *,
    message: str = "Success",
    response_codes: dict[int, str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return document_response(message=message, paginated=True, success_example=[], response_codes=response_codes)


def _json_entry(responses: dict[int | str, Any], code: int, description: str, example: Any = None) -> None:
    entry = dict(responses.get(code, {}))
    entry.setdefault("description", description)
    if example is not None:
        content = dict(entry.get("content", {}))
        app_json = dict(content.get("application/json", {}))
        app_json.setdefault("example", example)
        content["application/json"] = app_json
        entry["content"] = content
    responses[code] = entry


def apply_response_documentation(app: FastAPI) -> None:
    """Copy envelope settings from decorated endpoints onto their OpenAPI routes."""
    updated = False

    for route in app.routes:
        if not isinstance(route, APIRoute):
            continue
        config = getattr(route.endpoint, _ENVELOPE_ATTR, None)
        if not isinstance(config, EnvelopeConfig):
            continue

        if config.summary and not route.summary:
            route.summary = config.summary
        route.status_code = config.status_code

        responses = dict(route.responses or {})
        _json_entry(
            responses,
            config.status_code,
            config.description,
            success_payload(
                data=config.success_example,
                message=config.message,
                meta=PAGINATION_EXAMPLE if config.paginated else None,
            ),
        )
        for code, description in {**COMMON_ERROR_RESPONSES, **config.response_codes}.items():
            _json_entry(
                responses,
                code,
                description,
                error_payload(message=description, data={"code": "...", "details": None}),
            )

        route.responses = responses
        updated = True

    if updated:
        app.openapi_schema = None
