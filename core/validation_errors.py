from __future__ import annotations

from typing import Any


_REQUEST_LOCATIONS = {"body", "query", "path", "header", "cookie"}
# Request fields whose raw input should never be echoed back.
_REDACTED_FIELDS = {"card", "card_number", "cvv", "client_secret", "signature"}


def _split_location(raw_loc: Any) -> tuple[str, str]:
    if raw_loc is None:
        return "body", "(root)"
    parts = [str(part) for part in raw_loc] if isinstance(raw_loc, (list, tuple)) else [str(raw_loc)]
    if not parts:
        return "body", "(root)"

    location = parts[0] if parts[0] in _REQUEST_LOCATIONS else "body"
    path_parts = parts[1:] if parts[0] in _REQUEST_LOCATIONS else parts
    return location, ".".join(path_parts) or "(root)"


def _constraint(error: dict[str, Any]) -> dict[str, str] | None:
    ctx = error.get("ctx")
    if not isinstance(ctx, dict):
        return None
    # pydantic puts limits such as gt, max_digits or expected enum values in ctx.
    return {key: str(value) for key, value in ctx.items() if key != "error"} or None


def _summary(missing_fields: list[str], error_count: int) -> str:
    if missing_fields:
        noun = "field" if len(missing_fields) == 1 else "fields"
        return f"Validation failed: missing required {noun}: {', '.join(missing_fields)}."
    noun = "field" if error_count == 1 else "fields"
    return f"Validation failed for {error_count} {noun}."


def _scrub(error: dict[str, Any], path: str) -> dict[str, Any]:
    if path.split(".")[-1] in _REDACTED_FIELDS and "input" in error:
        return {**error, "input": "***"}
    return error


def format_validation_error_details(errors: list[dict[str, Any]]) -> dict[str, Any]:
    field_errors: list[dict[str, Any]] = []
    missing_fields: list[str] = []
    raw_errors: list[dict[str, Any]] = []

    for error in errors:
        location, path = _split_location(error.get("loc"))
        error_type = str(error.get("type", "validation_error"))

        field_error: dict[str, Any] = {
            "path": path,
            "location": location,
            "message": str(error.get("msg", "Invalid value")),
            "errorType": error_type,
        }
        constraint = _constraint(error)
        if constraint:
            field_error["constraint"] = constraint
        field_errors.append(field_error)
        raw_errors.append(_scrub(error, path))

        if error_type == "missing" and path not in missing_fields:
            missing_fields.append(path)

    return {
        "summary": _summary(missing_fields, len(field_errors)),
        "missingFields": missing_fields,
        "fieldErrors": field_errors,
        "errors": raw_errors,
    }
