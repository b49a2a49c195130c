from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_ROLE_MISMATCH = "AUTH_ROLE_MISMATCH"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PAYMENT_PROVIDER_ERROR = "PAYMENT_PROVIDER_ERROR"
    PAYMENT_PROVIDER_UNAVAILABLE = "PAYMENT_PROVIDER_UNAVAILABLE"
    PAYMENT_WEBHOOK_INVALID = "PAYMENT_WEBHOOK_INVALID"
    PAYMENT_ALREADY_CAPTURED = "PAYMENT_ALREADY_CAPTURED"
    PAYMENT_NOT_CAPTURABLE = "PAYMENT_NOT_CAPTURABLE"
    PAYMENT_NOT_REFUNDABLE = "PAYMENT_NOT_REFUNDABLE"
    PAYMENT_REFUND_AMOUNT_INVALID = "PAYMENT_REFUND_AMOUNT_INVALID"
    PAYMENT_CONFLICT = "PAYMENT_CONFLICT"


class ConfigurationError(RuntimeError):
    """Raised when provider selection or credentials are missing or invalid."""


class AppException(HTTPException):
    def __init__(
        self,
        *,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        detail = {
            "message": message,
            "code": code.value,
            "details": details,
        }
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @property
    def code(self) -> str:
        return self.detail["code"]  # type: ignore[index]


class ProviderError(AppException):
    def __init__(
        self,
        *,
        provider: str,
        message: str,
        vendor_code: str | None = None,
        vendor_message: str | None = None,
        details: Any | None = None,
    ) -> None:
        self.provider = provider
        self.vendor_code = vendor_code
        self.vendor_message = vendor_message
        payload: dict[str, Any] = {"provider": provider}
        if vendor_code:
            payload["vendor_code"] = vendor_code
        if vendor_message:
            payload["vendor_message"] = vendor_message
        if details is not None:
            payload["response"] = details
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=ErrorCode.PAYMENT_PROVIDER_ERROR,
            message=f"{message}: {vendor_message}" if vendor_message else message,
            details=payload,
        )


def auth_invalid_token(details: Any | None = None) -> AppException:
    return AppException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.AUTH_INVALID_TOKEN,
        message="Invalid token",
        details=details,
    )


def auth_role_mismatch(required_role: str, actual_role: str | None) -> AppException:
    return AppException(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.AUTH_ROLE_MISMATCH,
        message="Token role mismatch",
        details={"required_role": required_role, "actual_role": actual_role},
    )


def payment_access_denied(payment_id: str) -> AppException:
    return AppException(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.AUTH_PERMISSION_DENIED,
        message="Payment belongs to another user",
        details={"payment_id": payment_id},
    )


def resource_not_found(resource: str, resource_id: str | None = None) -> AppException:
    details = {"resource": resource}
    if resource_id:
        details["resource_id"] = resource_id
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.RESOURCE_NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def validation_failed(message: str, details: Any | None = None) -> AppException:
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.VALIDATION_FAILED,
        message=message,
        details=details,
    )


def payment_not_eligible(code: ErrorCode, message: str, *, payment_id: str, status_value: str) -> AppException:
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=code,
        message=message,
        details={"payment_id": payment_id, "status": status_value},
    )


def payment_conflict(payment_id: str) -> AppException:
    return AppException(
        status_code=status.HTTP_409_CONFLICT,
        code=ErrorCode.PAYMENT_CONFLICT,
        message="Payment was modified concurrently, retry the request",
        details={"payment_id": payment_id},
    )


def payment_webhook_invalid(provider: str, message: str = "Invalid webhook signature") -> AppException:
    return AppException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.PAYMENT_WEBHOOK_INVALID,
        message=message,
        details={"provider": provider},
    )


def payments_unavailable(details: Any | None = None) -> AppException:
    return AppException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code=ErrorCode.PAYMENT_PROVIDER_UNAVAILABLE,
        message="Payment provider is not configured",
        details=details,
    )
