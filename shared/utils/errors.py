"""
shared/utils/errors.py
Structured API errors. Every domain failure carries a stable code so clients
never have to match on message text.
"""

from enum import Enum as PyEnum

from fastapi import HTTPException


class ErrorCode(str, PyEnum):
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ACCOUNT_PENDING = "account_pending"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_TAKEN = "email_taken"
    SLOT_TAKEN = "slot_taken"
    CLEANER_UNAVAILABLE = "cleaner_unavailable"
    INVALID_TRANSITION = "invalid_transition"
    REPORT_REQUIRED = "report_required"
    REPORT_EXISTS = "report_exists"
    OBJECT_HAS_FUTURE_ORDERS = "object_has_future_orders"
    COMPLEX_HAS_OBJECTS = "complex_has_objects"
    USER_HAS_LINKS = "user_has_links"
    INVALID_FILE = "invalid_file"
    TELEGRAM_NOT_CONFIGURED = "telegram_not_configured"
    WEBHOOK_FAILED = "webhook_failed"


def api_error(status_code: int, code: ErrorCode, message: str) -> HTTPException:
    """Build an HTTPException whose detail is {"code", "message"}."""
    return HTTPException(
        status_code=status_code,
        detail={"code": code.value, "message": message},
    )


def not_found(what: str) -> HTTPException:
    return api_error(404, ErrorCode.NOT_FOUND, f"{what} not found")


def forbidden(message: str = "Not authorized") -> HTTPException:
    return api_error(403, ErrorCode.FORBIDDEN, message)
