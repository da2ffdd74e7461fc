from __future__ import annotations

from typing import Any, Dict, Optional


class AccessError(Exception):
    """Base for every failure the PIN lifecycle reports back to a caller."""

    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class UnauthorizedError(AccessError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(AccessError):
    status_code = 404
    default_message = "Not found"


class AccessDeniedError(AccessError):
    status_code = 403
    default_message = "You do not have access to this facility"


class PaymentRequiredError(AccessDeniedError):
    status_code = 402
    default_message = "Payment is required before entering this facility"


class VaccineNotApprovedError(AccessError):
    status_code = 403
    default_message = (
        "None of your dogs has an approved, current vaccine certificate. "
        "Upload certificates from My Page and wait for approval."
    )


class DuplicateSessionError(AccessError):
    status_code = 409
    default_message = "You already have an active PIN. Please exit before requesting a new one."


class InvalidPinError(AccessError):
    status_code = 400
    default_message = "Invalid PIN code"


class VendorUnavailableError(AccessError):
    status_code = 502
    default_message = "Lock vendor is unavailable"

    def __init__(self, message: Optional[str] = None, errcode: Optional[int] = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.errcode = errcode


class MalformedPayloadError(AccessError):
    status_code = 400
    default_message = "Malformed payload"


class InvalidTimeWindowError(AccessError):
    status_code = 400
    default_message = "The reservation window has already ended"
