from .pin import (
    LockWebhookPayload,
    PinIssueRequest,
    PinIssueResponse,
    PinVerifyRequest,
    PinVerifyResponse,
)

__all__ = [
    "PinIssueRequest",
    "PinIssueResponse",
    "PinVerifyRequest",
    "PinVerifyResponse",
    "LockWebhookPayload",
]
