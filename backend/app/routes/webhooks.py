from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_session
from app.schemas import LockWebhookPayload
from app.services.access_log_service import (
    UNLOCK_RECORD_TYPE,
    AccessLogService,
    UnlockEvent,
    get_access_log_service,
)
from app.services.errors import MalformedPayloadError, UnauthorizedError
from app.utils.config import Settings, get_settings

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/lock-record")
async def handle_lock_record(
    request: Request,
    x_webhook_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_session),
    access_log_service: AccessLogService = Depends(get_access_log_service),
) -> Any:
    """Reconcile a vendor unlock notification with the issued access log."""

    if settings.webhook_secret and not hmac.compare_digest(x_webhook_secret or "", settings.webhook_secret):
        raise UnauthorizedError("Invalid webhook secret")

    try:
        payload = await request.json()
    except ValueError as exc:
        raise MalformedPayloadError("Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Request body must be a JSON object")
    logger.info("Lock record webhook received", extra={"lock_id": payload.get("lockId"), "record_type": payload.get("recordType")})

    record_type = payload.get("recordType")
    if isinstance(record_type, int) and record_type != UNLOCK_RECORD_TYPE:
        return {"success": True, "message": f"Event type {record_type} logged but not processed"}

    try:
        body = LockWebhookPayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedPayloadError("lockId, keyboardPwd, recordType, and date are required") from exc

    try:
        result = await access_log_service.reconcile(
            db,
            UnlockEvent(
                lock_id=body.lockId,
                keyboard_pwd=body.keyboardPwd,
                record_type=body.recordType,
                date=body.date,
                username=body.username,
            ),
        )
    except SQLAlchemyError as error:
        await db.rollback()
        logger.exception("Lock record webhook failed", extra={"lock_id": body.lockId})
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Database error", "error": str(error)},
        )

    response: Dict[str, Any] = {"success": True, "message": result.message}
    if result.access_log is not None:
        response["access_log"] = result.access_log.to_dict()
    return response
