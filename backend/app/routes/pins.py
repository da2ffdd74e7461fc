from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_session
from app.schemas import PinIssueRequest, PinIssueResponse, PinVerifyRequest, PinVerifyResponse
from app.services.auth_service import AuthService, get_auth_service
from app.services.pin_service import PinRequest, PinService, get_pin_service

router = APIRouter(prefix="/pins", tags=["pins"])


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> str:
    return auth_service.user_id_from_header(authorization)


@router.post("", response_model=PinIssueResponse, response_model_exclude_none=True)
async def issue_pin(
    payload: PinIssueRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    pin_service: PinService = Depends(get_pin_service),
) -> PinIssueResponse:
    """Issue a time-bounded PIN for entering or leaving a park."""

    issued = await pin_service.issue_pin(
        db,
        user_id,
        PinRequest(
            lock_id=payload.lock_id,
            purpose=payload.purpose,
            expiry_minutes=payload.expiry_minutes,
            reservation_type=payload.reservation_type,
            start_time=payload.start_time,
            end_time=payload.end_time,
            ticket_type=payload.ticket_type,
            reservation_id=payload.reservation_id,
            dog_ids=payload.dog_ids,
        ),
    )
    return PinIssueResponse(
        pin_code=issued.pin_code,
        expires_at=issued.expires_at,
        park_name=issued.park_name,
        demo_mode=issued.demo_mode or None,
        warning=issued.warning,
        ttlock_pin_id=issued.ttlock_pin_id,
    )


@router.post("/verify", response_model=PinVerifyResponse)
async def verify_pin(
    payload: PinVerifyRequest,
    db: AsyncSession = Depends(get_session),
    pin_service: PinService = Depends(get_pin_service),
) -> PinVerifyResponse:
    result = await pin_service.verify_pin(db, payload.lock_id, payload.pin, payload.purpose)
    return PinVerifyResponse(message=result.message, park_id=result.park_id, occupancy=result.occupancy)


@router.delete("/active")
async def revoke_active_pin(
    lock_id: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    pin_service: PinService = Depends(get_pin_service),
) -> Dict[str, Any]:
    await pin_service.revoke_active_pin(db, user_id, lock_id)
    return {"success": True, "message": "PIN revoked"}
