from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models import PinPurpose
from app.utils.timeutils import ensure_utc


class PinIssueRequest(BaseModel):
    lock_id: str = Field(..., min_length=1)
    purpose: PinPurpose = PinPurpose.ENTRY
    expiry_minutes: Optional[int] = Field(None, ge=1, le=1440)
    reservation_type: str = "regular"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    ticket_type: str = "subscription"
    reservation_id: Optional[str] = None
    dog_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_whole_facility_window(self) -> "PinIssueRequest":
        if self.reservation_type == "whole_facility":
            if not self.start_time or not self.end_time:
                raise ValueError("start_time and end_time are required for whole_facility reservations")
            self.start_time = ensure_utc(self.start_time)
            self.end_time = ensure_utc(self.end_time)
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
        return self


class PinIssueResponse(BaseModel):
    success: bool = True
    pin_code: str
    expires_at: datetime
    park_name: str
    demo_mode: Optional[bool] = None
    warning: Optional[str] = None
    ttlock_pin_id: Optional[int] = None


class PinVerifyRequest(BaseModel):
    lock_id: str = Field(..., min_length=1)
    pin: str = Field(..., min_length=1)
    purpose: PinPurpose = PinPurpose.ENTRY

    @field_validator("pin")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        value = value.strip()
        if not value.isdigit():
            raise ValueError("pin must be numeric")
        return value


class PinVerifyResponse(BaseModel):
    success: bool = True
    message: str
    park_id: str
    occupancy: Dict[str, Any]


class LockWebhookPayload(BaseModel):
    lockId: str = Field(..., min_length=1)
    keyboardPwd: str = Field(..., min_length=1)
    recordType: int
    date: int = Field(..., gt=0)
    username: Optional[str] = None

    @field_validator("lockId", "keyboardPwd", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value
