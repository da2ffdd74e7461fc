from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AccessLog, AccessStatus, Dog, PinPurpose, SmartLock, SmartLockPin, initial_status
from app.services.access_log_service import AccessLogService, get_access_log_service
from app.services.eligibility_service import EligibilityService, get_eligibility_service
from app.services.errors import (
    AccessError,
    DuplicateSessionError,
    InvalidPinError,
    InvalidTimeWindowError,
    NotFoundError,
)
from app.services.lock_provisioner import LockProvisioner, get_lock_provisioner
from app.services.occupancy_service import OccupancyService, get_occupancy_service
from app.utils.config import get_settings
from app.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

WHOLE_FACILITY = "whole_facility"
MAX_CODE_ATTEMPTS = 20


@dataclass
class PinRequest:
    lock_id: str
    purpose: PinPurpose = PinPurpose.ENTRY
    expiry_minutes: Optional[int] = None
    reservation_type: str = "regular"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    ticket_type: str = "subscription"
    reservation_id: Optional[str] = None
    dog_ids: List[str] = field(default_factory=list)


@dataclass
class IssuedPin:
    pin_code: str
    expires_at: datetime
    park_name: str
    demo_mode: bool = False
    warning: Optional[str] = None
    ttlock_pin_id: Optional[int] = None


@dataclass
class VerificationResult:
    message: str
    park_id: str
    occupancy: Dict[str, Any]


def hash_pin(pin_code: str) -> str:
    return hashlib.sha256(pin_code.encode("utf-8")).hexdigest()


class PinService:
    """Issues, redeems and revokes smart-lock PINs."""

    def __init__(
        self,
        eligibility_service: EligibilityService | None = None,
        provisioner: LockProvisioner | None = None,
        access_log_service: AccessLogService | None = None,
        occupancy_service: OccupancyService | None = None,
        clock: Callable[[], datetime] = utcnow,
        pin_length: Optional[int] = None,
        default_expiry_minutes: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.eligibility_service = eligibility_service or get_eligibility_service()
        self.provisioner = provisioner or get_lock_provisioner()
        self.access_log_service = access_log_service or get_access_log_service()
        self.occupancy_service = occupancy_service or get_occupancy_service()
        self.clock = clock
        self.pin_length = pin_length or settings.pin_length
        self.default_expiry_minutes = default_expiry_minutes or settings.pin_default_expiry_minutes
        self.default_park_name = settings.default_park_name

    def generate_code(self) -> str:
        return f"{secrets.randbelow(10 ** self.pin_length):0{self.pin_length}d}"

    def _validity_window(self, request: PinRequest, now: datetime) -> tuple[datetime, datetime]:
        if request.reservation_type == WHOLE_FACILITY and request.start_time and request.end_time:
            starts_at, expires_at = ensure_utc(request.start_time), ensure_utc(request.end_time)
            if expires_at <= now:
                raise InvalidTimeWindowError(end_time=expires_at.isoformat())
            return starts_at, expires_at
        minutes = request.expiry_minutes or self.default_expiry_minutes
        return now, now + timedelta(minutes=minutes)

    async def _active_entry_pin(
        self,
        session: AsyncSession,
        user_id: str,
        lock_id: str,
        now: datetime,
    ) -> Optional[SmartLockPin]:
        stmt = (
            select(SmartLockPin)
            .where(
                SmartLockPin.user_id == user_id,
                SmartLockPin.lock_id == lock_id,
                SmartLockPin.purpose == PinPurpose.ENTRY,
                SmartLockPin.is_used.is_(False),
                SmartLockPin.expires_at > now,
            )
            .order_by(SmartLockPin.created_at.desc())
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _open_visit(self, session: AsyncSession, user_id: str, park_id: str) -> Optional[AccessLog]:
        """The user's reconciled entry into ``park_id`` if no exit has followed it."""

        # Exits may go through a different gate, so visits are tracked per park.
        stmt = (
            select(AccessLog)
            .where(
                AccessLog.user_id == user_id,
                AccessLog.park_id == park_id,
                AccessLog.status.in_((AccessStatus.ENTERED, AccessStatus.EXITED)),
                AccessLog.used_at.is_not(None),
            )
            .order_by(AccessLog.used_at.desc(), AccessLog.id.desc())
            .limit(1)
        )
        latest = (await session.execute(stmt)).scalar_one_or_none()
        if latest and latest.status == AccessStatus.ENTERED:
            return latest
        return None

    async def _ensure_owned_dogs(self, session: AsyncSession, user_id: str, dog_ids: List[str]) -> None:
        stmt = select(Dog.id).where(Dog.owner_id == user_id, Dog.id.in_(dog_ids))
        owned = set((await session.execute(stmt)).scalars().all())
        missing = [dog_id for dog_id in dog_ids if dog_id not in owned]
        if missing:
            raise NotFoundError("Dog not found", dog_ids=missing)

    async def _unique_code(self, session: AsyncSession, lock_id: str, now: datetime) -> str:
        # Live codes must be unique per lock so redemption is unambiguous.
        stmt = select(SmartLockPin.pin_code).where(
            SmartLockPin.lock_id == lock_id,
            SmartLockPin.is_used.is_(False),
            SmartLockPin.expires_at > now,
        )
        live = set((await session.execute(stmt)).scalars().all())
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self.generate_code()
            if code not in live:
                return code
        raise AccessError("Could not allocate a free PIN code for this lock", lock_id=lock_id)

    async def issue_pin(self, session: AsyncSession, user_id: str, request: PinRequest) -> IssuedPin:
        now = self.clock()
        try:
            # The lock row stays locked until commit, serializing issuance per lock.
            lock = await self.eligibility_service.check(
                session, user_id, request.lock_id, request.purpose, for_update=True
            )

            if request.purpose == PinPurpose.ENTRY:
                active = await self._active_entry_pin(session, user_id, lock.lock_id, now)
                if active:
                    logger.info(
                        "Active entry PIN already issued",
                        extra={"user_id": user_id, "lock_id": lock.lock_id, "pin_id": active.id},
                    )
                    raise DuplicateSessionError(lock_id=lock.lock_id)

                visit = await self._open_visit(session, user_id, lock.park_id)
                if visit:
                    logger.info(
                        "User is still inside the park",
                        extra={"user_id": user_id, "park_id": lock.park_id, "access_log_id": visit.id},
                    )
                    raise DuplicateSessionError(lock_id=lock.lock_id)

            if request.dog_ids and request.purpose == PinPurpose.ENTRY:
                await self._ensure_owned_dogs(session, user_id, request.dog_ids)

            starts_at, expires_at = self._validity_window(request, now)
            pin_code = await self._unique_code(session, lock.lock_id, now)
            provisioned = await self.provisioner.provision(lock, pin_code, starts_at, expires_at)

            pin = SmartLockPin(
                lock_id=lock.lock_id,
                user_id=user_id,
                pin_code=pin_code,
                pin_hash=hash_pin(pin_code),
                purpose=request.purpose,
                ticket_type=request.ticket_type,
                reservation_id=request.reservation_id,
                created_at=now,
                starts_at=starts_at,
                expires_at=expires_at,
                is_used=False,
                ttlock_keyboard_pwd_id=provisioned.vendor_pin_id,
            )
            session.add(pin)
            await session.flush()

            log = AccessLog(
                pin_id=pin.id,
                user_id=user_id,
                park_id=lock.park_id,
                lock_id=lock.lock_id,
                dog_ids=list(request.dog_ids) if request.purpose == PinPurpose.ENTRY else [],
                pin=pin_code,
                pin_type=request.purpose,
                status=initial_status(request.purpose),
                ticket_type=request.ticket_type,
                reservation_id=request.reservation_id,
                keyboard_pwd_id=provisioned.vendor_pin_id,
                issued_at=starts_at,
                expires_at=expires_at,
            )
            session.add(log)
            await session.commit()
        except (AccessError, SQLAlchemyError):
            await session.rollback()
            raise

        logger.info(
            "PIN issued",
            extra={
                "user_id": user_id,
                "lock_id": lock.lock_id,
                "purpose": request.purpose.value,
                "demo_mode": provisioned.demo_mode,
                "access_log_id": log.id,
            },
        )
        return IssuedPin(
            pin_code=pin_code,
            expires_at=expires_at,
            park_name=lock.park_name or self.default_park_name,
            demo_mode=provisioned.demo_mode,
            warning=provisioned.warning,
            ttlock_pin_id=provisioned.vendor_pin_id,
        )

    async def verify_pin(
        self,
        session: AsyncSession,
        lock_id: str,
        pin_code: str,
        purpose: PinPurpose = PinPurpose.ENTRY,
    ) -> VerificationResult:
        """Redeem a PIN when the caller, not the lock, confirms the unlock."""

        now = self.clock()
        try:
            stmt = (
                select(SmartLockPin)
                .where(
                    SmartLockPin.lock_id == lock_id,
                    SmartLockPin.pin_code == pin_code,
                    SmartLockPin.purpose == purpose,
                    SmartLockPin.is_used.is_(False),
                )
                .order_by(SmartLockPin.created_at.desc())
                .limit(1)
            )
            pin = (await session.execute(stmt)).scalar_one_or_none()
            if not pin or not ensure_utc(pin.starts_at) <= now < ensure_utc(pin.expires_at):
                raise InvalidPinError(lock_id=lock_id)

            if purpose == PinPurpose.ENTRY:
                await self.eligibility_service.ensure_vaccinated(session, pin.user_id)

            lock = (await session.execute(select(SmartLock).where(SmartLock.lock_id == lock_id))).scalar_one_or_none()
            if not lock:
                raise NotFoundError("Smart lock not found", lock_id=lock_id)

            redeemed = await session.execute(
                update(SmartLockPin)
                .where(SmartLockPin.id == pin.id, SmartLockPin.is_used.is_(False))
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
            if redeemed.rowcount != 1:
                raise InvalidPinError(lock_id=lock_id)

            log = (await session.execute(select(AccessLog).where(AccessLog.pin_id == pin.id))).scalar_one_or_none()
            status = None
            if log and log.used_at is None:
                status = await self.access_log_service.transition(session, log, now)
            await session.commit()
        except (AccessError, SQLAlchemyError):
            await session.rollback()
            raise

        if log and status:
            await session.refresh(log)
            await self.access_log_service.after_transition(session, log)

        logger.info("PIN redeemed", extra={"lock_id": lock_id, "pin_id": pin.id, "purpose": purpose.value})
        occupancy = await self.occupancy_service.get_park_occupancy(session, lock.park_id)
        return VerificationResult(
            message="Entry recorded" if purpose == PinPurpose.ENTRY else "Exit recorded",
            park_id=lock.park_id,
            occupancy=occupancy,
        )

    async def revoke_active_pin(self, session: AsyncSession, user_id: str, lock_id: str) -> SmartLockPin:
        """Release the caller's live entry PIN so a new one can be requested."""

        now = self.clock()
        try:
            lock = await self.eligibility_service.load_lock(session, lock_id, for_update=True)
            pin = await self._active_entry_pin(session, user_id, lock.lock_id, now)
            if not pin:
                raise NotFoundError("No active PIN for this lock", lock_id=lock_id)
            pin.is_used = True
            await session.commit()
        except (AccessError, SQLAlchemyError):
            await session.rollback()
            raise

        await self.provisioner.revoke(lock, pin.ttlock_keyboard_pwd_id)
        logger.info("PIN revoked", extra={"user_id": user_id, "lock_id": lock_id, "pin_id": pin.id})
        return pin


def get_pin_service() -> PinService:
    return PinService()
