from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Dog, PinPurpose, SmartLock
from app.services.errors import (
    AccessDeniedError,
    NotFoundError,
    PaymentRequiredError,
    VaccineNotApprovedError,
)
from app.services.park_gateway import ParkGateway, get_park_gateway
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class EligibilityService:
    """Decides whether a user may open a lock right now. Read-only."""

    def __init__(self, gateway: ParkGateway | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.gateway = gateway or get_park_gateway()
        self.clock = clock

    async def load_lock(self, session: AsyncSession, lock_id: str, for_update: bool = False) -> SmartLock:
        stmt = select(SmartLock).where(SmartLock.lock_id == lock_id)
        if for_update:
            stmt = stmt.with_for_update(of=SmartLock)
        lock = (await session.execute(stmt)).scalar_one_or_none()
        if not lock:
            raise NotFoundError("Smart lock not found", lock_id=lock_id)
        if not lock.pin_enabled:
            raise NotFoundError("PIN access is not enabled for this lock", lock_id=lock_id)
        return lock

    async def check(
        self,
        session: AsyncSession,
        user_id: str,
        lock_id: str,
        purpose: PinPurpose,
        for_update: bool = False,
    ) -> SmartLock:
        """Return the lock if access is allowed, raising the specific denial otherwise."""

        lock = await self.load_lock(session, lock_id, for_update=for_update)

        access = await self.gateway.check_user_park_access(session, user_id, lock_id)
        if not access.has_access:
            logger.info("Park access denied", extra={"user_id": user_id, "lock_id": lock_id})
            if access.payment_required:
                raise PaymentRequiredError(access.payment_message, lock_id=lock_id)
            raise AccessDeniedError(lock_id=lock_id)

        if purpose == PinPurpose.ENTRY:
            await self.ensure_vaccinated(session, user_id)
        return lock

    async def has_approved_dog(self, session: AsyncSession, user_id: str) -> bool:
        today = self.clock().date()
        result = await session.execute(select(Dog).where(Dog.owner_id == user_id))
        for dog in result.scalars().unique().all():
            if any(cert.is_valid_on(today) for cert in dog.vaccine_certifications):
                return True
        return False

    async def ensure_vaccinated(self, session: AsyncSession, user_id: str) -> None:
        if not await self.has_approved_dog(session, user_id):
            logger.info("No vaccinated dog on file", extra={"user_id": user_id})
            raise VaccineNotApprovedError(user_id=user_id)


def get_eligibility_service() -> EligibilityService:
    return EligibilityService()
