from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import OPEN_STATUSES, TRANSITIONS, AccessLog, AccessStatus, SmartLock, SmartLockPin
from app.services.occupancy_service import OccupancyService, get_occupancy_service
from app.services.park_gateway import ParkGateway, get_park_gateway
from app.utils.timeutils import from_epoch_ms

logger = logging.getLogger(__name__)

# Vendor record type for "unlocked with passcode".
UNLOCK_RECORD_TYPE = 2


@dataclass
class UnlockEvent:
    lock_id: str
    keyboard_pwd: str
    record_type: int
    date: int
    username: Optional[str] = None

    @property
    def occurred_at(self) -> datetime:
        return from_epoch_ms(self.date)


@dataclass
class ReconcileResult:
    message: str
    status: Optional[AccessStatus] = None
    access_log: Optional[AccessLog] = None


class AccessLogService:
    """Advances access logs when the lock reports an unlock."""

    def __init__(
        self,
        gateway: ParkGateway | None = None,
        occupancy_service: OccupancyService | None = None,
    ) -> None:
        self.gateway = gateway or get_park_gateway()
        self.occupancy_service = occupancy_service or get_occupancy_service()

    async def _resolve_lock_id(self, session: AsyncSession, reported_lock_id: str) -> str:
        # Webhooks carry the vendor's lock id; logs are keyed by ours.
        stmt = select(SmartLock.lock_id).where(
            or_(SmartLock.ttlock_lock_id == reported_lock_id, SmartLock.lock_id == reported_lock_id)
        )
        lock_id = (await session.execute(stmt)).scalars().first()
        return lock_id or reported_lock_id

    async def find_open_log(
        self,
        session: AsyncSession,
        lock_id: str,
        pin: str,
        occurred_at: datetime,
    ) -> Optional[AccessLog]:
        stmt = (
            select(AccessLog)
            .where(
                AccessLog.lock_id == lock_id,
                AccessLog.pin == pin,
                AccessLog.status.in_(OPEN_STATUSES),
                AccessLog.issued_at <= occurred_at,
                AccessLog.expires_at >= occurred_at,
            )
            .order_by(AccessLog.issued_at.desc(), AccessLog.id.desc())
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def find_reconciled_log(self, session: AsyncSession, lock_id: str, pin: str) -> Optional[AccessLog]:
        stmt = (
            select(AccessLog)
            .where(
                AccessLog.lock_id == lock_id,
                AccessLog.pin == pin,
                AccessLog.used_at.is_not(None),
            )
            .order_by(AccessLog.used_at.desc(), AccessLog.id.desc())
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def transition(self, session: AsyncSession, log: AccessLog, used_at: datetime) -> Optional[AccessStatus]:
        """Move ``log`` to its next status once; ``None`` if it was already moved.

        Does not commit. The update is conditional on ``used_at`` still being
        empty so concurrent deliveries cannot both win.
        """

        target = TRANSITIONS.get((log.pin_type, log.status))
        if target is None:
            logger.warning(
                "Unexpected access log transition",
                extra={"access_log_id": log.id, "status": log.status.value, "pin_type": log.pin_type.value},
            )
            return None

        result = await session.execute(
            update(AccessLog)
            .where(
                AccessLog.id == log.id,
                AccessLog.status == log.status,
                AccessLog.used_at.is_(None),
            )
            .values(status=target, used_at=used_at, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        if log.pin_id is not None:
            await session.execute(
                update(SmartLockPin)
                .where(SmartLockPin.id == log.pin_id)
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
        return target

    async def after_transition(self, session: AsyncSession, log: AccessLog) -> None:
        """Community statistics on entry, stay duration on exit. Best effort."""

        if log.status == AccessStatus.ENTERED and log.dog_ids and log.park_id:
            try:
                for dog_id in log.dog_ids:
                    await self.gateway.process_entry_log(session, log.user_id, dog_id, log.park_id, log.used_at)
                await session.commit()
            except SQLAlchemyError as error:
                await session.rollback()
                await session.refresh(log)
                logger.warning("Failed to process entry log", extra={"access_log_id": log.id, "error": str(error)})

        elif log.status == AccessStatus.EXITED and log.park_id:
            try:
                duration = await self.occupancy_service.calculate_duration(
                    session, log.user_id, log.park_id, log.used_at
                )
                if duration is not None:
                    await session.execute(
                        update(AccessLog)
                        .where(AccessLog.id == log.id)
                        .values(duration=duration)
                        .execution_options(synchronize_session=False)
                    )
                    await session.commit()
                    log.duration = duration
                    logger.info("Stay duration recorded", extra={"access_log_id": log.id, "duration_ms": duration})
            except SQLAlchemyError as error:
                await session.rollback()
                await session.refresh(log)
                logger.warning("Failed to calculate duration", extra={"access_log_id": log.id, "error": str(error)})

    async def reconcile(self, session: AsyncSession, event: UnlockEvent) -> ReconcileResult:
        if event.record_type != UNLOCK_RECORD_TYPE:
            logger.info("Ignoring non-unlock lock record", extra={"record_type": event.record_type})
            return ReconcileResult(message=f"Event type {event.record_type} logged but not processed")

        lock_id = await self._resolve_lock_id(session, event.lock_id)
        occurred_at = event.occurred_at
        log = await self.find_open_log(session, lock_id, event.keyboard_pwd, occurred_at)
        if not log:
            reconciled = await self.find_reconciled_log(session, lock_id, event.keyboard_pwd)
            if reconciled:
                logger.info("Access log already processed", extra={"access_log_id": reconciled.id})
                return ReconcileResult(
                    message="Access log already processed",
                    status=reconciled.status,
                    access_log=reconciled,
                )
            logger.info("No matching access log", extra={"lock_id": lock_id})
            return ReconcileResult(message="No matching access log found (PIN may be from another system)")

        if log.used_at is not None:
            logger.info("Access log already processed", extra={"access_log_id": log.id})
            return ReconcileResult(message="Access log already processed", status=log.status, access_log=log)

        status = await self.transition(session, log, occurred_at)
        if status is None:
            await session.rollback()
            return ReconcileResult(message="Access log already processed")

        await session.commit()
        await session.refresh(log)
        logger.info(
            "Access log reconciled",
            extra={"access_log_id": log.id, "status": status.value, "lock_id": lock_id},
        )
        await self.after_transition(session, log)
        return ReconcileResult(message=f"Access log updated: {status.value}", status=status, access_log=log)


def get_access_log_service() -> AccessLogService:
    return AccessLogService()
