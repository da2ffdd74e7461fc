from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AccessLog, AccessStatus, Park
from app.utils.timeutils import ensure_utc


class OccupancyService:
    """Derives park occupancy and stay durations from reconciled access logs."""

    async def get_park_occupancy(self, session: AsyncSession, park_id: str) -> Dict[str, Any]:
        # A user is inside while their latest reconciled log for the park is an entry.
        stmt = (
            select(AccessLog.user_id, AccessLog.status, AccessLog.used_at)
            .where(
                AccessLog.park_id == park_id,
                AccessLog.status.in_((AccessStatus.ENTERED, AccessStatus.EXITED)),
                AccessLog.used_at.is_not(None),
            )
            .order_by(AccessLog.used_at, AccessLog.id)
        )
        latest: Dict[str, AccessStatus] = {}
        for user_id, status, _ in (await session.execute(stmt)).all():
            latest[user_id] = status

        park = await session.get(Park, park_id)
        return {
            "park_id": park_id,
            "current_count": sum(1 for status in latest.values() if status == AccessStatus.ENTERED),
            "max_capacity": park.max_capacity if park else None,
        }

    async def calculate_duration(
        self,
        session: AsyncSession,
        user_id: str,
        park_id: str,
        exit_time: datetime,
    ) -> Optional[int]:
        """Milliseconds between the user's latest entry before ``exit_time`` and the exit."""

        stmt = (
            select(AccessLog.used_at)
            .where(
                AccessLog.user_id == user_id,
                AccessLog.park_id == park_id,
                AccessLog.status == AccessStatus.ENTERED,
                AccessLog.used_at.is_not(None),
                AccessLog.used_at <= exit_time,
            )
            .order_by(AccessLog.used_at.desc())
            .limit(1)
        )
        entered_at = (await session.execute(stmt)).scalar_one_or_none()
        if entered_at is None:
            return None
        delta = ensure_utc(exit_time) - ensure_utc(entered_at)
        return int(delta.total_seconds() * 1000)


def get_occupancy_service() -> OccupancyService:
    return OccupancyService()
