from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass
class ParkAccessResult:
    has_access: bool
    payment_required: bool = False
    payment_message: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ParkAccessResult":
        if isinstance(payload, str):
            payload = json.loads(payload)
        if not isinstance(payload, dict):
            return cls(has_access=False)
        return cls(
            has_access=bool(payload.get("has_access")),
            payment_required=bool(payload.get("payment_required")),
            payment_message=payload.get("payment_message"),
        )


class ParkGateway:
    """Database functions owned by the billing and community subsystems.

    Subscriptions, one-day passes and reservations live outside this service;
    it only consumes their verdicts through these calls.
    """

    async def check_user_park_access(self, session: AsyncSession, user_id: str, lock_id: str) -> ParkAccessResult:
        result = await session.execute(select(func.check_user_park_access(user_id, lock_id)))
        return ParkAccessResult.from_payload(result.scalar_one_or_none())

    async def process_entry_log(
        self,
        session: AsyncSession,
        user_id: str,
        dog_id: str,
        park_id: str,
        used_at: datetime,
    ) -> None:
        await session.execute(select(func.process_entry_log(user_id, dog_id, park_id, used_at)))


def get_park_gateway() -> ParkGateway:
    return ParkGateway()
