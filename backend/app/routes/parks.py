from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_session
from app.models import Park
from app.services.errors import NotFoundError
from app.services.occupancy_service import OccupancyService, get_occupancy_service

router = APIRouter(prefix="/parks", tags=["parks"])


@router.get("/{park_id}/occupancy")
async def get_park_occupancy(
    park_id: str,
    db: AsyncSession = Depends(get_session),
    occupancy_service: OccupancyService = Depends(get_occupancy_service),
) -> Dict[str, Any]:
    if not await db.get(Park, park_id):
        raise NotFoundError("Park not found", park_id=park_id)
    return await occupancy_service.get_park_occupancy(db, park_id)
