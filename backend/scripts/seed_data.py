from __future__ import annotations

import asyncio
from datetime import timedelta

from app.db.database import async_session_factory
from app.models import CertificationStatus, Dog, Park, SmartLock, VaccineCertification
from app.utils.timeutils import utcnow

PARKS = [
    {
        "id": "park-shibuya",
        "name": "Shibuya Dog Run",
        "max_capacity": 30,
        "locks": [
            {"lock_id": "shibuya-entrance", "name": "Entrance gate", "ttlock_lock_id": None},
            {"lock_id": "shibuya-exit", "name": "Exit gate", "ttlock_lock_id": None},
        ],
    },
]

DOGS = [
    {"id": "dog-pochi", "owner_id": "demo-user", "name": "Pochi", "status": CertificationStatus.APPROVED},
    {"id": "dog-hana", "owner_id": "demo-user", "name": "Hana", "status": CertificationStatus.PENDING},
]


async def seed() -> None:
    today = utcnow().date()

    async with async_session_factory() as session:
        for park_payload in PARKS:
            if await session.get(Park, park_payload["id"]):
                continue
            park = Park(
                id=park_payload["id"],
                name=park_payload["name"],
                max_capacity=park_payload["max_capacity"],
            )
            for lock_payload in park_payload["locks"]:
                park.locks.append(SmartLock(pin_enabled=True, **lock_payload))
            session.add(park)

        for dog_payload in DOGS:
            if await session.get(Dog, dog_payload["id"]):
                continue
            dog = Dog(id=dog_payload["id"], owner_id=dog_payload["owner_id"], name=dog_payload["name"])
            dog.vaccine_certifications.append(
                VaccineCertification(
                    status=dog_payload["status"],
                    rabies_expiry_date=today + timedelta(days=180),
                    combo_expiry_date=today + timedelta(days=365),
                )
            )
            session.add(dog)

        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed())
