from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.database import get_session
from app.main import app
from app.models import CertificationStatus, Dog, Park, SmartLock, VaccineCertification
from app.services.access_log_service import AccessLogService, get_access_log_service
from app.services.auth_service import AuthService, get_auth_service
from app.services.eligibility_service import EligibilityService
from app.services.lock_provisioner import LockProvisioner, ProvisionResult
from app.services.occupancy_service import OccupancyService
from app.services.park_gateway import ParkAccessResult, ParkGateway
from app.services.pin_service import PinService, get_pin_service
from app.utils.timeutils import to_epoch_ms

NOW = datetime(2025, 10, 19, 3, 0, tzinfo=timezone.utc)
JWT_SECRET = "test-secret"
USER_ID = "user-1"
OTHER_USER_ID = "user-2"
LOCK_ID = "L1"
VENDOR_LOCK_ID = "9001"
PARK_ID = "park-1"


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeParkGateway(ParkGateway):
    def __init__(self) -> None:
        self.access = ParkAccessResult(has_access=True)
        self.access_checks: List[tuple[str, str]] = []
        self.entries: List[tuple[str, str, str, datetime]] = []

    async def check_user_park_access(self, session, user_id, lock_id):
        self.access_checks.append((user_id, lock_id))
        return self.access

    async def process_entry_log(self, session, user_id, dog_id, park_id, used_at):
        self.entries.append((user_id, dog_id, park_id, used_at))


class FakeProvisioner(LockProvisioner):
    def __init__(self, result: Optional[ProvisionResult] = None) -> None:
        self.result = result or ProvisionResult(vendor_pin_id=555)
        self.provisioned: List[tuple[str, str, datetime, datetime]] = []
        self.revoked: List[tuple[str, Optional[int]]] = []

    async def provision(self, lock, pin_code, starts_at, expires_at):
        self.provisioned.append((lock.lock_id, pin_code, starts_at, expires_at))
        return self.result

    async def revoke(self, lock, vendor_pin_id):
        self.revoked.append((lock.lock_id, vendor_pin_id))


class CountingOccupancyService(OccupancyService):
    def __init__(self) -> None:
        self.duration_calls = 0

    async def calculate_duration(self, session, user_id, park_id, exit_time):
        self.duration_calls += 1
        return await super().calculate_duration(session, user_id, park_id, exit_time)


def make_token(user_id: str = USER_ID, secret: str = JWT_SECRET) -> str:
    claims = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: str = USER_ID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def webhook_body(pin: str, at: datetime, record_type: int = 2, lock_id: str = VENDOR_LOCK_ID) -> dict[str, Any]:
    return {"lockId": lock_id, "keyboardPwd": pin, "recordType": record_type, "date": to_epoch_ms(at)}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def gateway() -> FakeParkGateway:
    return FakeParkGateway()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def occupancy_service() -> CountingOccupancyService:
    return CountingOccupancyService()


@pytest.fixture
def access_log_service(gateway, occupancy_service) -> AccessLogService:
    return AccessLogService(gateway=gateway, occupancy_service=occupancy_service)


@pytest.fixture
def eligibility_service(gateway, clock) -> EligibilityService:
    return EligibilityService(gateway=gateway, clock=clock)


@pytest.fixture
def pin_service(eligibility_service, provisioner, access_log_service, occupancy_service, clock) -> PinService:
    return PinService(
        eligibility_service=eligibility_service,
        provisioner=provisioner,
        access_log_service=access_log_service,
        occupancy_service=occupancy_service,
        clock=clock,
        pin_length=6,
        default_expiry_minutes=5,
    )


async def add_dog(
    session: AsyncSession,
    dog_id: str,
    owner_id: str = USER_ID,
    status: CertificationStatus = CertificationStatus.APPROVED,
    rabies_expiry: Optional[date] = None,
    combo_expiry: Optional[date] = None,
) -> Dog:
    dog = Dog(id=dog_id, owner_id=owner_id, name=dog_id.title())
    dog.vaccine_certifications.append(
        VaccineCertification(status=status, rabies_expiry_date=rabies_expiry, combo_expiry_date=combo_expiry)
    )
    session.add(dog)
    await session.commit()
    return dog


@pytest.fixture
async def park(db) -> Park:
    park = Park(id=PARK_ID, name="Central Dog Run", max_capacity=20)
    park.locks.append(SmartLock(lock_id=LOCK_ID, ttlock_lock_id=VENDOR_LOCK_ID, name="Gate", pin_enabled=True))
    park.locks.append(SmartLock(lock_id="L-disabled", name="Side gate", pin_enabled=False))
    db.add(park)
    await db.commit()
    await add_dog(
        db,
        "dog-1",
        rabies_expiry=NOW.date() + timedelta(days=30),
        combo_expiry=NOW.date() + timedelta(days=30),
    )
    return park


@pytest.fixture
async def client(session_factory, pin_service, access_log_service):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_pin_service] = lambda: pin_service
    app.dependency_overrides[get_access_log_service] = lambda: access_log_service
    app.dependency_overrides[get_auth_service] = lambda: AuthService(secret=JWT_SECRET, audience="authenticated")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
