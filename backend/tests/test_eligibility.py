from datetime import date, timedelta

import pytest

from app.models import CertificationStatus, PinPurpose, VaccineCertification
from app.services.errors import AccessDeniedError, NotFoundError, PaymentRequiredError, VaccineNotApprovedError
from app.services.park_gateway import ParkAccessResult

from .conftest import LOCK_ID, NOW, USER_ID, add_dog

TODAY = NOW.date()


@pytest.mark.parametrize(
    "status, rabies, combo, expected",
    [
        (CertificationStatus.APPROVED, None, None, True),
        (CertificationStatus.APPROVED, TODAY, TODAY, True),
        (CertificationStatus.APPROVED, TODAY - timedelta(days=1), None, False),
        (CertificationStatus.APPROVED, None, TODAY - timedelta(days=1), False),
        (CertificationStatus.PENDING, None, None, False),
        (CertificationStatus.REJECTED, TODAY + timedelta(days=30), None, False),
    ],
)
def test_certificate_validity(status, rabies, combo, expected):
    cert = VaccineCertification(status=status, rabies_expiry_date=rabies, combo_expiry_date=combo)
    assert cert.is_valid_on(TODAY) is expected


async def test_any_valid_certificate_qualifies(db, eligibility_service):
    await add_dog(db, "dog-a", status=CertificationStatus.PENDING)
    assert await eligibility_service.has_approved_dog(db, USER_ID) is False

    await add_dog(db, "dog-b", rabies_expiry=date(2026, 1, 1))
    assert await eligibility_service.has_approved_dog(db, USER_ID) is True


async def test_other_owners_dogs_do_not_count(db, eligibility_service):
    await add_dog(db, "dog-x", owner_id="someone-else")
    with pytest.raises(VaccineNotApprovedError):
        await eligibility_service.ensure_vaccinated(db, USER_ID)


async def test_check_returns_lock_for_eligible_user(db, park, eligibility_service, gateway):
    lock = await eligibility_service.check(db, USER_ID, LOCK_ID, PinPurpose.ENTRY)

    assert lock.lock_id == LOCK_ID
    assert lock.park_name == "Central Dog Run"
    assert gateway.access_checks == [(USER_ID, LOCK_ID)]


async def test_check_maps_denials(db, park, eligibility_service, gateway):
    gateway.access = ParkAccessResult(has_access=False, payment_required=True, payment_message="Pay first")
    with pytest.raises(PaymentRequiredError) as excinfo:
        await eligibility_service.check(db, USER_ID, LOCK_ID, PinPurpose.ENTRY)
    assert excinfo.value.message == "Pay first"

    gateway.access = ParkAccessResult(has_access=False)
    with pytest.raises(AccessDeniedError):
        await eligibility_service.check(db, USER_ID, LOCK_ID, PinPurpose.EXIT)


async def test_exit_skips_vaccine_check(db, park, eligibility_service):
    lock = await eligibility_service.check(db, "dogless-user", LOCK_ID, PinPurpose.EXIT)
    assert lock.lock_id == LOCK_ID


async def test_unknown_lock(db, park, eligibility_service):
    with pytest.raises(NotFoundError):
        await eligibility_service.load_lock(db, "nope")
