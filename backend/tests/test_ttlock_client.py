from datetime import timedelta
from types import SimpleNamespace
from urllib.parse import parse_qs

import httpx
import pytest

from app.services.errors import VendorUnavailableError
from app.services.lock_provisioner import (
    DEMO_MODE_WARNING,
    LocalOnlyProvisioner,
    VendorBackedProvisioner,
)
from app.services.ttlock_client import TTLockClient
from app.utils.config import Settings
from app.utils.timeutils import to_epoch_ms

from .conftest import NOW

SETTINGS = Settings(
    TTLOCK_CLIENT_ID="client-id",
    TTLOCK_CLIENT_SECRET="client-secret",
    TTLOCK_USERNAME="operator",
    TTLOCK_PASSWORD="hashed-password",
)


class FakeVendor:
    """Records form posts and answers like the vendor API."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.add_response: dict = {"keyboardPwdId": 4242}
        self.token_counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        self.requests.append((request.url.path, form))
        if request.url.path == "/oauth2/token":
            self.token_counter += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_counter}", "refresh_token": "r", "expires_in": 3600},
            )
        if request.url.path == "/v3/keyboardPwd/add":
            return httpx.Response(200, json=self.add_response)
        if request.url.path == "/v3/keyboardPwd/delete":
            return httpx.Response(200, json={"errcode": 0})
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [path for path, _ in self.requests]


class FakeTime:
    def __init__(self) -> None:
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
async def ttlock(vendor, fake_time):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(vendor), base_url="https://ttlock.test")
    client = TTLockClient(settings=SETTINGS, http_client=http_client, clock=fake_time)
    yield client
    await client.aclose()


def _lock(ttlock_lock_id="9001"):
    return SimpleNamespace(lock_id="L1", ttlock_lock_id=ttlock_lock_id, park_name="Central Dog Run")


async def test_add_keyboard_password_sends_period_passcode(ttlock, vendor):
    start, end = NOW, NOW + timedelta(minutes=5)

    pwd_id = await ttlock.add_keyboard_password("9001", "123456", start, end, name="Gate PIN")

    assert pwd_id == 4242
    assert vendor.paths() == ["/oauth2/token", "/v3/keyboardPwd/add"]
    _, form = vendor.requests[1]
    assert form["accessToken"] == "token-1"
    assert form["lockId"] == "9001"
    assert form["keyboardPwd"] == "123456"
    assert form["keyboardPwdType"] == "3"
    assert form["addType"] == "2"
    assert form["startDate"] == str(to_epoch_ms(start))
    assert form["endDate"] == str(to_epoch_ms(end))


async def test_token_is_reused_until_close_to_expiry(ttlock, vendor, fake_time):
    await ttlock.add_keyboard_password("9001", "111111", NOW, NOW + timedelta(minutes=5), name="a")
    await ttlock.add_keyboard_password("9001", "222222", NOW, NOW + timedelta(minutes=5), name="b")
    assert vendor.token_counter == 1

    fake_time.now += 3600 - 30
    await ttlock.add_keyboard_password("9001", "333333", NOW, NOW + timedelta(minutes=5), name="c")
    assert vendor.token_counter == 2
    assert vendor.requests[-1][1]["accessToken"] == "token-2"


async def test_vendor_error_code_raises(ttlock, vendor):
    vendor.add_response = {"errcode": 5, "errmsg": ""}

    with pytest.raises(VendorUnavailableError) as excinfo:
        await ttlock.add_keyboard_password("9001", "123456", NOW, NOW + timedelta(minutes=5), name="x")

    assert excinfo.value.errcode == 5
    assert "Lock is offline" in excinfo.value.message


async def test_invalid_token_forces_reauthentication(ttlock, vendor):
    vendor.add_response = {"errcode": 2, "errmsg": "invalid token"}
    with pytest.raises(VendorUnavailableError):
        await ttlock.add_keyboard_password("9001", "123456", NOW, NOW + timedelta(minutes=5), name="x")

    vendor.add_response = {"keyboardPwdId": 7}
    assert await ttlock.add_keyboard_password("9001", "123456", NOW, NOW + timedelta(minutes=5), name="x") == 7
    assert vendor.token_counter == 2


async def test_transport_error_raises_vendor_unavailable(fake_time):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://ttlock.test")
    client = TTLockClient(settings=SETTINGS, http_client=http_client, clock=fake_time)

    with pytest.raises(VendorUnavailableError):
        await client.authenticate()
    await client.aclose()


async def test_delete_keyboard_password(ttlock, vendor):
    await ttlock.delete_keyboard_password("9001", 4242)

    path, form = vendor.requests[-1]
    assert path == "/v3/keyboardPwd/delete"
    assert form["keyboardPwdId"] == "4242"
    assert form["deleteType"] == "2"


async def test_vendor_backed_provisioner(ttlock, vendor):
    provisioner = VendorBackedProvisioner(ttlock)

    result = await provisioner.provision(_lock(), "123456", NOW, NOW + timedelta(minutes=5))

    assert result.vendor_pin_id == 4242
    assert result.demo_mode is False
    assert result.warning is None
    assert vendor.requests[-1][1]["keyboardPwdName"].startswith("Central Dog Run PIN")


async def test_vendor_backed_provisioner_falls_back_to_demo(ttlock, vendor):
    vendor.add_response = {"errcode": -1}
    provisioner = VendorBackedProvisioner(ttlock)

    result = await provisioner.provision(_lock(), "123456", NOW, NOW + timedelta(minutes=5))

    assert result.demo_mode is True
    assert result.vendor_pin_id is None
    assert result.warning == DEMO_MODE_WARNING


async def test_lock_without_vendor_id_is_demo_without_warning(ttlock, vendor):
    provisioner = VendorBackedProvisioner(ttlock)

    result = await provisioner.provision(_lock(ttlock_lock_id=None), "123456", NOW, NOW + timedelta(minutes=5))

    assert result.demo_mode is True
    assert result.warning is None
    assert vendor.requests == []


async def test_revoke_is_best_effort(ttlock, vendor):
    vendor.add_response = {"errcode": -1}
    provisioner = VendorBackedProvisioner(ttlock)

    await provisioner.revoke(_lock(), 4242)
    await provisioner.revoke(_lock(), None)

    assert vendor.paths().count("/v3/keyboardPwd/delete") == 1


async def test_local_only_provisioner():
    result = await LocalOnlyProvisioner().provision(_lock(), "123456", NOW, NOW + timedelta(minutes=5))
    assert result.demo_mode is True
    assert result.warning is None
