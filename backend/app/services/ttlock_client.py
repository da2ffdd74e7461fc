from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from app.services.errors import VendorUnavailableError
from app.utils.config import Settings, get_settings
from app.utils.timeutils import to_epoch_ms

logger = logging.getLogger(__name__)

# Period passcode, valid between startDate and endDate.
KEYBOARD_PWD_TYPE_PERIOD = 3
# Add/delete through the gateway instead of over bluetooth.
REMOTE_OPERATION = 2
TOKEN_REFRESH_MARGIN_SECONDS = 60

ERROR_MESSAGES: Dict[int, str] = {
    1: "Invalid parameter",
    2: "Invalid access token",
    3: "Permission denied",
    4: "Lock not found",
    5: "Lock is offline",
    10: "Passcode already exists",
    11: "Passcode limit reached",
    12: "Invalid passcode period",
    13: "Invalid passcode",
    -1: "Vendor server error",
}


class TTLockClient:
    """Client for the TTLock/Sciener open API.

    Holds its own OAuth2 token and refreshes it shortly before expiry. All
    failures surface as ``VendorUnavailableError`` so callers can fall back.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock=time.time,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.ttlock_base_url,
            timeout=self.settings.ttlock_timeout_seconds,
        )
        self._clock = clock
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def authenticate(self) -> str:
        data = await self._post(
            "/oauth2/token",
            {
                "client_id": self.settings.ttlock_client_id,
                "client_secret": self.settings.ttlock_client_secret,
                "username": self.settings.ttlock_username,
                "password": self.settings.ttlock_password,
                "grant_type": "password",
                "redirect_uri": self.settings.ttlock_redirect_uri,
            },
        )
        token = data.get("access_token")
        if not token:
            raise VendorUnavailableError("Lock vendor authentication failed: no access token returned")

        self._access_token = token
        self._refresh_token = data.get("refresh_token")
        self._token_expires_at = self._clock() + float(data.get("expires_in") or 0)
        logger.info("Authenticated with lock vendor", extra={"expires_in": data.get("expires_in")})
        return token

    async def _ensure_token(self) -> str:
        async with self._token_lock:
            if not self._access_token or self._clock() >= self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
                await self.authenticate()
            return self._access_token  # type: ignore[return-value]

    async def add_keyboard_password(
        self,
        lock_id: int | str,
        password: str,
        start: datetime,
        end: datetime,
        name: str,
    ) -> int:
        """Program a period passcode on the lock and return its ``keyboardPwdId``."""

        token = await self._ensure_token()
        data = await self._post(
            "/v3/keyboardPwd/add",
            {
                "clientId": self.settings.ttlock_client_id,
                "accessToken": token,
                "lockId": str(lock_id),
                "keyboardPwd": password,
                "keyboardPwdName": name,
                "keyboardPwdType": str(KEYBOARD_PWD_TYPE_PERIOD),
                "startDate": str(to_epoch_ms(start)),
                "endDate": str(to_epoch_ms(end)),
                "addType": str(REMOTE_OPERATION),
                "date": str(int(self._clock() * 1000)),
            },
        )
        pwd_id = data.get("keyboardPwdId")
        if pwd_id is None:
            raise VendorUnavailableError("Lock vendor did not return a passcode id")
        return int(pwd_id)

    async def delete_keyboard_password(self, lock_id: int | str, keyboard_pwd_id: int) -> None:
        token = await self._ensure_token()
        await self._post(
            "/v3/keyboardPwd/delete",
            {
                "clientId": self.settings.ttlock_client_id,
                "accessToken": token,
                "lockId": str(lock_id),
                "keyboardPwdId": str(keyboard_pwd_id),
                "deleteType": str(REMOTE_OPERATION),
                "date": str(int(self._clock() * 1000)),
            },
        )

    async def _post(self, path: str, form: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, data=form)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as error:
            logger.warning("Lock vendor request failed", extra={"path": path, "error": str(error)})
            raise VendorUnavailableError(f"Lock vendor request failed: {error}") from error
        except ValueError as error:
            raise VendorUnavailableError("Lock vendor returned a non-JSON response") from error

        errcode = data.get("errcode", 0)
        if errcode:
            message = data.get("errmsg") or ERROR_MESSAGES.get(errcode, "Unknown error")
            logger.warning(
                "Lock vendor rejected request",
                extra={"path": path, "errcode": errcode, "errmsg": message},
            )
            if errcode == 2:
                self._access_token = None
            raise VendorUnavailableError(f"Lock vendor error: {message} (code: {errcode})", errcode=errcode)
        return data


_ttlock_client: TTLockClient | None = None


def get_ttlock_client() -> TTLockClient:
    global _ttlock_client
    if not _ttlock_client:
        _ttlock_client = TTLockClient()
    return _ttlock_client


async def close_ttlock_client() -> None:
    global _ttlock_client
    if _ttlock_client:
        await _ttlock_client.aclose()
        _ttlock_client = None
