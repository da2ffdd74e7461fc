from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.models import SmartLock
from app.services.errors import VendorUnavailableError
from app.services.ttlock_client import TTLockClient, get_ttlock_client
from app.utils.config import get_settings

logger = logging.getLogger(__name__)

DEMO_MODE_WARNING = "Running in demo mode because the lock vendor could not be reached"


@dataclass
class ProvisionResult:
    vendor_pin_id: Optional[int] = None
    demo_mode: bool = False
    warning: Optional[str] = None


class LockProvisioner:
    """Registers issued codes on the physical lock."""

    async def provision(
        self,
        lock: SmartLock,
        pin_code: str,
        starts_at: datetime,
        expires_at: datetime,
    ) -> ProvisionResult:
        raise NotImplementedError

    async def revoke(self, lock: SmartLock, vendor_pin_id: Optional[int]) -> None:
        raise NotImplementedError


class LocalOnlyProvisioner(LockProvisioner):
    """Keeps codes in the database only; used when no vendor is configured."""

    async def provision(
        self,
        lock: SmartLock,
        pin_code: str,
        starts_at: datetime,
        expires_at: datetime,
    ) -> ProvisionResult:
        logger.info("Issuing local-only PIN", extra={"lock_id": lock.lock_id})
        return ProvisionResult(demo_mode=True)

    async def revoke(self, lock: SmartLock, vendor_pin_id: Optional[int]) -> None:
        return None


class VendorBackedProvisioner(LockProvisioner):
    """Programs codes through the lock vendor, degrading to demo mode on failure."""

    def __init__(self, client: TTLockClient) -> None:
        self.client = client

    async def provision(
        self,
        lock: SmartLock,
        pin_code: str,
        starts_at: datetime,
        expires_at: datetime,
    ) -> ProvisionResult:
        if not lock.ttlock_lock_id:
            logger.info("Lock has no vendor id, issuing demo PIN", extra={"lock_id": lock.lock_id})
            return ProvisionResult(demo_mode=True)

        name = f"{lock.park_name or 'Dog park'} PIN {starts_at:%Y-%m-%d %H:%M}"
        try:
            pwd_id = await self.client.add_keyboard_password(
                lock.ttlock_lock_id,
                pin_code,
                starts_at,
                expires_at,
                name=name,
            )
        except VendorUnavailableError as error:
            logger.warning(
                "Lock vendor unavailable, falling back to demo mode",
                extra={"lock_id": lock.lock_id, "error": error.message, "errcode": error.errcode},
            )
            return ProvisionResult(demo_mode=True, warning=DEMO_MODE_WARNING)

        logger.info("Registered PIN on lock", extra={"lock_id": lock.lock_id, "keyboard_pwd_id": pwd_id})
        return ProvisionResult(vendor_pin_id=pwd_id)

    async def revoke(self, lock: SmartLock, vendor_pin_id: Optional[int]) -> None:
        if not lock.ttlock_lock_id or vendor_pin_id is None:
            return
        try:
            await self.client.delete_keyboard_password(lock.ttlock_lock_id, vendor_pin_id)
        except VendorUnavailableError as error:
            logger.warning(
                "Failed to delete PIN from lock",
                extra={"lock_id": lock.lock_id, "keyboard_pwd_id": vendor_pin_id, "error": error.message},
            )


def get_lock_provisioner() -> LockProvisioner:
    if get_settings().ttlock_configured:
        return VendorBackedProvisioner(get_ttlock_client())
    return LocalOnlyProvisioner()
