from .access import (
    OPEN_STATUSES,
    TRANSITIONS,
    AccessLog,
    AccessStatus,
    PinPurpose,
    SmartLockPin,
    initial_status,
)
from .dog import CertificationStatus, Dog, VaccineCertification
from .park import Park, SmartLock

__all__ = [
    "Park",
    "SmartLock",
    "Dog",
    "VaccineCertification",
    "CertificationStatus",
    "SmartLockPin",
    "AccessLog",
    "AccessStatus",
    "PinPurpose",
    "TRANSITIONS",
    "OPEN_STATUSES",
    "initial_status",
]
