from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Enum as PgEnum, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType
from app.utils.timeutils import isoformat

if TYPE_CHECKING:  # pragma: no cover
    from .park import SmartLock


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class PinPurpose(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class AccessStatus(str, Enum):
    ISSUED = "issued"
    ENTERED = "entered"
    EXIT_REQUESTED = "exit_requested"
    EXITED = "exited"


# Reconciliation moves a log forward exactly once; anything else is rejected.
TRANSITIONS: dict[tuple[PinPurpose, AccessStatus], AccessStatus] = {
    (PinPurpose.ENTRY, AccessStatus.ISSUED): AccessStatus.ENTERED,
    (PinPurpose.EXIT, AccessStatus.EXIT_REQUESTED): AccessStatus.EXITED,
}

OPEN_STATUSES = (AccessStatus.ISSUED, AccessStatus.EXIT_REQUESTED)


def initial_status(purpose: PinPurpose) -> AccessStatus:
    return AccessStatus.ISSUED if purpose == PinPurpose.ENTRY else AccessStatus.EXIT_REQUESTED


class SmartLockPin(Base):
    __tablename__ = "smart_lock_pins"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    lock_id: Mapped[str] = mapped_column(ForeignKey("smart_locks.lock_id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    pin_code: Mapped[str] = mapped_column(String(16), nullable=False)
    pin_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    purpose: Mapped[PinPurpose] = mapped_column(
        PgEnum(PinPurpose, name="pin_purpose", values_callable=_enum_values),
        nullable=False,
    )
    ticket_type: Mapped[str] = mapped_column(String(32), default="subscription", nullable=False)
    reservation_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ttlock_keyboard_pwd_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    lock: Mapped["SmartLock"] = relationship(back_populates="pins", lazy="noload")
    access_log: Mapped[Optional["AccessLog"]] = relationship(back_populates="pin_record", lazy="noload", uselist=False)

    __table_args__ = (
        Index("ix_smart_lock_pins_lookup", "lock_id", "pin_code", "is_used"),
        Index("ix_smart_lock_pins_session", "user_id", "lock_id", "purpose", "is_used"),
    )


class AccessLog(Base):
    __tablename__ = "access_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    pin_id: Mapped[Optional[int]] = mapped_column(ForeignKey("smart_lock_pins.id", ondelete="SET NULL"), unique=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    park_id: Mapped[str] = mapped_column(ForeignKey("parks.id", ondelete="CASCADE"), nullable=False, index=True)
    lock_id: Mapped[str] = mapped_column(ForeignKey("smart_locks.lock_id", ondelete="CASCADE"), nullable=False)
    dog_ids: Mapped[List[str]] = mapped_column(JSONType, default=list)
    pin: Mapped[str] = mapped_column(String(16), nullable=False)
    pin_type: Mapped[PinPurpose] = mapped_column(
        PgEnum(PinPurpose, name="pin_purpose", values_callable=_enum_values),
        nullable=False,
    )
    status: Mapped[AccessStatus] = mapped_column(
        PgEnum(AccessStatus, name="access_status", values_callable=_enum_values),
        nullable=False,
    )
    ticket_type: Mapped[Optional[str]] = mapped_column(String(32))
    reservation_id: Mapped[Optional[str]] = mapped_column(String(64))
    keyboard_pwd_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    lock: Mapped["SmartLock"] = relationship(back_populates="access_logs", lazy="noload")
    pin_record: Mapped[Optional[SmartLockPin]] = relationship(back_populates="access_log", lazy="noload")

    __table_args__ = (
        Index("ix_access_logs_match", "lock_id", "pin", "status"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "park_id": self.park_id,
            "lock_id": self.lock_id,
            "pin_type": self.pin_type.value,
            "status": self.status.value,
            "dog_ids": self.dog_ids or [],
            "issued_at": isoformat(self.issued_at),
            "expires_at": isoformat(self.expires_at),
            "used_at": isoformat(self.used_at),
            "duration": self.duration,
        }
