from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

if TYPE_CHECKING:  # pragma: no cover
    from .access import AccessLog, SmartLockPin


class Park(Base):
    __tablename__ = "parks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    locks: Mapped[List["SmartLock"]] = relationship(back_populates="park", lazy="selectin")


class SmartLock(Base):
    """A physical lock at a park, provisioned out-of-band."""

    __tablename__ = "smart_locks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    lock_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    ttlock_lock_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    park_id: Mapped[str] = mapped_column(ForeignKey("parks.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    pin_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    park: Mapped[Park] = relationship(back_populates="locks", lazy="joined")
    pins: Mapped[List["SmartLockPin"]] = relationship(back_populates="lock", lazy="noload")
    access_logs: Mapped[List["AccessLog"]] = relationship(back_populates="lock", lazy="noload")

    @property
    def park_name(self) -> Optional[str]:
        return self.park.name if self.park else None
