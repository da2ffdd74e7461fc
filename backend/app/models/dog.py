from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Date, Enum as PgEnum, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class CertificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Dog(Base):
    __tablename__ = "dogs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    vaccine_certifications: Mapped[List["VaccineCertification"]] = relationship(
        back_populates="dog",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class VaccineCertification(Base):
    __tablename__ = "vaccine_certifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    dog_id: Mapped[str] = mapped_column(ForeignKey("dogs.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[CertificationStatus] = mapped_column(
        PgEnum(
            CertificationStatus,
            name="certification_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=CertificationStatus.PENDING,
        nullable=False,
    )
    rabies_expiry_date: Mapped[Optional[date]] = mapped_column(Date)
    combo_expiry_date: Mapped[Optional[date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    dog: Mapped[Dog] = relationship(back_populates="vaccine_certifications")

    def is_valid_on(self, day: date) -> bool:
        """Approved, and neither vaccine has lapsed; a missing expiry never lapses."""

        if self.status != CertificationStatus.APPROVED:
            return False
        for expiry in (self.rabies_expiry_date, self.combo_expiry_date):
            if expiry is not None and expiry < day:
                return False
        return True
