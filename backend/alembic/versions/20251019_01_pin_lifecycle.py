"""parks, smart locks, vaccine certifications, PINs and access logs

Revision ID: 20251019_01
Revises: 
Create Date: 2025-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20251019_01"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "certification_status": ("pending", "approved", "rejected", "expired"),
    "pin_purpose": ("entry", "exit"),
    "access_status": ("issued", "entered", "exit_requested", "exited"),
}

certification_status_enum = postgresql.ENUM(*ENUMS["certification_status"], name="certification_status", create_type=False)
pin_purpose_enum = postgresql.ENUM(*ENUMS["pin_purpose"], name="pin_purpose", create_type=False)
access_status_enum = postgresql.ENUM(*ENUMS["access_status"], name="access_status", create_type=False)


def upgrade() -> None:
    for enum_name, values in ENUMS.items():
        value_list = ", ".join(f"'{value}'" for value in values)
        statement = (
            "DO $$ BEGIN "
            f"IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{enum_name}') THEN "
            f"CREATE TYPE \"{enum_name}\" AS ENUM ({value_list}); "
            "END IF; END $$;"
        )
        op.execute(sa.text(statement))

    op.create_table(
        "parks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("max_capacity", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "smart_locks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lock_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("ttlock_lock_id", sa.String(length=64), nullable=True),
        sa.Column("park_id", sa.String(length=64), sa.ForeignKey("parks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("pin_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_smart_locks_ttlock_lock_id", "smart_locks", ["ttlock_lock_id"])
    op.create_index("ix_smart_locks_park_id", "smart_locks", ["park_id"])

    op.create_table(
        "dogs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_dogs_owner_id", "dogs", ["owner_id"])

    op.create_table(
        "vaccine_certifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("dog_id", sa.String(length=64), sa.ForeignKey("dogs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", certification_status_enum, nullable=False, server_default="pending"),
        sa.Column("rabies_expiry_date", sa.Date(), nullable=True),
        sa.Column("combo_expiry_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_vaccine_certifications_dog_id", "vaccine_certifications", ["dog_id"])

    op.create_table(
        "smart_lock_pins",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lock_id", sa.String(length=64), sa.ForeignKey("smart_locks.lock_id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("pin_code", sa.String(length=16), nullable=False),
        sa.Column("pin_hash", sa.String(length=64), nullable=False),
        sa.Column("purpose", pin_purpose_enum, nullable=False),
        sa.Column("ticket_type", sa.String(length=32), nullable=False, server_default="subscription"),
        sa.Column("reservation_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ttlock_keyboard_pwd_id", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_smart_lock_pins_pin_hash", "smart_lock_pins", ["pin_hash"])
    op.create_index("ix_smart_lock_pins_lookup", "smart_lock_pins", ["lock_id", "pin_code", "is_used"])
    op.create_index("ix_smart_lock_pins_session", "smart_lock_pins", ["user_id", "lock_id", "purpose", "is_used"])

    op.create_table(
        "access_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("pin_id", sa.Integer(), sa.ForeignKey("smart_lock_pins.id", ondelete="SET NULL"), nullable=True, unique=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("park_id", sa.String(length=64), sa.ForeignKey("parks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lock_id", sa.String(length=64), sa.ForeignKey("smart_locks.lock_id", ondelete="CASCADE"), nullable=False),
        sa.Column("dog_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("pin", sa.String(length=16), nullable=False),
        sa.Column("pin_type", pin_purpose_enum, nullable=False),
        sa.Column("status", access_status_enum, nullable=False),
        sa.Column("ticket_type", sa.String(length=32), nullable=True),
        sa.Column("reservation_id", sa.String(length=64), nullable=True),
        sa.Column("keyboard_pwd_id", sa.BigInteger(), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_access_logs_user_id", "access_logs", ["user_id"])
    op.create_index("ix_access_logs_park_id", "access_logs", ["park_id"])
    op.create_index("ix_access_logs_match", "access_logs", ["lock_id", "pin", "status"])


def downgrade() -> None:
    op.drop_index("ix_access_logs_match", table_name="access_logs")
    op.drop_index("ix_access_logs_park_id", table_name="access_logs")
    op.drop_index("ix_access_logs_user_id", table_name="access_logs")
    op.drop_table("access_logs")

    op.drop_index("ix_smart_lock_pins_session", table_name="smart_lock_pins")
    op.drop_index("ix_smart_lock_pins_lookup", table_name="smart_lock_pins")
    op.drop_index("ix_smart_lock_pins_pin_hash", table_name="smart_lock_pins")
    op.drop_table("smart_lock_pins")

    op.drop_index("ix_vaccine_certifications_dog_id", table_name="vaccine_certifications")
    op.drop_table("vaccine_certifications")

    op.drop_index("ix_dogs_owner_id", table_name="dogs")
    op.drop_table("dogs")

    op.drop_index("ix_smart_locks_park_id", table_name="smart_locks")
    op.drop_index("ix_smart_locks_ttlock_lock_id", table_name="smart_locks")
    op.drop_table("smart_locks")

    op.drop_table("parks")

    for enum_name in ("access_status", "pin_purpose", "certification_status"):
        statement = (
            "DO $$ BEGIN "
            f"IF EXISTS (SELECT 1 FROM pg_type WHERE typname = '{enum_name}') THEN "
            f"DROP TYPE \"{enum_name}\"; "
            "END IF; END $$;"
        )
        op.execute(sa.text(statement))
