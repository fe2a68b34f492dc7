"""create_referral_lifecycle_tables

Revision ID: 5f3a9c1e7b20
Revises:
Create Date: 2026-10-19 09:12:31.408211

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5f3a9c1e7b20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. Code registry
    op.create_table(
        "referral_codes",
        sa.Column(
            "code",
            sa.String(length=20),
            nullable=False,
            comment="Unique referral code (e.g., XY7G4D)",
        ),
        sa.Column("owner_user_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("code"),
    )
    op.create_index(
        "ix_referral_codes_owner_user_id",
        "referral_codes",
        ["owner_user_id"],
        unique=True,
    )

    # 2. Referral records
    op.create_table(
        "referrals",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("referrer_id", sa.String(length=64), nullable=False),
        sa.Column("referee_user_id", sa.String(length=64), nullable=True),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=True),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["code"], ["referral_codes.code"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referrals_code", "referrals", ["code"])
    op.create_index("ix_referrals_referrer_status", "referrals", ["referrer_id", "status"])
    op.create_index(
        "uq_referrals_code_referee_redeemed",
        "referrals",
        ["code", "referee_user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('registered', 'redeemed', 'complete')"),
    )

    # 3. Event ledger (no FK on code: unknown codes are still recorded)
    op.create_table(
        "referral_events",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column(
            "external_event_id",
            sa.String(length=64),
            nullable=True,
            comment="Vendor-supplied idempotency key",
        ),
        sa.Column("device_id", sa.String(length=100), nullable=True),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_event_id"),
    )
    op.create_index("ix_referral_events_code_type", "referral_events", ["code", "event_type"])
    op.create_index(
        "uq_referral_events_redemption_marker",
        "referral_events",
        ["code"],
        unique=True,
        postgresql_where=sa.text("source = 'redemption'"),
    )

    # 4. Referral sessions
    op.create_table(
        "referral_sessions",
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("device_id", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("session_id"),
    )
    op.create_index(
        "uq_referral_sessions_code_device_verified",
        "referral_sessions",
        ["code", "device_id"],
        unique=True,
        postgresql_where=sa.text("status = 'verified'"),
    )
    op.create_index(
        "ix_referral_sessions_code_expires", "referral_sessions", ["code", "expires_at"]
    )

    # 5. Generated links
    op.create_table(
        "referral_links",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=True),
        sa.Column("vendor_id", sa.String(length=64), nullable=True),
        sa.Column("link_metadata", sa.JSON(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["code"], ["referral_codes.code"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referral_links_code_channel", "referral_links", ["code", "channel"])


def downgrade() -> None:
    op.drop_index("ix_referral_links_code_channel", table_name="referral_links")
    op.drop_table("referral_links")

    op.drop_index("ix_referral_sessions_code_expires", table_name="referral_sessions")
    op.drop_index("uq_referral_sessions_code_device_verified", table_name="referral_sessions")
    op.drop_table("referral_sessions")

    op.drop_index("uq_referral_events_redemption_marker", table_name="referral_events")
    op.drop_index("ix_referral_events_code_type", table_name="referral_events")
    op.drop_table("referral_events")

    op.drop_index("uq_referrals_code_referee_redeemed", table_name="referrals")
    op.drop_index("ix_referrals_referrer_status", table_name="referrals")
    op.drop_index("ix_referrals_code", table_name="referrals")
    op.drop_table("referrals")

    op.drop_index("ix_referral_codes_owner_user_id", table_name="referral_codes")
    op.drop_table("referral_codes")
