"""Referral record model and the lifecycle status ordering."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel

from app.models.base import new_id, utcnow


class ReferralStatus(str, Enum):
    """Lifecycle states of a referral record."""

    INVITED = "invited"
    CLICKED = "clicked"
    INSTALLED = "installed"
    OPEN = "open"
    REGISTERED = "registered"
    REDEEMED = "redeemed"
    COMPLETE = "complete"
    # Manual moderation only; outside the automatic ordering
    REJECTED = "rejected"


# Ascending lifecycle order. A record's status never moves backwards in this tuple.
STATUS_ORDER: tuple[ReferralStatus, ...] = (
    ReferralStatus.INVITED,
    ReferralStatus.CLICKED,
    ReferralStatus.INSTALLED,
    ReferralStatus.OPEN,
    ReferralStatus.REGISTERED,
    ReferralStatus.REDEEMED,
    ReferralStatus.COMPLETE,
)

# Statuses that mean a referee has already redeemed the code
REDEEMED_STATUSES: tuple[ReferralStatus, ...] = (
    ReferralStatus.REGISTERED,
    ReferralStatus.REDEEMED,
    ReferralStatus.COMPLETE,
)

_REDEEMED_PREDICATE = "status IN ('registered', 'redeemed', 'complete')"


class Referral(SQLModel, table=True):
    """
    One invitation-to-completion cycle for a referral code.

    Created by a share or by the first lifecycle event for a code. Only the
    lifecycle engine writes status; a completed record is never modified again.
    """

    __tablename__ = "referrals"
    __table_args__ = (
        Index("ix_referrals_referrer_status", "referrer_id", "status"),
        # A referee may redeem a given code at most once
        Index(
            "uq_referrals_code_referee_redeemed",
            "code",
            "referee_user_id",
            unique=True,
            postgresql_where=text(_REDEEMED_PREDICATE),
            sqlite_where=text(_REDEEMED_PREDICATE),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    referrer_id: str = Field(max_length=64, nullable=False)
    referee_user_id: str | None = Field(default=None, max_length=64)
    code: str = Field(
        max_length=20,
        nullable=False,
        index=True,
        foreign_key="referral_codes.code",
    )
    status: str = Field(
        default=ReferralStatus.INVITED.value,
        max_length=32,
        nullable=False,
    )
    channel: str | None = Field(default=None, max_length=32)

    invited_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
    registered_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None,
        sa_type=DateTime(timezone=True),
    )
