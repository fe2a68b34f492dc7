from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class ReferralCodeStatus(str, Enum):
    """Lifecycle of a referral code. Codes are retired, never deleted."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class ReferralCode(SQLModel, table=True):
    """
    A user's shareable referral code.

    Codes are stored uppercase; lookups normalise the input so matching is
    case-insensitive. Each user owns at most one code.
    """

    __tablename__ = "referral_codes"

    code: str = Field(
        primary_key=True,
        max_length=20,
        description="Unique referral code (e.g., XY7G4D)",
    )
    owner_user_id: str = Field(
        max_length=64,
        nullable=False,
        unique=True,
        index=True,
    )
    status: str = Field(
        default=ReferralCodeStatus.ACTIVE.value,
        max_length=32,
        nullable=False,
    )
    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_active(self) -> bool:
        return self.status.lower() == ReferralCodeStatus.ACTIVE.value
