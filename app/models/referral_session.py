import uuid as uuid_pkg
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class SessionStatus(str, Enum):
    VERIFIED = "verified"
    EXPIRED = "expired"


def new_session_id() -> str:
    return f"ses-{uuid_pkg.uuid4().hex}"


class ReferralSession(SQLModel, table=True):
    """
    Short-lived proof that a device verified a code through the app flow.

    Only one verified session may exist per (code, device); expired ones are
    flipped to "expired" before a new one is issued, so history is unbounded.
    """

    __tablename__ = "referral_sessions"
    __table_args__ = (
        Index(
            "uq_referral_sessions_code_device_verified",
            "code",
            "device_id",
            unique=True,
            postgresql_where=text("status = 'verified'"),
            sqlite_where=text("status = 'verified'"),
        ),
        Index("ix_referral_sessions_code_expires", "code", "expires_at"),
    )

    session_id: str = Field(default_factory=new_session_id, primary_key=True, max_length=64)
    code: str = Field(max_length=20, nullable=False)
    device_id: str = Field(max_length=100, nullable=False)
    status: str = Field(default=SessionStatus.VERIFIED.value, max_length=32, nullable=False)
    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
    expires_at: datetime = Field(  # type: ignore[call-overload]
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
