from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field, SQLModel

from app.models.base import new_id, utcnow


class ShareChannel(str, Enum):
    """Channels a referral link or share message can be generated for."""

    SMS = "sms"
    EMAIL = "email"
    GENERIC = "generic"


class ReferralLink(SQLModel, table=True):
    """A generated referral link, kept for reuse and vendor attribution."""

    __tablename__ = "referral_links"
    __table_args__ = (Index("ix_referral_links_code_channel", "code", "channel"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    code: str = Field(max_length=20, nullable=False, foreign_key="referral_codes.code")
    url: str = Field(nullable=False)
    channel: str | None = Field(default=None, max_length=32)
    vendor_id: str | None = Field(default=None, max_length=64)
    link_metadata: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    expires_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None,
        sa_type=DateTime(timezone=True),
    )
    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
