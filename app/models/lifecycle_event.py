from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel

from app.models.base import new_id, utcnow


class EventType(str, Enum):
    """Lifecycle event types reported by client/vendor SDKs."""

    CLICK = "click"
    INSTALL = "install"
    OPEN = "open"
    REGISTERED = "registered"
    REDEEMED = "redeemed"


class EventSource(str, Enum):
    """Where a ledger row came from."""

    SDK = "sdk"
    # The once-per-code marker appended by an explicit redemption
    REDEMPTION = "redemption"


_REDEMPTION_PREDICATE = "source = 'redemption'"


class LifecycleEvent(SQLModel, table=True):
    """
    Ledger of every ingested lifecycle event.

    Rows carrying an external_event_id are unique on it, which is what makes
    ingestion idempotent. Rows without one are recorded but never deduplicated.
    """

    __tablename__ = "referral_events"
    __table_args__ = (
        Index("ix_referral_events_code_type", "code", "event_type"),
        Index(
            "uq_referral_events_redemption_marker",
            "code",
            unique=True,
            postgresql_where=text(_REDEMPTION_PREDICATE),
            sqlite_where=text(_REDEMPTION_PREDICATE),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    event_type: str = Field(max_length=32, nullable=False)
    # Not a foreign key: events for unknown codes are still recorded
    code: str = Field(max_length=20, nullable=False)
    external_event_id: str | None = Field(
        default=None,
        max_length=64,
        unique=True,
        description="Vendor-supplied idempotency key",
    )
    device_id: str | None = Field(default=None, max_length=100)
    source: str = Field(default=EventSource.SDK.value, max_length=16, nullable=False)
    timestamp: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
