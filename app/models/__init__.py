from app.models.lifecycle_event import EventSource, EventType, LifecycleEvent
from app.models.referral import (
    REDEEMED_STATUSES,
    STATUS_ORDER,
    Referral,
    ReferralStatus,
)
from app.models.referral_code import ReferralCode, ReferralCodeStatus
from app.models.referral_link import ReferralLink, ShareChannel
from app.models.referral_session import ReferralSession, SessionStatus

__all__ = [
    "ReferralCode",
    "ReferralCodeStatus",
    "Referral",
    "ReferralStatus",
    "STATUS_ORDER",
    "REDEEMED_STATUSES",
    "LifecycleEvent",
    "EventType",
    "EventSource",
    "ReferralSession",
    "SessionStatus",
    "ReferralLink",
    "ShareChannel",
]
