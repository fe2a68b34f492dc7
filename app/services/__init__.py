# Services package

from app.services.message_templates import ShareMessage, render_share_message
from app.services.referral_lifecycle import ReferralLifecycleEngine, lifecycle_engine

__all__ = [
    # Lifecycle engine
    "ReferralLifecycleEngine",
    "lifecycle_engine",
    # Share messages
    "ShareMessage",
    "render_share_message",
]
