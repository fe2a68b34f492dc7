from app.domain.event_operations import event_ledger_ops
from app.domain.link_operations import link_ops
from app.domain.referral_code_operations import referral_code_ops
from app.domain.referral_operations import referral_ops
from app.domain.session_operations import session_ops

__all__ = [
    "event_ledger_ops",
    "link_ops",
    "referral_code_ops",
    "referral_ops",
    "session_ops",
]
