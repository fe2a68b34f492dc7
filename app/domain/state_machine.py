"""Forward-only referral status progression.

Vendor events arrive duplicated and out of order, so advancing never fails
and never moves a record backwards: a stale event simply leaves the current
status in place.
"""

from app.models.referral import STATUS_ORDER, ReferralStatus

EVENT_TARGETS: dict[str, ReferralStatus] = {
    "click": ReferralStatus.CLICKED,
    "install": ReferralStatus.INSTALLED,
    "open": ReferralStatus.OPEN,
    "registered": ReferralStatus.REGISTERED,
    "redeemed": ReferralStatus.REDEEMED,
}


def status_index(status: ReferralStatus | str | None) -> int:
    """Position of a status in the lifecycle order.

    None (no status yet) sorts below "invited". Statuses outside the order
    (e.g. "rejected") also return -1.
    """
    if status is None:
        return -1
    try:
        return STATUS_ORDER.index(ReferralStatus(status))
    except ValueError:
        return -1


def advance(current: ReferralStatus | str | None, event_type: str) -> ReferralStatus:
    """
    Compute the status after applying an event.

    - Unknown event types leave the status unchanged.
    - The mapped target wins only if it is strictly later than the current status.
    - With no current status the record starts at the mapped target
      (or "invited" for an unknown event).
    """
    target = EVENT_TARGETS.get(event_type)
    if target is None:
        return ReferralStatus(current) if current is not None else ReferralStatus.INVITED

    if current is None:
        return target

    current_status = ReferralStatus(current)
    if current_status == ReferralStatus.REJECTED:
        # Moderated records are frozen
        return current_status

    if status_index(target) > status_index(current_status):
        return target
    return current_status
