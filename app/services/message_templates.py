"""Share message templates per channel."""

from dataclasses import dataclass

from app.models.referral_link import ShareChannel

LINK_PLACEHOLDER = "[REFERRAL_LINK]"

EMAIL_SUBJECT = "You're invited to try the Carton Caps app!"

EMAIL_BODY = (
    "Hey!\n\n"
    "Join me in earning cash for our school by using the Carton Caps app. "
    "It's an easy way to make a difference. All you have to do is buy Carton Caps "
    "participating products (like Cheerios!) and scan your grocery receipt. "
    "Carton Caps are worth $.10 each and they add up fast! "
    "Twice a year, our school receives a check to help pay for whatever we need - "
    "equipment, supplies or experiences the kids love!\n\n"
    f"Download the Carton Caps app here: {LINK_PLACEHOLDER}\n"
)

SMS_BODY = (
    "Hi! Join me in earning money for our school using the Carton Caps app. "
    "It's an easy way to make a difference. "
    f"Use the link below to download the Carton Caps app: {LINK_PLACEHOLDER}"
)


@dataclass
class ShareMessage:
    subject: str | None
    message: str
    link: str


def render_share_message(channel: str, link: str) -> ShareMessage:
    """Email gets a subject and the long body; every other channel gets the SMS body."""
    if channel == ShareChannel.EMAIL.value:
        return ShareMessage(
            subject=EMAIL_SUBJECT,
            message=EMAIL_BODY.replace(LINK_PLACEHOLDER, link),
            link=link,
        )
    return ShareMessage(
        subject=None,
        message=SMS_BODY.replace(LINK_PLACEHOLDER, link),
        link=link,
    )
