"""Demo data for local development (loaded on startup when DEBUG is set)."""

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.referral import Referral, ReferralStatus
from app.models.referral_code import ReferralCode, ReferralCodeStatus

logger = logging.getLogger(__name__)

DEMO_REFERRER_ID = "usr_referrer_001"
DEMO_CODE = "XY7G4D"


async def seed_demo_data(db: AsyncSession) -> bool:
    """
    Seed one referrer with a code and three referrals.

    Two completed (sms, email) and one open invitation (generic). Does nothing
    when any referral code already exists. Returns True if data was written.
    """
    existing = await db.execute(select(func.count()).select_from(ReferralCode))
    if existing.scalar_one() > 0:
        return False

    now = utcnow()
    db.add(
        ReferralCode(
            code=DEMO_CODE,
            owner_user_id=DEMO_REFERRER_ID,
            status=ReferralCodeStatus.ACTIVE.value,
            created_at=now - timedelta(days=30),
        )
    )
    # Flush the code first so the referrals' foreign key resolves
    await db.flush()

    for channel, days_ago in (("sms", 20), ("email", 15)):
        registered_at = now - timedelta(days=days_ago)
        db.add(
            Referral(
                referrer_id=DEMO_REFERRER_ID,
                code=DEMO_CODE,
                status=ReferralStatus.COMPLETE.value,
                channel=channel,
                invited_at=registered_at - timedelta(days=1),
                registered_at=registered_at,
            )
        )
    db.add(
        Referral(
            referrer_id=DEMO_REFERRER_ID,
            code=DEMO_CODE,
            status=ReferralStatus.INVITED.value,
            channel="generic",
            invited_at=now,
        )
    )

    await db.commit()
    logger.info(f"Seeded demo referral code {DEMO_CODE} for {DEMO_REFERRER_ID}")
    return True
