"""Domain operations for generated referral links."""

import uuid as uuid_pkg
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.referral_link import ReferralLink


class LinkOperations(BaseOperations[ReferralLink]):
    """Persist generated links so share messages can reuse them."""

    def __init__(self) -> None:
        super().__init__(ReferralLink)

    async def get_reusable(
        self,
        db: AsyncSession,
        code: str,
        channel: str,
        now: datetime,
    ) -> ReferralLink | None:
        """Most recent non-expired link for a code and channel."""
        statement = (
            select(ReferralLink)
            .where(
                ReferralLink.code == code,  # type: ignore[arg-type]
                ReferralLink.channel == channel,  # type: ignore[arg-type]
                or_(
                    ReferralLink.expires_at.is_(None),  # type: ignore[union-attr]
                    ReferralLink.expires_at > now,  # type: ignore[operator]
                ),
            )
            .order_by(ReferralLink.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def create_link(
        self,
        db: AsyncSession,
        code: str,
        channel: str,
        base_url: str,
        metadata: dict[str, Any],
        now: datetime,
        ttl: timedelta,
    ) -> ReferralLink:
        """
        Generate and store a new link: {base_url}/{link_id}?ref={code}.

        The link id is opaque and doubles as the row id.
        """
        link_id = uuid_pkg.uuid4().hex
        return await self.create(
            db,
            {
                "id": link_id,
                "code": code,
                "url": f"{base_url.rstrip('/')}/{link_id}?ref={code}",
                "channel": channel,
                "vendor_id": uuid_pkg.uuid4().hex,
                "link_metadata": metadata,
                "expires_at": now + ttl,
                "created_at": now,
            },
        )


# Singleton instance
link_ops = LinkOperations()
