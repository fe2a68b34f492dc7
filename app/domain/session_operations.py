"""Domain operations for referral verification sessions."""

from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.referral_session import ReferralSession, SessionStatus


class SessionOperations(BaseOperations[ReferralSession]):
    """Issue and look up short-lived device sessions."""

    def __init__(self) -> None:
        super().__init__(ReferralSession, pk_field="session_id")

    async def get_live(
        self,
        db: AsyncSession,
        code: str,
        device_id: str,
        now: datetime,
    ) -> ReferralSession | None:
        """The live session for a (code, device) pair, if any."""
        statement = select(ReferralSession).where(
            ReferralSession.code == code,  # type: ignore[arg-type]
            ReferralSession.device_id == device_id,  # type: ignore[arg-type]
            ReferralSession.status == SessionStatus.VERIFIED.value,  # type: ignore[arg-type]
            ReferralSession.expires_at > now,  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def has_live_for_code(
        self,
        db: AsyncSession,
        code: str,
        now: datetime,
    ) -> bool:
        """Whether any device holds a live session for the code."""
        statement = (
            select(func.count())
            .select_from(ReferralSession)
            .where(
                ReferralSession.code == code,  # type: ignore[arg-type]
                ReferralSession.status == SessionStatus.VERIFIED.value,  # type: ignore[arg-type]
                ReferralSession.expires_at > now,  # type: ignore[arg-type]
            )
        )
        result = await db.execute(statement)
        return bool(result.scalar())

    async def expire_stale(
        self,
        db: AsyncSession,
        now: datetime,
        code: str | None = None,
        device_id: str | None = None,
    ) -> int:
        """
        Mark verified sessions past their expiry as expired.

        Scoped to one (code, device) pair when issuing, or global when run by
        the scheduled sweep. Returns the number of sessions expired.
        """
        conditions = [
            ReferralSession.status == SessionStatus.VERIFIED.value,
            ReferralSession.expires_at <= now,
        ]
        if code is not None:
            conditions.append(ReferralSession.code == code)
        if device_id is not None:
            conditions.append(ReferralSession.device_id == device_id)

        statement = (
            update(ReferralSession)
            .where(*conditions)
            .values(status=SessionStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(statement)
        return int(result.rowcount or 0)

    async def issue(
        self,
        db: AsyncSession,
        code: str,
        device_id: str,
        now: datetime,
        ttl: timedelta,
    ) -> ReferralSession:
        """Create a new verified session valid for `ttl`."""
        return await self.create(
            db,
            {
                "code": code,
                "device_id": device_id,
                "status": SessionStatus.VERIFIED.value,
                "created_at": now,
                "expires_at": now + ttl,
            },
        )


# Singleton instance
session_ops = SessionOperations()
