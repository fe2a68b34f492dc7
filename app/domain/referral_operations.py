"""Domain operations for referral records."""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.base import utcnow
from app.models.referral import REDEEMED_STATUSES, Referral, ReferralStatus
from app.models.referral_code import ReferralCode


class ReferralOperations(BaseOperations[Referral]):
    """Reads and guarded writes for referral records.

    Status changes go through compare-and-set updates: the UPDATE only
    applies if the row still holds the status the caller read, so two
    concurrent writers can never move a record backwards.
    """

    def __init__(self) -> None:
        super().__init__(Referral)

    async def get_latest_for_code(
        self,
        db: AsyncSession,
        code: str,
    ) -> Referral | None:
        """Most recently invited record for a code, whatever its status."""
        statement = (
            select(Referral)
            .where(Referral.code == code)  # type: ignore[arg-type]
            .order_by(Referral.invited_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_open_for_code(
        self,
        db: AsyncSession,
        code: str,
    ) -> Referral | None:
        """
        Most recently invited record that a redemption can still claim.

        Excludes completed records and records already claimed by a referee.
        """
        statement = (
            select(Referral)
            .where(
                Referral.code == code,  # type: ignore[arg-type]
                Referral.status != ReferralStatus.COMPLETE.value,  # type: ignore[arg-type]
                Referral.status != ReferralStatus.REJECTED.value,  # type: ignore[arg-type]
                Referral.referee_user_id.is_(None),  # type: ignore[union-attr]
            )
            .order_by(Referral.invited_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def has_redeemed(
        self,
        db: AsyncSession,
        code: str,
        referee_user_id: str,
    ) -> bool:
        """Whether this referee already redeemed this code."""
        statement = (
            select(func.count())
            .select_from(Referral)
            .where(
                Referral.code == code,  # type: ignore[arg-type]
                Referral.referee_user_id == referee_user_id,  # type: ignore[arg-type]
                Referral.status.in_([s.value for s in REDEEMED_STATUSES]),  # type: ignore[attr-defined]
            )
        )
        result = await db.execute(statement)
        return bool(result.scalar())

    async def create_record(
        self,
        db: AsyncSession,
        referral_code: ReferralCode,
        status: ReferralStatus = ReferralStatus.INVITED,
        channel: str | None = None,
        referee_user_id: str | None = None,
        invited_at: datetime | None = None,
        registered_at: datetime | None = None,
    ) -> Referral:
        """Open a new invitation cycle for a code, owned by the code's user."""
        return await self.create(
            db,
            {
                "referrer_id": referral_code.owner_user_id,
                "code": referral_code.code,
                "status": status.value,
                "channel": channel,
                "referee_user_id": referee_user_id,
                "invited_at": invited_at or utcnow(),
                "registered_at": registered_at,
            },
        )

    async def compare_and_set_status(
        self,
        db: AsyncSession,
        record: Referral,
        expected: str,
        new: ReferralStatus,
    ) -> bool:
        """
        Move a record from `expected` to `new`.

        Returns False when the row no longer holds `expected` (another
        writer got there first); nothing is written in that case.
        """
        statement = (
            update(Referral)
            .where(
                Referral.id == record.id,  # type: ignore[arg-type]
                Referral.status == expected,  # type: ignore[arg-type]
            )
            .values(status=new.value)
        )
        result = await db.execute(statement)
        return result.rowcount == 1

    async def claim_for_referee(
        self,
        db: AsyncSession,
        record: Referral,
        expected: str,
        referee_user_id: str,
        status: ReferralStatus,
        registered_at: datetime,
    ) -> bool:
        """
        Attach a referee to an unclaimed record and set its redemption status.

        Applies only if the record is still unclaimed and unchanged since it
        was read. Returns False if a concurrent redemption or event won.
        """
        statement = (
            update(Referral)
            .where(
                Referral.id == record.id,  # type: ignore[arg-type]
                Referral.status == expected,  # type: ignore[arg-type]
                Referral.referee_user_id.is_(None),  # type: ignore[union-attr]
            )
            .values(
                referee_user_id=referee_user_id,
                registered_at=registered_at,
                status=status.value,
            )
        )
        result = await db.execute(statement)
        return result.rowcount == 1

    async def list_for_referrer(
        self,
        db: AsyncSession,
        referrer_id: str,
        skip: int = 0,
        limit: int = 20,
        status: str | None = None,
    ) -> list[Referral]:
        """A referrer's records, newest invitation first."""
        statement = (
            select(Referral)
            .where(*self._referrer_filter(referrer_id, status))
            .order_by(Referral.invited_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def count_for_referrer(
        self,
        db: AsyncSession,
        referrer_id: str,
        status: str | None = None,
    ) -> int:
        """Count a referrer's records, optionally for one status (case-insensitive)."""
        statement = (
            select(func.count())
            .select_from(Referral)
            .where(*self._referrer_filter(referrer_id, status))
        )
        result = await db.execute(statement)
        count = result.scalar()
        return int(count) if count else 0

    @staticmethod
    def _referrer_filter(referrer_id: str, status: str | None) -> list:
        conditions = [Referral.referrer_id == referrer_id]
        if status:
            conditions.append(func.lower(Referral.status) == status.strip().lower())
        return conditions


# Singleton instance
referral_ops = ReferralOperations()
