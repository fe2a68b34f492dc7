"""Domain operations for the referral code registry."""

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.referral_code import ReferralCode, ReferralCodeStatus

# No I, O, 0, 1 (confusing when read aloud or typed from a screenshot)
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6


def normalize_code(code: str) -> str:
    """Canonical form used for storage and lookups (case-insensitive match)."""
    return code.strip().upper()


def generate_referral_code(length: int = CODE_LENGTH) -> str:
    """
    Generate a random referral code, e.g. "XY7G4D".

    Uses only unambiguous uppercase letters and digits, so every code also
    satisfies the 6-20 alphanumeric format accepted by the API.
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class ReferralCodeOperations(BaseOperations[ReferralCode]):
    """Registry mapping a user to their single referral code."""

    def __init__(self) -> None:
        super().__init__(ReferralCode, pk_field="code")

    async def get_by_code(
        self,
        db: AsyncSession,
        code: str,
    ) -> ReferralCode | None:
        """Get a referral code by its code string (case-insensitive)."""
        statement = select(ReferralCode).where(
            ReferralCode.code == normalize_code(code)  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_owner(
        self,
        db: AsyncSession,
        user_id: str,
    ) -> ReferralCode | None:
        """Get the code owned by a user, if they have one."""
        statement = select(ReferralCode).where(
            ReferralCode.owner_user_id == user_id  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def ensure_code(
        self,
        db: AsyncSession,
        user_id: str,
    ) -> ReferralCode:
        """
        Return the user's code, creating one on first use.

        Two concurrent first calls race on the owner_user_id unique constraint;
        the loser gets an IntegrityError at flush and the caller re-reads.
        A code collision surfaces the same way and a retry draws a new code.
        """
        existing = await self.get_by_owner(db, user_id)
        if existing:
            return existing

        # Cheap pre-check; the primary key is the real guard against collisions
        for _ in range(5):
            code = generate_referral_code()
            if not await self.get_by_code(db, code):
                break

        return await self.create(db, {"code": code, "owner_user_id": user_id})

    async def set_status(
        self,
        db: AsyncSession,
        referral_code: ReferralCode,
        status: ReferralCodeStatus,
    ) -> ReferralCode:
        """Flip a code between active and inactive. Codes are never deleted."""
        return await self.update(db, referral_code, {"status": status.value})


# Singleton instance
referral_code_ops = ReferralCodeOperations()
