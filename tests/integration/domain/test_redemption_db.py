"""DB integration tests for the redemption protocol."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ForbiddenError
from app.domain.referral_operations import referral_ops
from app.models.base import utcnow
from app.models.lifecycle_event import EventSource
from app.models.referral import Referral, ReferralStatus
from app.models.referral_session import ReferralSession
from app.services.referral_lifecycle import lifecycle_engine

from tests.helpers.db import count_events, count_records, record_statuses

REFEREE = "usr_referee_001"
OTHER_REFEREE = "usr_referee_002"
DEVICE = "ios-4A7B8C9D-E2F3"


async def _referee_records(db: AsyncSession, code: str) -> dict[str | None, str]:
    result = await db.execute(
        select(Referral.referee_user_id, Referral.status).where(
            Referral.code == code  # type: ignore[arg-type]
        )
    )
    return {referee: status for referee, status in result.all()}


class TestRedeemWithoutSession:
    async def test_registers_and_is_not_eligible(self, db_session: AsyncSession, referral_code):
        result = await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        assert result.status == ReferralStatus.REGISTERED
        assert result.reward_eligible is False
        assert await _referee_records(db_session, referral_code.code) == {REFEREE: "registered"}

    async def test_claims_latest_open_record(self, db_session: AsyncSession, demo_referrer):
        await lifecycle_engine.ingest_event(db_session, "install", demo_referrer.code, "e1")

        await lifecycle_engine.redeem(db_session, None, demo_referrer.code, REFEREE)

        records = await _referee_records(db_session, demo_referrer.code)
        assert records[REFEREE] == "registered"
        # No new record: the installed one was claimed
        assert await count_records(db_session, demo_referrer.code) == 3

    async def test_sets_registered_at(self, db_session: AsyncSession, referral_code):
        await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        result = await db_session.execute(
            select(Referral.registered_at).where(
                Referral.referee_user_id == REFEREE  # type: ignore[arg-type]
            )
        )
        assert result.scalar_one() is not None


class TestRedeemWithSession:
    async def test_completes_and_is_eligible(self, db_session: AsyncSession, referral_code):
        await lifecycle_engine.create_session(db_session, referral_code.code, DEVICE)

        result = await lifecycle_engine.redeem(
            db_session, "usr_backend", referral_code.code, REFEREE
        )

        assert result.status == ReferralStatus.COMPLETE
        assert result.reward_eligible is True
        assert await _referee_records(db_session, referral_code.code) == {REFEREE: "complete"}

    async def test_expired_session_does_not_complete(
        self, db_session: AsyncSession, referral_code
    ):
        now = utcnow()
        db_session.add(
            ReferralSession(
                code=referral_code.code,
                device_id=DEVICE,
                created_at=now - timedelta(hours=3),
                expires_at=now - timedelta(hours=1),
            )
        )
        await db_session.commit()

        result = await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        assert result.status == ReferralStatus.REGISTERED
        assert result.reward_eligible is False


class TestRedeemGuards:
    async def test_self_referral_forbidden_without_mutation(
        self, db_session: AsyncSession, demo_referrer
    ):
        before = await record_statuses(db_session, demo_referrer.code)

        with pytest.raises(ForbiddenError):
            await lifecycle_engine.redeem(
                db_session, None, demo_referrer.code, demo_referrer.owner_user_id
            )

        assert await record_statuses(db_session, demo_referrer.code) == before
        assert await count_events(db_session, code=demo_referrer.code) == 0

    async def test_duplicate_redemption_conflicts_second_referee_succeeds(
        self, db_session: AsyncSession, referral_code
    ):
        await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        with pytest.raises(ConflictError):
            await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        result = await lifecycle_engine.redeem(db_session, None, referral_code.code, OTHER_REFEREE)

        assert result.status == ReferralStatus.REGISTERED
        assert await _referee_records(db_session, referral_code.code) == {
            REFEREE: "registered",
            OTHER_REFEREE: "registered",
        }

    async def test_second_referee_does_not_overwrite_first(
        self, db_session: AsyncSession, referral_code
    ):
        await lifecycle_engine.create_session(db_session, referral_code.code, DEVICE)
        await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)
        await lifecycle_engine.redeem(db_session, None, referral_code.code, OTHER_REFEREE)

        assert await _referee_records(db_session, referral_code.code) == {
            REFEREE: "complete",
            OTHER_REFEREE: "complete",
        }

    async def test_unknown_code_is_not_eligible(self, db_session: AsyncSession):
        result = await lifecycle_engine.redeem(db_session, None, "NOSUCH9", REFEREE)

        assert result.status == ReferralStatus.COMPLETE
        assert result.reward_eligible is False
        assert await count_events(db_session) == 0

    async def test_rejected_record_is_not_claimed(self, db_session: AsyncSession, referral_code):
        record = await referral_ops.create_record(db_session, referral_code)
        await referral_ops.update(db_session, record, {"status": "rejected"})
        await db_session.commit()

        await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        records = await _referee_records(db_session, referral_code.code)
        assert records == {None: "rejected", REFEREE: "registered"}


class TestRedemptionMarker:
    async def test_marker_written_once_per_code(self, db_session: AsyncSession, referral_code):
        await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)
        await lifecycle_engine.redeem(db_session, None, referral_code.code, OTHER_REFEREE)

        assert (
            await count_events(
                db_session,
                code=referral_code.code,
                event_type="redeemed",
                source=EventSource.REDEMPTION.value,
            )
            == 1
        )

    async def test_vendor_redeemed_event_counts_as_marker(
        self, db_session: AsyncSession, referral_code
    ):
        await lifecycle_engine.ingest_event(db_session, "redeemed", referral_code.code, "ev-r")

        await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        assert await count_events(db_session, code=referral_code.code, event_type="redeemed") == 1

    async def test_redeem_never_lowers_status(self, db_session: AsyncSession, referral_code):
        await lifecycle_engine.ingest_event(db_session, "redeemed", referral_code.code, "ev-r")

        result = await lifecycle_engine.redeem(db_session, None, referral_code.code, REFEREE)

        assert result.reward_eligible is False
        assert await _referee_records(db_session, referral_code.code) == {REFEREE: "redeemed"}
