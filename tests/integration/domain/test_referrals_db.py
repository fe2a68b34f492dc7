"""DB integration tests for the referrer-facing operations: listing, sharing, links and codes."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenError, NotFoundError
from app.models.base import utcnow
from app.models.referral_link import ReferralLink
from app.services.message_templates import EMAIL_SUBJECT
from app.services.referral_lifecycle import lifecycle_engine

from tests.helpers.db import record_statuses

REFERRER = "usr_referrer_001"


class TestGetReferrals:
    async def test_demo_summary(self, db_session: AsyncSession, demo_referrer):  # noqa: ARG002
        page = await lifecycle_engine.get_referrals(db_session, REFERRER)

        assert page.referral_code == "XY7G4D"
        assert (page.summary.total, page.summary.complete, page.summary.pending) == (3, 2, 1)
        # Newest invitation first
        assert [item.status for item in page.items] == ["invited", "complete", "complete"]
        assert [item.channel for item in page.items] == ["generic", "email", "sms"]
        assert [item.name for item in page.items] == ["Friend 1", "Friend 2", "Friend 3"]

    async def test_status_filter_is_case_insensitive(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        page = await lifecycle_engine.get_referrals(db_session, REFERRER, status="COMPLETE")

        assert (page.summary.total, page.summary.complete, page.summary.pending) == (2, 2, 0)
        assert {item.status for item in page.items} == {"complete"}

    async def test_filtered_summary_never_negative(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        page = await lifecycle_engine.get_referrals(db_session, REFERRER, status="invited")

        assert (page.summary.total, page.summary.complete, page.summary.pending) == (1, 0, 1)

    async def test_pagination(self, db_session: AsyncSession, demo_referrer):  # noqa: ARG002
        page = await lifecycle_engine.get_referrals(db_session, REFERRER, page=2, size=2)

        assert page.summary.total == 3
        assert len(page.items) == 1
        assert page.items[0].name == "Friend 3"

    async def test_invalid_paging_is_clamped(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        page = await lifecycle_engine.get_referrals(db_session, REFERRER, page=0, size=0)

        assert len(page.items) == 1

    async def test_referee_id_used_as_name(self, db_session: AsyncSession, demo_referrer):
        await lifecycle_engine.redeem(db_session, None, demo_referrer.code, "usr_referee_001")

        page = await lifecycle_engine.get_referrals(db_session, REFERRER)

        assert page.items[0].name == "usr_referee_001"
        assert page.items[0].registered_at is not None

    async def test_user_without_code(self, db_session: AsyncSession):
        page = await lifecycle_engine.get_referrals(db_session, "usr_nobody")

        assert page.referral_code == ""
        assert (page.summary.total, page.summary.complete, page.summary.pending) == (0, 0, 0)
        assert page.items == []


class TestRecordShare:
    async def test_opens_new_invitation(self, db_session: AsyncSession, demo_referrer):
        record = await lifecycle_engine.record_share(
            db_session, REFERRER, "instagram", "https://cartoncaps.link/abc?ref=XY7G4D"
        )

        assert record is not None
        assert record.channel == "instagram"
        statuses = await record_statuses(db_session, demo_referrer.code)
        assert statuses[0] == "invited"
        assert len(statuses) == 4

    async def test_new_invitation_receives_next_events(
        self, db_session: AsyncSession, demo_referrer
    ):
        await lifecycle_engine.ingest_event(db_session, "open", demo_referrer.code, "e1")
        await lifecycle_engine.record_share(db_session, REFERRER, "sms", "https://x.test/l")
        await lifecycle_engine.ingest_event(db_session, "click", demo_referrer.code, "e2")

        statuses = await record_statuses(db_session, demo_referrer.code)
        assert statuses[:2] == ["clicked", "open"]

    async def test_ignored_without_code(self, db_session: AsyncSession):
        assert await lifecycle_engine.record_share(db_session, "usr_nobody", "sms", "x") is None


class TestGenerateLink:
    async def test_link_format_and_metadata(self, db_session: AsyncSession, demo_referrer):
        before = utcnow()
        link = await lifecycle_engine.generate_link(db_session, REFERRER, "email")

        assert link.referral_link.startswith("https://cartoncaps.link/")
        assert link.referral_link.endswith(f"?ref={demo_referrer.code}")
        assert link.metadata == {"channel": "email", "campaignId": "fall-2024"}
        assert before + timedelta(days=7) <= link.expires_at <= utcnow() + timedelta(days=7)

    async def test_each_call_mints_new_link(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        first = await lifecycle_engine.generate_link(db_session, REFERRER, "sms")
        second = await lifecycle_engine.generate_link(db_session, REFERRER, "sms")

        assert first.referral_link != second.referral_link

    async def test_creates_code_on_first_use(self, db_session: AsyncSession):
        link = await lifecycle_engine.generate_link(db_session, "usr_new_user", "generic")

        code = await lifecycle_engine.ensure_code(db_session, "usr_new_user")
        assert link.referral_link.endswith(f"?ref={code.code}")


class TestShareMessage:
    async def test_email_message_has_subject(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        message = await lifecycle_engine.get_share_message(db_session, REFERRER, "email")

        assert message.subject == EMAIL_SUBJECT
        assert message.link in message.message

    async def test_sms_message_has_no_subject(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        message = await lifecycle_engine.get_share_message(db_session, REFERRER, "sms", "es")

        assert message.subject is None
        assert message.link in message.message

    async def test_reuses_live_link_per_channel(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        link = await lifecycle_engine.generate_link(db_session, REFERRER, "sms")

        first = await lifecycle_engine.get_share_message(db_session, REFERRER, "sms")
        second = await lifecycle_engine.get_share_message(db_session, REFERRER, "sms")
        email = await lifecycle_engine.get_share_message(db_session, REFERRER, "email")

        assert first.link == second.link == link.referral_link
        assert email.link != link.referral_link

    async def test_expired_link_is_replaced(
        self, db_session: AsyncSession, demo_referrer  # noqa: ARG002
    ):
        link = await lifecycle_engine.generate_link(db_session, REFERRER, "sms")
        await db_session.execute(
            update(ReferralLink).values(expires_at=utcnow() - timedelta(minutes=1))
        )
        await db_session.commit()

        message = await lifecycle_engine.get_share_message(db_session, REFERRER, "sms")

        assert message.link != link.referral_link


class TestCodeRegistry:
    async def test_ensure_code_is_idempotent(self, db_session: AsyncSession):
        first = await lifecycle_engine.ensure_code(db_session, "usr_repeat")
        second = await lifecycle_engine.ensure_code(db_session, "usr_repeat")

        assert first.code == second.code
        assert len(first.code) == 6

    async def test_deactivate_requires_ownership(self, db_session: AsyncSession, demo_referrer):
        with pytest.raises(ForbiddenError):
            await lifecycle_engine.deactivate_code(db_session, "usr_intruder", demo_referrer.code)

    async def test_deactivate_unknown_code(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await lifecycle_engine.deactivate_code(db_session, REFERRER, "NOSUCH9")

    async def test_deactivate_marks_inactive(self, db_session: AsyncSession, demo_referrer):
        code = await lifecycle_engine.deactivate_code(db_session, REFERRER, "xy7g4d")

        assert code.status == "inactive"
        assert code.code == demo_referrer.code
