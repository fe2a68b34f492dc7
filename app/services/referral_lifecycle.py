"""Referral lifecycle engine.

Orchestrates the code registry, event ledger, referral records and sessions:

- ingest_event: idempotent per external event id, forward-only status
- redeem: self-referral and duplicate guards, session-gated completion,
  once-per-code terminal ledger entry
- create_session: one live session per (code, device)

Every public operation runs as a single transaction. Cross-request
consistency comes from database constraints and compare-and-set updates,
never from in-process locks, so any number of stateless instances can serve
traffic. When a constraint or a compare-and-set reports that a concurrent
request won, the whole operation is rolled back and re-run from the top,
re-reading state (and re-checking every guard) before deciding again.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ReferralError,
)
from app.domain.event_operations import event_ledger_ops
from app.domain.link_operations import link_ops
from app.domain.referral_code_operations import normalize_code, referral_code_ops
from app.domain.referral_operations import referral_ops
from app.domain.session_operations import session_ops
from app.domain.state_machine import advance, status_index
from app.models.base import as_utc, utcnow
from app.models.lifecycle_event import EventSource, EventType
from app.models.referral import Referral, ReferralStatus
from app.models.referral_code import ReferralCode, ReferralCodeStatus
from app.models.referral_session import ReferralSession
from app.services.message_templates import ShareMessage, render_share_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How many times an operation is re-run after losing a race before giving up
MAX_CONFLICT_ATTEMPTS = 3


class StaleRecordError(Exception):
    """A compare-and-set update found the record changed underneath it."""


# ─────────────────────────────────────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class IngestResult:
    """Outcome of ingesting one lifecycle event. Always accepted."""

    duplicate: bool = False
    referral_id: str | None = None
    status: ReferralStatus | None = None


@dataclass
class RedemptionResult:
    status: ReferralStatus
    reward_eligible: bool


@dataclass
class ReferrerSummary:
    referrer_id: str
    active_since: datetime


@dataclass
class VerifyResult:
    is_valid: bool
    referrer: ReferrerSummary | None = None
    campaign: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReferralItem:
    id: str
    name: str
    status: str
    channel: str | None
    invited_at: datetime
    registered_at: datetime | None


@dataclass
class ReferralSummary:
    total: int
    complete: int
    pending: int


@dataclass
class ReferralsPage:
    referral_code: str
    summary: ReferralSummary
    items: list[ReferralItem]


@dataclass
class GeneratedLink:
    referral_link: str
    expires_at: datetime | None
    metadata: dict[str, Any]


# ─────────────────────────────────────────────────────────────────────────────
# Engine
# ─────────────────────────────────────────────────────────────────────────────


class ReferralLifecycleEngine:
    """Single writer of referral status and of the event ledger."""

    def __init__(
        self,
        session_ttl: timedelta | None = None,
        link_ttl: timedelta | None = None,
    ) -> None:
        self.session_ttl = session_ttl or timedelta(hours=settings.session_ttl_hours)
        self.link_ttl = link_ttl or timedelta(days=settings.link_ttl_days)

    async def _run_transaction(
        self,
        db: AsyncSession,
        name: str,
        work: Callable[[], Awaitable[T]],
        idempotent: bool,
    ) -> T:
        """
        Run `work` and commit it as one unit.

        - IntegrityError / StaleRecordError: a concurrent request won a race.
          Roll back and re-run `work` from scratch, which re-reads the state
          the winner left behind.
        - OperationalError (timeouts, deadlocks, dropped connections): retried
          once, and only for idempotent operations.
        - Domain errors roll back and propagate unchanged.
        """
        transient_retries = 1 if idempotent else 0

        for attempt in range(1, MAX_CONFLICT_ATTEMPTS + 1):
            try:
                result = await work()
                await db.commit()
                return result
            except ReferralError:
                await db.rollback()
                raise
            except (IntegrityError, StaleRecordError) as e:
                await db.rollback()
                logger.info(
                    f"[lifecycle] {name}: lost a concurrent write "
                    f"(attempt {attempt}/{MAX_CONFLICT_ATTEMPTS}): {type(e).__name__}"
                )
            except OperationalError:
                await db.rollback()
                if transient_retries <= 0:
                    raise
                transient_retries -= 1
                logger.warning(f"[lifecycle] {name}: transient storage error, retrying once")

        raise ConflictError(f"{name} conflicted with concurrent requests, please retry")

    # ─────────────────────────────────────────────────────────────────────
    # Event ingestion
    # ─────────────────────────────────────────────────────────────────────

    async def ingest_event(
        self,
        db: AsyncSession,
        event_type: str,
        code: str,
        external_event_id: str | None = None,
        device_id: str | None = None,
    ) -> IngestResult:
        """
        Record a vendor/SDK lifecycle event and advance the matching referral.

        Replays of an external_event_id are accepted without any mutation.
        Unknown codes are recorded but touch no referral; unknown event types
        never advance a status.
        """
        external_id = (external_event_id or "").strip() or None
        normalized = normalize_code(code)

        async def work() -> IngestResult:
            if external_id:
                existing = await event_ledger_ops.get_by_external_id(db, external_id)
                if existing:
                    logger.info(f"[lifecycle] Duplicate event {external_id} ignored")
                    return IngestResult(duplicate=True)

            now = utcnow()
            await event_ledger_ops.record(
                db,
                event_type=event_type,
                code=normalized,
                external_event_id=external_id,
                device_id=device_id,
                timestamp=now,
            )

            referral_code = await referral_code_ops.get_by_code(db, normalized)
            if referral_code is None:
                logger.info(f"[lifecycle] Event {event_type} for unknown code {normalized} recorded")
                return IngestResult()

            record = await referral_ops.get_latest_for_code(db, referral_code.code)
            if record is None:
                record = await referral_ops.create_record(
                    db,
                    referral_code,
                    status=advance(None, event_type),
                    invited_at=now,
                )
                return IngestResult(referral_id=record.id, status=ReferralStatus(record.status))

            return await self._advance_record(db, record, event_type)

        return await self._run_transaction(db, "ingest_event", work, idempotent=True)

    async def _advance_record(
        self,
        db: AsyncSession,
        record: Referral,
        event_type: str,
    ) -> IngestResult:
        current = record.status
        target = advance(current, event_type)
        if target.value != current:
            if not await referral_ops.compare_and_set_status(db, record, current, target):
                raise StaleRecordError(record.id)
            logger.info(f"[lifecycle] Referral {record.id}: {current} -> {target.value}")
        return IngestResult(referral_id=record.id, status=target)

    # ─────────────────────────────────────────────────────────────────────
    # Redemption
    # ─────────────────────────────────────────────────────────────────────

    async def redeem(
        self,
        db: AsyncSession,
        acting_user_id: str | None,
        code: str,
        referee_user_id: str,
    ) -> RedemptionResult:
        """
        Redeem a code for a referee and decide reward eligibility.

        Guards, in order: unknown code (not eligible, no mutation), self-referral
        (ForbiddenError), repeat redemption by the same referee (ConflictError).
        A live session for the code completes the referral; otherwise it is
        left at "registered".

        Never retried on transient storage errors: a retry after a lost race
        re-runs every guard from the top.
        """
        normalized = normalize_code(code)

        async def work() -> RedemptionResult:
            referral_code = await referral_code_ops.get_by_code(db, normalized)
            if referral_code is None:
                logger.info(f"[lifecycle] Redeem for unknown code {normalized}: nothing to do")
                return RedemptionResult(status=ReferralStatus.COMPLETE, reward_eligible=False)

            if referee_user_id == referral_code.owner_user_id:
                logger.warning(f"[lifecycle] Self-referral blocked for code {referral_code.code}")
                raise ForbiddenError("Self-referral is not allowed.")

            if await referral_ops.has_redeemed(db, referral_code.code, referee_user_id):
                raise ConflictError("Referral already redeemed for this user.")

            now = utcnow()
            verified = await session_ops.has_live_for_code(db, referral_code.code, now)
            # A verified session turns redemption straight into completion
            target = ReferralStatus.COMPLETE if verified else ReferralStatus.REGISTERED

            record = await referral_ops.get_open_for_code(db, referral_code.code)
            if record is None:
                record = await referral_ops.create_record(
                    db,
                    referral_code,
                    status=target,
                    referee_user_id=referee_user_id,
                    invited_at=now,
                    registered_at=now,
                )
                final = target
            else:
                # Never move a record backwards, even when redeeming without a session
                final = target
                if status_index(record.status) > status_index(target):
                    final = ReferralStatus(record.status)
                claimed = await referral_ops.claim_for_referee(
                    db,
                    record,
                    expected=record.status,
                    referee_user_id=referee_user_id,
                    status=final,
                    registered_at=now,
                )
                if not claimed:
                    raise StaleRecordError(record.id)

            await self._append_redemption_marker(db, referral_code.code, now)

            reward_eligible = final == ReferralStatus.COMPLETE
            if reward_eligible:
                logger.info(
                    f"[lifecycle] Referral success! {referral_code.owner_user_id} earned a reward "
                    f"(referee {referee_user_id}, acting {acting_user_id})"
                )
            return RedemptionResult(
                status=ReferralStatus.COMPLETE if reward_eligible else ReferralStatus.REGISTERED,
                reward_eligible=reward_eligible,
            )

        return await self._run_transaction(db, "redeem", work, idempotent=False)

    async def _append_redemption_marker(
        self,
        db: AsyncSession,
        code: str,
        now: datetime,
    ) -> None:
        """Append the once-per-code "redeemed" ledger entry if none exists yet.

        The unique index on redemption markers turns a concurrent duplicate
        into an IntegrityError, which re-runs the redemption and finds the marker.
        """
        if await event_ledger_ops.has_event(db, code, EventType.REDEEMED.value):
            return
        await event_ledger_ops.record(
            db,
            event_type=EventType.REDEEMED.value,
            code=code,
            source=EventSource.REDEMPTION,
            timestamp=now,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Sessions & verification
    # ─────────────────────────────────────────────────────────────────────

    async def create_session(
        self,
        db: AsyncSession,
        code: str,
        device_id: str,
    ) -> ReferralSession:
        """Return the live session for (code, device), or issue a new one."""
        normalized = normalize_code(code)

        async def work() -> ReferralSession:
            now = utcnow()
            # Retire the pair's expired session so a new one can take its slot
            await session_ops.expire_stale(db, now, code=normalized, device_id=device_id)

            existing = await session_ops.get_live(db, normalized, device_id, now)
            if existing:
                return existing

            session = await session_ops.issue(db, normalized, device_id, now, self.session_ttl)
            logger.info(f"[lifecycle] Issued session {session.session_id} for {normalized}")
            return session

        return await self._run_transaction(db, "create_session", work, idempotent=True)

    async def verify_code(self, db: AsyncSession, code: str) -> VerifyResult:
        """Check a code before the app starts the referral flow.

        Raises NotFoundError for unknown codes and GoneError for retired ones.
        """
        referral_code = await referral_code_ops.get_by_code(db, code)
        if referral_code is None:
            raise NotFoundError("Referral code")
        if not referral_code.is_active:
            raise GoneError("Referral code expired or inactive")

        return VerifyResult(
            is_valid=True,
            referrer=ReferrerSummary(
                referrer_id=referral_code.owner_user_id,
                active_since=as_utc(referral_code.created_at),
            ),
            campaign={"id": settings.campaign_id},
        )

    # ─────────────────────────────────────────────────────────────────────
    # Referrer-facing reads and shares
    # ─────────────────────────────────────────────────────────────────────

    async def get_referrals(
        self,
        db: AsyncSession,
        referrer_id: str,
        page: int = 1,
        size: int = 20,
        status: str | None = None,
    ) -> ReferralsPage:
        """A referrer's code, summary counts and one page of records."""
        page = max(page, 1)
        size = max(size, 1)
        status_filter = status.strip() if status and status.strip() else None

        referral_code = await referral_code_ops.get_by_owner(db, referrer_id)
        total = await referral_ops.count_for_referrer(db, referrer_id, status_filter)
        if status_filter is None:
            complete = await referral_ops.count_for_referrer(
                db, referrer_id, ReferralStatus.COMPLETE.value
            )
        elif status_filter.lower() == ReferralStatus.COMPLETE.value:
            complete = total
        else:
            complete = 0

        offset = (page - 1) * size
        records = await referral_ops.list_for_referrer(
            db, referrer_id, skip=offset, limit=size, status=status_filter
        )
        items = [
            ReferralItem(
                id=r.id,
                name=r.referee_user_id or f"Friend {offset + i + 1}",
                status=r.status,
                channel=r.channel,
                invited_at=as_utc(r.invited_at),
                registered_at=as_utc(r.registered_at) if r.registered_at else None,
            )
            for i, r in enumerate(records)
        ]

        return ReferralsPage(
            referral_code=referral_code.code if referral_code else "",
            summary=ReferralSummary(total=total, complete=complete, pending=total - complete),
            items=items,
        )

    async def ensure_code(self, db: AsyncSession, user_id: str) -> ReferralCode:
        """The user's referral code, created on first use."""

        async def work() -> ReferralCode:
            return await referral_code_ops.ensure_code(db, user_id)

        return await self._run_transaction(db, "ensure_code", work, idempotent=True)

    async def deactivate_code(self, db: AsyncSession, user_id: str, code: str) -> ReferralCode:
        """Retire one of the user's codes. Verification of it then reports Gone."""

        async def work() -> ReferralCode:
            referral_code = await referral_code_ops.get_by_code(db, code)
            if referral_code is None:
                raise NotFoundError("Referral code")
            if referral_code.owner_user_id != user_id:
                raise ForbiddenError("Not your referral code")

            return await referral_code_ops.set_status(
                db, referral_code, ReferralCodeStatus.INACTIVE
            )

        referral_code = await self._run_transaction(db, "deactivate_code", work, idempotent=True)
        logger.info(f"[lifecycle] Code {referral_code.code} deactivated for {user_id}")
        return referral_code

    async def generate_link(
        self,
        db: AsyncSession,
        user_id: str,
        channel: str,
    ) -> GeneratedLink:
        """Generate a new tracked link for the user's code on a channel."""

        async def work() -> GeneratedLink:
            referral_code = await referral_code_ops.ensure_code(db, user_id)
            link = await link_ops.create_link(
                db,
                code=referral_code.code,
                channel=channel,
                base_url=settings.link_base_url,
                metadata={"channel": channel, "campaignId": settings.campaign_id},
                now=utcnow(),
                ttl=self.link_ttl,
            )
            return GeneratedLink(
                referral_link=link.url,
                expires_at=as_utc(link.expires_at) if link.expires_at else None,
                metadata=dict(link.link_metadata or {}),
            )

        return await self._run_transaction(db, "generate_link", work, idempotent=False)

    async def get_share_message(
        self,
        db: AsyncSession,
        user_id: str,
        channel: str,
        locale: str | None = None,
    ) -> ShareMessage:
        """Compose a share message, reusing a live link for the channel when possible."""
        referral_code = await referral_code_ops.get_by_owner(db, user_id)
        existing = None
        if referral_code is not None:
            existing = await link_ops.get_reusable(db, referral_code.code, channel, utcnow())

        if existing is not None:
            url = existing.url
        else:
            url = (await self.generate_link(db, user_id, channel)).referral_link

        if locale and locale.lower() not in ("en", "en-us"):
            logger.debug(f"[lifecycle] No {locale} templates, using English")
        return render_share_message(channel, url)

    async def record_share(
        self,
        db: AsyncSession,
        user_id: str,
        channel: str,
        link: str,
        device_id: str | None = None,
    ) -> Referral | None:
        """Open a new invitation cycle when the user shares their link.

        Users without a code have nothing to track; the share is ignored.
        """

        async def work() -> Referral | None:
            referral_code = await referral_code_ops.get_by_owner(db, user_id)
            if referral_code is None:
                return None
            return await referral_ops.create_record(
                db,
                referral_code,
                status=ReferralStatus.INVITED,
                channel=channel,
            )

        record = await self._run_transaction(db, "record_share", work, idempotent=False)
        if record is None:
            logger.info(f"[lifecycle] Share from {user_id} without a referral code ignored")
            return None

        logger.info(
            f"[lifecycle] Share recorded for {record.code} via {channel} "
            f"(device {device_id or 'unknown'}, link {link})"
        )
        return record


# Singleton instance
lifecycle_engine = ReferralLifecycleEngine()
