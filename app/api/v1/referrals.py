"""Referral API endpoints: referrer dashboard, sharing, vendor callbacks and redemption."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from app.api.deps import CurrentPrincipal, DbSession, OptionalPrincipal
from app.core.rate_limit import LINK_LIMIT, SHARE_LIMIT, rate_limiter
from app.models.base import as_utc
from app.models.lifecycle_event import EventType
from app.models.referral_link import ShareChannel
from app.services.referral_lifecycle import lifecycle_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])

CODE_PATTERN = r"^[A-Za-z0-9]+$"


# ─────────────────────────────────────────────────────────────────────────────
# Request/Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


class ReferralItemResponse(BaseModel):
    id: str
    name: str
    status: str
    channel: str | None = None
    invited_at: datetime
    registered_at: datetime | None = None

    class Config:
        from_attributes = True


class ReferralSummaryResponse(BaseModel):
    total: int
    complete: int
    pending: int

    class Config:
        from_attributes = True


class ReferralsResponse(BaseModel):
    """A referrer's code, summary counts and one page of referrals."""

    referral_code: str
    summary: ReferralSummaryResponse
    items: list[ReferralItemResponse]

    class Config:
        from_attributes = True


class GenerateLinkRequest(BaseModel):
    channel: ShareChannel


class GenerateLinkResponse(BaseModel):
    referral_link: str
    expires_at: datetime | None = None
    metadata: dict[str, Any] = {}

    class Config:
        from_attributes = True


class ShareMessageRequest(BaseModel):
    channel: ShareChannel
    locale: str | None = Field(default=None, max_length=16)


class ShareMessageResponse(BaseModel):
    subject: str | None = None
    message: str
    link: str

    class Config:
        from_attributes = True


class ShareEventRequest(BaseModel):
    """A user shared their link (any channel, including third-party apps)."""

    channel: str = Field(min_length=1, max_length=32)
    link: str = Field(min_length=1, max_length=2048)
    device_id: str | None = Field(default=None, min_length=3, max_length=100)


class LifecycleEventRequest(BaseModel):
    """Vendor/SDK lifecycle callback."""

    event_type: EventType
    referral_code: str = Field(min_length=6, max_length=20, pattern=CODE_PATTERN)
    event_id: str | None = Field(default=None, max_length=64)
    device_id: str | None = Field(default=None, max_length=100)


class VerifyReferralRequest(BaseModel):
    referral_code: str = Field(min_length=6, max_length=20, pattern=CODE_PATTERN)
    device_id: str = Field(min_length=3, max_length=100)


class ReferrerSummaryResponse(BaseModel):
    referrer_id: str
    active_since: datetime

    class Config:
        from_attributes = True


class VerifyReferralResponse(BaseModel):
    is_valid: bool
    referrer: ReferrerSummaryResponse | None = None
    campaign: dict[str, Any] = {}

    class Config:
        from_attributes = True


class CreateSessionRequest(BaseModel):
    referral_code: str = Field(min_length=6, max_length=20, pattern=CODE_PATTERN)
    device_id: str = Field(min_length=3, max_length=100)


class CreateSessionResponse(BaseModel):
    session_id: str
    referral_code: str
    expires_at: datetime


class RedeemReferralRequest(BaseModel):
    referral_code: str = Field(min_length=6, max_length=20, pattern=CODE_PATTERN)
    referee_user_id: str = Field(min_length=5, max_length=50)


class RedeemReferralResponse(BaseModel):
    status: str
    reward_eligible: bool


class ReferralCodeResponse(BaseModel):
    code: str
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


# ─────────────────────────────────────────────────────────────────────────────
# Referrer Endpoints (principal required)
# ─────────────────────────────────────────────────────────────────────────────


@router.get("", response_model=ReferralsResponse)
async def get_referrals(
    db: DbSession,
    principal: CurrentPrincipal,
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    status_filter: str | None = Query(default=None, alias="status", max_length=32),
) -> ReferralsResponse:
    """
    Get the caller's referral code, summary and referrals.

    Newest invitations first; `status` filters case-insensitively.
    """
    result = await lifecycle_engine.get_referrals(
        db, principal.user_id, page=page, size=size, status=status_filter
    )
    return ReferralsResponse.model_validate(result)


@router.post(
    "/link", response_model=GenerateLinkResponse, status_code=status.HTTP_201_CREATED
)
async def generate_link(
    request: GenerateLinkRequest,
    db: DbSession,
    principal: CurrentPrincipal,
) -> GenerateLinkResponse:
    """Generate a tracked referral link for a share channel."""
    rate_limiter.check_rate_limit(principal.user_id, "link", LINK_LIMIT)

    link = await lifecycle_engine.generate_link(db, principal.user_id, request.channel.value)
    return GenerateLinkResponse.model_validate(link)


@router.post("/share-message", response_model=ShareMessageResponse)
async def get_share_message(
    request: ShareMessageRequest,
    db: DbSession,
    principal: CurrentPrincipal,
) -> ShareMessageResponse:
    """
    Compose the message the app pre-fills in the share sheet.

    Email messages carry a subject; other channels get a body only.
    """
    message = await lifecycle_engine.get_share_message(
        db, principal.user_id, request.channel.value, request.locale
    )
    return ShareMessageResponse.model_validate(message)


@router.post("/share", status_code=status.HTTP_202_ACCEPTED)
async def record_share(
    request: ShareEventRequest,
    db: DbSession,
    principal: CurrentPrincipal,
) -> dict[str, str]:
    """Record that the caller shared their link. Opens a new invitation."""
    rate_limiter.check_rate_limit(principal.user_id, "share", SHARE_LIMIT)

    await lifecycle_engine.record_share(
        db, principal.user_id, request.channel, request.link, request.device_id
    )
    return {"status": "accepted"}


@router.post(
    "/codes", response_model=ReferralCodeResponse, status_code=status.HTTP_201_CREATED
)
async def ensure_referral_code(
    db: DbSession,
    principal: CurrentPrincipal,
) -> ReferralCodeResponse:
    """Get the caller's referral code, creating it on first use."""
    referral_code = await lifecycle_engine.ensure_code(db, principal.user_id)
    return ReferralCodeResponse.model_validate(referral_code)


@router.post("/codes/{code}/deactivate", response_model=ReferralCodeResponse)
async def deactivate_referral_code(
    code: str,
    db: DbSession,
    principal: CurrentPrincipal,
) -> ReferralCodeResponse:
    """Retire one of the caller's codes."""
    referral_code = await lifecycle_engine.deactivate_code(db, principal.user_id, code)
    return ReferralCodeResponse.model_validate(referral_code)


# ─────────────────────────────────────────────────────────────────────────────
# Vendor / App Callbacks
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(
    request: LifecycleEventRequest,
    db: DbSession,
    principal: OptionalPrincipal,
) -> dict[str, str]:
    """
    Accept a lifecycle event from the deep-link vendor or app SDK.

    Always accepted: replays of an event id and events for unknown codes are
    recorded (or ignored) without error.
    """
    result = await lifecycle_engine.ingest_event(
        db,
        event_type=request.event_type.value,
        code=request.referral_code,
        external_event_id=request.event_id,
        device_id=request.device_id,
    )
    if principal:
        logger.debug(f"Event {request.event_type.value} submitted by {principal.user_id}")
    return {"status": "duplicate" if result.duplicate else "accepted"}


@router.post("/verify", response_model=VerifyReferralResponse)
async def verify_referral(
    request: VerifyReferralRequest,
    db: DbSession,
) -> VerifyReferralResponse:
    """
    Check a referral code before the app starts the referral flow.

    Returns 404 for unknown codes and 410 for inactive ones.
    """
    result = await lifecycle_engine.verify_code(db, request.referral_code)
    return VerifyReferralResponse.model_validate(result)


@router.post(
    "/session", response_model=CreateSessionResponse, status_code=status.HTTP_201_CREATED
)
async def create_session(
    request: CreateSessionRequest,
    db: DbSession,
) -> CreateSessionResponse:
    """Issue (or return the live) referral session for a code and device."""
    session = await lifecycle_engine.create_session(db, request.referral_code, request.device_id)
    return CreateSessionResponse(
        session_id=session.session_id,
        referral_code=session.code,
        expires_at=as_utc(session.expires_at),
    )


@router.patch("/redeem", response_model=RedeemReferralResponse)
async def redeem_referral(
    request: RedeemReferralRequest,
    db: DbSession,
    principal: OptionalPrincipal,
) -> RedeemReferralResponse:
    """
    Redeem a referral code for a newly registered user.

    Returns 403 for self-referral and 409 when the referee already redeemed
    this code. Completion (and the referrer's reward) requires a live session.
    """
    result = await lifecycle_engine.redeem(
        db,
        acting_user_id=principal.user_id if principal else None,
        code=request.referral_code,
        referee_user_id=request.referee_user_id,
    )
    return RedeemReferralResponse(
        status=result.status.value,
        reward_eligible=result.reward_eligible,
    )
