"""Bearer token validation and principal dependencies.

The surrounding identity provider issues the tokens; this service only
verifies them and extracts the caller's user id from the `sub` claim.
Tokens are verified either with a shared HS256 secret or, when `jwks_url`
is configured, against the provider's ES256 JWKS.
"""

import logging
import time
from dataclasses import dataclass
from typing import Annotated, Any

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.backends import ECKey
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_db

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cache for JWKS with TTL to handle key rotation
_jwks_cache: dict[str, Any] = {}
_jwks_cache_timestamp: float = 0.0
_JWKS_CACHE_TTL_SECONDS: float = 3600.0  # 1 hour


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as asserted by the identity provider."""

    user_id: str


async def _fetch_jwks() -> dict[str, Any]:
    """Fetch JWKS from the identity provider and update the cache."""
    global _jwks_cache_timestamp
    async with httpx.AsyncClient() as client:
        response = await client.get(settings.jwks_url)
        response.raise_for_status()
        jwks = response.json()
        _jwks_cache.clear()
        _jwks_cache.update(jwks)
        _jwks_cache_timestamp = time.monotonic()
        return jwks


async def get_jwks(force_refresh: bool = False) -> dict[str, Any]:
    """Fetch and cache JWKS with a 1-hour TTL."""
    cache_age = time.monotonic() - _jwks_cache_timestamp
    if _jwks_cache and not force_refresh and cache_age < _JWKS_CACHE_TTL_SECONDS:
        return _jwks_cache

    return await _fetch_jwks()


def get_signing_key(jwks: dict[str, Any], token: str) -> ECKey:
    """Get the signing key from JWKS that matches the token's kid."""
    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return ECKey(key, algorithm="ES256")

    raise ValueError("Unable to find matching key in JWKS")


async def decode_token(token: str) -> dict[str, Any]:
    """Verify a bearer token and return its claims.

    Raises JWTError / ValueError for invalid tokens and httpx.HTTPError when
    the JWKS endpoint is unreachable.
    """
    if settings.jwks_enabled:
        try:
            jwks = await get_jwks()
            signing_key = get_signing_key(jwks, token)
            return jwt.decode(
                token, signing_key, algorithms=["ES256"], audience=settings.jwt_audience
            )
        except (JWTError, ValueError):
            # Key rotation may have occurred: force a JWKS refresh and retry once
            logger.info("JWT validation failed with cached JWKS, forcing refresh")
            jwks = await get_jwks(force_refresh=True)
            signing_key = get_signing_key(jwks, token)
            return jwt.decode(
                token, signing_key, algorithms=["ES256"], audience=settings.jwt_audience
            )

    if not settings.jwt_secret:
        raise ValueError("No token verification key configured")
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
    )


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """Validate the bearer token and return the calling principal."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        payload = await decode_token(credentials.credentials)
    except (JWTError, ValueError, httpx.HTTPError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    return Principal(user_id=str(user_id))


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal | None:
    """Get the calling principal if authenticated, None otherwise."""
    if not credentials:
        return None
    try:
        return await get_current_principal(credentials)
    except HTTPException:
        return None


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
OptionalPrincipal = Annotated[Principal | None, Depends(get_optional_principal)]
