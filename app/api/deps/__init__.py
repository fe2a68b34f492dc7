"""API dependencies - re-exports from submodules."""

from .auth import (
    CurrentPrincipal,
    DbSession,
    OptionalPrincipal,
    Principal,
    decode_token,
    get_current_principal,
    get_jwks,
    get_optional_principal,
    get_signing_key,
    security,
)

__all__ = [
    "security",
    "get_jwks",
    "get_signing_key",
    "decode_token",
    "get_current_principal",
    "get_optional_principal",
    "Principal",
    "DbSession",
    "CurrentPrincipal",
    "OptionalPrincipal",
]
