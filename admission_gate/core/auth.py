"""Authentication helpers.

Two concerns live here:
- Admin API key validation (``X-API-Key``) for the rate-limit admin endpoints.
- Bearer token subject resolution, used by the identifier resolver to account
  authenticated traffic per user instead of per network address.

Design principles:
- Configuration-driven: keys and tokens managed via env vars, not hardcoded
- Dependency Injection: admin check used via FastAPI Depends()
- Testable: pure parsing/validation functions with minimal dependencies
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import MappingProxyType
from typing import Annotated

from fastapi import Header, HTTPException, status

from admission_gate.core.config import settings
from admission_gate.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Args:
        keys_string: Comma-separated string of API keys, or None.

    Returns:
        Set of trimmed, non-empty API keys.

    Examples:
        >>> parse_api_keys("key1,key2,key3")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    keys = {key.strip() for key in keys_string.split(",") if key.strip()}
    return keys


def parse_auth_tokens(tokens_string: str | None) -> dict[str, str]:
    """Parse comma-separated ``token:user_id`` pairs.

    Entries without a colon or with an empty side are ignored.

    Examples:
        >>> parse_auth_tokens("tok-a:user-1, tok-b:user-2")
        {'tok-a': 'user-1', 'tok-b': 'user-2'}
        >>> parse_auth_tokens("broken,:x,y:")
        {}
    """
    if not tokens_string:
        return {}

    tokens: dict[str, str] = {}
    for pair in tokens_string.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token.strip() and user_id.strip():
            tokens[token.strip()] = user_id.strip()
    return tokens


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the credential of an ``Authorization: Bearer`` header."""
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


class SubjectResolver(ABC):
    """Maps a bearer credential to the authenticated subject's user id."""

    @abstractmethod
    def resolve(self, token: str) -> str | None:
        """Return the user id for a valid token, ``None`` otherwise."""
        raise NotImplementedError


class StaticTokenSubjectResolver(SubjectResolver):
    """Subject resolver over a fixed token table loaded at start-up."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = MappingProxyType(dict(tokens))

    @classmethod
    def from_settings(cls) -> "StaticTokenSubjectResolver":
        return cls(parse_auth_tokens(settings.app.auth_tokens))

    def resolve(self, token: str) -> str | None:
        return self._tokens.get(token)


def validate_api_key(provided_key: str) -> None:
    """Validate that provided API key matches configured admin keys.

    Pure validation logic without FastAPI dependencies for easy testing.

    Args:
        provided_key: API key to validate.

    Raises:
        AuthenticationAppError: If key is invalid or authentication is required but no keys configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)

    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={
                "reason": "api_keys_not_configured",
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if provided_key not in valid_keys:
        api_key_hash = hashlib.sha256(provided_key.encode()).hexdigest()[:16]
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": api_key_hash,
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding the admin endpoints.

    Usage:
        @router.get("/admin/thing", dependencies=[Depends(verify_api_key)])

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.api_key_required:
        logger.debug(
            "auth.skipped",
            extra={"reason": "auth_required_false"},
        )
        return

    if not x_api_key:
        logger.warning(
            "auth.missing_key",
            extra={
                "auth_required": True,
                "api_key_present": False,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_api_key(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc
