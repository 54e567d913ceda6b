from __future__ import annotations

import hashlib
from contextvars import ContextVar
from typing import List, Optional

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from src.homehealth.config import settings
from src.homehealth.domain.models.user import Role, User
from src.homehealth.services.users.service import user_service

# API key is expected in this header when ENABLE_API_AUTH is true.
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Stable, non-raw identifier for the current caller (a hashed API key), used
# to look up the acting user without keeping the secret around.
_current_subject: ContextVar[Optional[str]] = ContextVar("current_subject", default=None)


def get_current_subject() -> Optional[str]:
    return _current_subject.get()


def _parse_api_keys() -> List[str]:
    """Return the configured API keys as a normalized list.

    API_KEYS is treated as a comma-separated list. Whitespace is stripped and
    empty entries are ignored.
    """

    if not settings.api_keys:
        return []
    return [key.strip() for key in settings.api_keys.split(",") if key.strip()]


def subject_for_api_key(api_key: str) -> str:
    return "api-key:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


async def get_api_key(api_key: Optional[str] = Security(_api_key_header)) -> str:
    """FastAPI dependency for simple API-key based authentication.

    - If ENABLE_API_AUTH is false (default for development/tests), this is a
      no-op and always succeeds.
    - If ENABLE_API_AUTH is true, a valid API key must be supplied in the
      X-API-Key header and match the configured API_KEYS list.
    """

    if not settings.enable_api_auth:
        _current_subject.set(None)
        return ""

    allowed_keys = _parse_api_keys()
    if not allowed_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API authentication is enabled but no API keys are configured.",
        )

    if not api_key or api_key not in allowed_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )

    _current_subject.set(subject_for_api_key(api_key))
    return api_key


def _parse_roles(raw: Optional[str]) -> List[Role]:
    if not raw:
        return []
    try:
        return [Role.parse(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown role: {exc}") from exc


async def get_current_user(
    api_key: str = Depends(get_api_key),
    x_user_id: Optional[str] = Header(default=None),
    x_user_roles: Optional[str] = Header(default=None),
    x_user_permissions: Optional[str] = Header(default=None),
) -> User:
    """Resolve the acting User.

    With API auth enabled the hashed key subject must be registered in the
    user store; unknown subjects are rejected rather than given a default
    role. With auth disabled (development and tests) the caller may describe
    itself through ``X-User-Id`` / ``X-User-Roles`` / ``X-User-Permissions``
    headers and otherwise acts as an anonymous system administrator.
    """

    subject = get_current_subject()
    if subject is not None:
        user = user_service.get_user_by_subject(subject)
        if user is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No user registered for this API key")
        return user

    if x_user_id is None and x_user_roles is None:
        return user_service.upsert_user_for_subject(
            subject="anonymous",
            email="anonymous@example.com",
            roles=[Role.SYSTEM_ADMIN],
        )

    permissions = [p.strip().upper() for p in (x_user_permissions or "").split(",") if p.strip()]
    return User(
        id=x_user_id or "anonymous",
        roles=frozenset(_parse_roles(x_user_roles)),
        permissions=frozenset(permissions),
    )
