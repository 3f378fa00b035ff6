from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import HTTPException, status

from caresupply.config import get_settings
from caresupply.core.exceptions import ForbiddenError
from caresupply.models.institution import ROLE_ADMIN_APPLICATION, ROLE_ADMIN_INSTITUTION, ROLE_WORKER


def _load_api_keys() -> set[str]:
    settings = get_settings()
    keys = set()
    if settings.API_KEYS:
        for value in settings.API_KEYS.split(","):
            value = value.strip()
            if value:
                keys.add(value)
    return keys


def _get_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_jwt(token: str) -> dict:
    settings = get_settings()
    if not settings.JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="JWT auth is not configured",
        )

    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid JWT",
        ) from exc


def authenticate_request(
    api_key: Optional[str],
    authorization: Optional[str],
    *,
    require_auth: bool = False,
) -> Optional[dict]:
    """Return ``{"auth_type": ...}`` for an authenticated caller.

    Tokens are issued elsewhere; this only verifies them. When neither API keys
    nor a JWT secret are configured the service runs open and None is returned.
    """
    settings = get_settings()
    keys = _load_api_keys()

    if settings.JWT_REQUIRED:
        require_auth = True

    if api_key and api_key in keys and not settings.JWT_REQUIRED:
        return {"auth_type": "api_key"}

    token = _get_bearer_token(authorization)
    if token:
        try:
            payload = _decode_jwt(token)
            return {"auth_type": "jwt", "payload": payload}
        except HTTPException:
            if settings.JWT_REQUIRED:
                raise

    if (require_auth or keys or settings.JWT_REQUIRED) and (
        keys or settings.JWT_SECRET or settings.JWT_REQUIRED
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return None


@dataclass(frozen=True)
class Actor:
    """Who is calling: an administrative user or a worker of one institution."""

    user_id: Optional[int]
    institution_id: Optional[int]
    role: str

    @property
    def is_application_admin(self) -> bool:
        return self.role == ROLE_ADMIN_APPLICATION

    @property
    def is_worker(self) -> bool:
        return self.role == ROLE_WORKER

    def institution_scope(self) -> Optional[int]:
        """Institution every lookup must be checked against (None = unrestricted)."""
        if self.is_application_admin:
            return None
        if self.institution_id is None:
            raise ForbiddenError("Caller is not bound to an institution")
        return self.institution_id

    def require_institution(self) -> int:
        if self.institution_id is None:
            raise ForbiddenError("Caller is not bound to an institution")
        return self.institution_id


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed identity claim",
        ) from exc


def resolve_actor(
    auth: Optional[dict],
    *,
    institution_id: Optional[str] = None,
    user_id: Optional[str] = None,
    role: Optional[str] = None,
) -> Actor:
    """Build the caller identity from JWT claims, or from trusted headers otherwise."""
    if auth and auth.get("auth_type") == "jwt":
        payload = auth.get("payload") or {}
        return Actor(
            user_id=_optional_int(payload.get("user_id", payload.get("sub"))),
            institution_id=_optional_int(payload.get("institution_id")),
            role=str(payload.get("role") or ROLE_ADMIN_INSTITUTION),
        )
    return Actor(
        user_id=_optional_int(user_id),
        institution_id=_optional_int(institution_id),
        role=(role or ROLE_ADMIN_INSTITUTION).strip(),
    )
