from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from timeledger.errors import ApiError
from timeledger.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_TYPE_ACCESS = "access"


def _invalid_token(message: str) -> ApiError:
    return ApiError(status_code=401, code="INVALID_TOKEN", message=message)


def create_access_token(user_id: int, *, expires_in: timedelta | None = None) -> str:
    """Issue a token the way the login service does; used by tooling and tests."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    lifetime = expires_in if expires_in is not None else timedelta(minutes=settings.access_token_minutes)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
        "jti": str(uuid4()),
        "typ": TOKEN_TYPE_ACCESS,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise _invalid_token("Token verification is not configured.")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise _invalid_token("Token is invalid.") from exc

    if payload.get("typ", TOKEN_TYPE_ACCESS) != TOKEN_TYPE_ACCESS:
        raise _invalid_token("Token type is invalid.")
    return payload


def subject_user_id(payload: dict[str, Any]) -> int:
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise _invalid_token("Token subject is invalid.")
    return int(subject)


def require_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> int:
    """Resolve the calling user id; admin authority is checked against the user row."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _invalid_token("Missing bearer token.")

    user_id = subject_user_id(decode_token(credentials.credentials))
    request.state.actor = "user"
    request.state.actor_id = str(user_id)
    return user_id
