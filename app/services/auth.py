from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings


bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class AuthUser:
    user_id: str
    email: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _decode_options() -> dict[str, Any]:
    options: dict[str, Any] = {"algorithms": [settings.jwt_algorithm], "leeway": settings.jwt_exp_leeway_seconds}
    if settings.jwt_audience:
        options["audience"] = settings.jwt_audience
    else:
        options["options"] = {"verify_aud": False}
    if settings.jwt_issuer:
        options["issuer"] = settings.jwt_issuer
    return options


def _decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, **_decode_options())
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise _unauthorized("Invalid token") from exc


def _parse_payload(payload: dict[str, Any]) -> AuthUser:
    # The identity provider owns user ids; packs and sessions store them as opaque strings.
    user_id = str(payload.get("sub") or payload.get("user_id") or "").strip()
    if not user_id:
        raise _unauthorized("Invalid sub claim")
    return AuthUser(user_id=user_id, email=str(payload.get("email") or "").strip().lower())


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> AuthUser:
    if credentials is None:
        raise _unauthorized("Missing bearer token")
    return _parse_payload(_decode_token(credentials.credentials))
