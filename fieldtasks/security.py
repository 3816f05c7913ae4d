from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Union

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from fieldtasks.db import get_db
from fieldtasks.errors import AuthenticationError, AuthorizationError
from fieldtasks.models import Profile, UserRole
from fieldtasks.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

REVIEWER_ROLES: frozenset[str] = frozenset({UserRole.DIRECTOR.value, UserRole.LEADER.value, UserRole.AUDITOR.value})
CANCELLER_ROLES: frozenset[str] = frozenset({UserRole.DIRECTOR.value, UserRole.LEADER.value})
MANUAL_SWEEP_ROLES: frozenset[str] = frozenset({UserRole.DIRECTOR.value})


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    user_id: str
    tenant_id: str
    role: str

    def has_any_role(self, roles: frozenset[str]) -> bool:
        return self.role in roles


@dataclass(frozen=True, slots=True)
class SystemCaller:
    actor_id: str = "system"


Caller = Union[AuthenticatedUser, SystemCaller]


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthenticationError("Unauthorized", code="MISSING_TOKEN")
    return credentials.credentials


def is_service_credential(token: str) -> bool:
    service_key = (get_settings().service_role_key or "").strip()
    if not service_key:
        return False
    return hmac.compare_digest(token.encode("utf-8"), service_key.encode("utf-8"))


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise AuthenticationError("Unauthorized", code="AUTH_NOT_CONFIGURED")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise AuthenticationError("Unauthorized", code="INVALID_TOKEN") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationError("Unauthorized", code="INVALID_TOKEN")
    return payload


def _load_user(db: Session, token: str) -> AuthenticatedUser:
    payload = decode_access_token(token)
    profile = db.get(Profile, payload["sub"])
    if profile is None:
        raise AuthorizationError("Profile not found", code="PROFILE_NOT_FOUND")
    return AuthenticatedUser(user_id=profile.id, tenant_id=profile.tenant_id, role=profile.role)


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    user = _load_user(db, _bearer_token(credentials))
    request.state.actor = user.role
    request.state.actor_id = user.user_id
    return user


def require_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Caller:
    token = _bearer_token(credentials)
    if is_service_credential(token):
        request.state.actor = "system"
        request.state.actor_id = "system"
        return SystemCaller()

    user = _load_user(db, token)
    request.state.actor = user.role
    request.state.actor_id = user.user_id
    return user


def ensure_role(user: AuthenticatedUser, roles: frozenset[str], *, message: str) -> None:
    if not user.has_any_role(roles):
        raise AuthorizationError(message)


def ensure_same_tenant(user: AuthenticatedUser, tenant_id: str) -> None:
    if user.tenant_id != tenant_id:
        raise AuthorizationError("Unauthorized: Access denied", code="TENANT_MISMATCH")
