"""
Security helpers
Bearer token issuing/decoding and role gates for the HTTP layer.
Tokens carry the user_id and role claims of an already-authenticated actor.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from ..config.settings import Settings, settings as default_settings
from ..models.user import Role
from .exceptions import AuthenticationError, PermissionDeniedError


class Actor(BaseModel):
    """Authenticated caller"""
    user_id: int
    role: Role


class SecurityManager:
    """Security manager"""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self.secret = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.expire_hours = settings.jwt_expire_hours

    def create_jwt_token(self, user_id: int, role: Role,
                         additional_claims: Dict[str, Any] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "role": Role(role).value,
            "exp": now + timedelta(hours=self.expire_hours),
            "iat": now,
        }
        if additional_claims:
            payload.update(additional_claims)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode_jwt_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    def get_actor_from_token(self, token: str) -> Actor:
        payload = self.decode_jwt_token(token)
        if "user_id" not in payload or "role" not in payload:
            raise AuthenticationError("Token missing user_id or role")
        try:
            return Actor(user_id=payload["user_id"], role=payload["role"])
        except ValueError as e:
            raise AuthenticationError(f"Invalid token claims: {e}")


def create_access_token(user_id: int, role: Role, settings: Optional[Settings] = None) -> str:
    return SecurityManager(settings).create_jwt_token(user_id, role)


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """Resolve the actor from the Authorization header"""
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    manager = SecurityManager(getattr(request.app.state, "settings", None))
    return manager.get_actor_from_token(credentials.credentials)


def require_roles(*roles: Role) -> Callable[..., Actor]:
    """Dependency that admits only the given roles"""
    allowed = frozenset(roles)

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise PermissionDeniedError(
                "Insufficient permissions",
                details={"required_roles": sorted(role.value for role in allowed)},
            )
        return actor

    return dependency
