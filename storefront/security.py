"""Password hashing, signed tokens and role-to-authority mapping."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import jwt
from passlib.context import CryptContext

from .errors import UnauthenticatedError
from .schemas import Role, User
from .settings import Settings

ACCESS = "access"
REFRESH = "refresh"
VERIFY_EMAIL = "verify_email"
RESET_PASSWORD = "reset_password"

AUTHORITIES = {
    Role.USER: "ROLE_USER",
    Role.ADMIN: "ROLE_ADMIN",
    Role.MANAGER: "ROLE_MANAGER",
    Role.CUSTOMER_SERVICE: "ROLE_CUSTOMER_SERVICE",
    Role.INVENTORY_MANAGER: "ROLE_INVENTORY_MANAGER",
}


def authority_for(role: Role) -> str:
    return AUTHORITIES[Role(role)]


def authorities(roles: Iterable[Role]) -> List[str]:
    return [authority_for(role) for role in roles]


class PasswordHasher:
    def __init__(self, settings: Settings):
        self.password_ctx = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds
        )

    def hash_password(self, password: str) -> str:
        return self.password_ctx.hash(password)

    def verify_password(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        return self.password_ctx.verify(password, hashed)


class TokenService:
    """HS256 tokens. ``type`` keeps an access token from passing as a reset token and so on."""

    algorithm = "HS256"

    def __init__(self, settings: Settings):
        self.settings = settings

    def _lifetime(self, token_type: str) -> timedelta:
        minutes = {
            ACCESS: self.settings.jwt_expires_min,
            REFRESH: self.settings.jwt_refresh_expires_min,
        }.get(token_type, self.settings.verification_token_expires_min)
        return timedelta(minutes=minutes)

    def create_token(self, user: User, token_type: str = ACCESS) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "sub": user.id,
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + self._lifetime(token_type),
        }
        if token_type == ACCESS:
            payload["username"] = user.username
            payload["roles"] = [role.value for role in user.roles]
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.algorithm)

    def decode_token(self, token: str, expected_type: Optional[str] = ACCESS) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.settings.jwt_secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise UnauthenticatedError("Token expired")
        except jwt.InvalidTokenError:
            raise UnauthenticatedError("Invalid token")
        if expected_type is not None and payload.get("type") != expected_type:
            raise UnauthenticatedError("Invalid token")
        return payload

    def expires_in(self, token_type: str = ACCESS) -> int:
        return int(self._lifetime(token_type).total_seconds())
