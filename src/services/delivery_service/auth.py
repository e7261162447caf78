from typing import Optional

from fastapi import Request
from jose import JWTError, jwt
from pydantic import BaseModel, Field

from src.common.constants import ROLE_ALIASES, UserRole
from src.common.exceptions import Unauthenticated
from src.common.logger import log_warning
from src.config.loader import AuthSettings


class Identity(BaseModel):
    """Caller as asserted by the auth service token."""

    id: str
    role: UserRole
    token: Optional[str] = Field(default=None, exclude=True, repr=False)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def normalize_role(value: object) -> UserRole:
    if not isinstance(value, str):
        raise Unauthenticated("Not authorized, token has no role")
    if value in ROLE_ALIASES:
        return ROLE_ALIASES[value]
    try:
        return UserRole(value)
    except ValueError:
        raise Unauthenticated(f"Not authorized, unknown role '{value}'") from None


async def decode_token(token: str, config: AuthSettings) -> Identity:
    """Verifies signature and expiry; claims `id` (or `sub`) and `role` are required."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        await log_warning(f"JWT verification failed: {e}")
        raise Unauthenticated("Not authorized, token failed") from e

    user_id = payload.get("id") or payload.get("sub")
    if user_id is None:
        raise Unauthenticated("Not authorized, token has no subject")

    return Identity(id=str(user_id), role=normalize_role(payload.get("role")), token=token)


def extract_token(request: Request, cookie_name: str) -> Optional[str]:
    """Session cookie first, then `Authorization: Bearer`."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None
