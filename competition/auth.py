"""
Minimal auth: role-bearing JWT.
Tokens are issued by the surrounding platform; the API only checks the role
claim for reviewer and admin actions.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from competition import config

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12

ROLE_TEAM = "team"
ROLE_REVIEWER = "reviewer"
ROLE_ADMIN = "admin"
ROLES = (ROLE_TEAM, ROLE_REVIEWER, ROLE_ADMIN)


def create_access_token(subject: str, role: str = ROLE_TEAM, expires_minutes: int | None = None) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """Claims {sub, role} of a valid token, None for an invalid or expired one."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("role") not in ROLES or not payload.get("sub"):
        return None
    return {"sub": payload["sub"], "role": payload["role"]}
