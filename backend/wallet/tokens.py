"""Stateless session tokens.

Tokens are HS256-signed JWTs carrying the user id, role and display name.
Nothing is stored server side, so a token stays valid until it expires or the
signing secret is rotated; there is no revocation list.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from .schemas import Role


class TokenError(Exception):
    pass


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


@dataclass(frozen=True)
class Identity:
    id: int
    role: Role
    name: str

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "role": self.role.value, "name": self.name}


class TokenService:
    algorithm = "HS256"

    def __init__(self, secret: str, ttl: timedelta) -> None:
        self.secret = secret
        self.ttl = ttl

    def issue(self, user: dict[str, Any], now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        claims = {
            "sub": str(user["id"]),
            "role": Role(user["role"]).value,
            "name": user["name"],
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid(f"{exc.__class__.__name__}: {exc}") from exc
        try:
            return Identity(id=int(claims["sub"]), role=Role(claims["role"]), name=str(claims.get("name") or ""))
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid("malformed token claims") from exc
