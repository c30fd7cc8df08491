import logging
from typing import Callable

from fastapi import Request

from .errors import Forbidden, Unauthenticated
from .schemas import Role
from .tokens import Identity, TokenExpired, TokenError, TokenService

logger = logging.getLogger(__name__)


def extract_token(request: Request, cookie_name: str) -> str | None:
    auth = request.headers.get("Authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
            return parts[1].strip()
    return request.cookies.get(cookie_name)


def require_roles(*roles: Role) -> Callable[[Request], Identity]:
    """Dependency that authenticates the caller and checks the role allow-list.

    An empty allow-list accepts any authenticated role.
    """
    allowed = frozenset(Role(role) for role in roles)

    def dependency(request: Request) -> Identity:
        tokens: TokenService = request.app.state.tokens
        token = extract_token(request, request.app.state.settings.session_cookie_name)
        if not token:
            raise Unauthenticated("authentication required")
        try:
            identity = tokens.verify(token)
        except TokenExpired:
            logger.info("Rejected expired token on %s", request.url.path)
            raise Unauthenticated("invalid or expired token") from None
        except TokenError as exc:
            logger.warning("Rejected invalid token on %s: %s", request.url.path, exc)
            raise Unauthenticated("invalid or expired token") from None
        if allowed and identity.role not in allowed:
            raise Forbidden("insufficient role")
        return identity

    return dependency


any_role = require_roles()
entry_or_admin = require_roles(Role.entry, Role.admin)
admin_only = require_roles(Role.admin)
