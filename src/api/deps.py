from __future__ import annotations

from collections.abc import AsyncIterator, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role, TokenError, create_access_token, decode_access_token
from src.core.config import get_settings
from src.domain import User
from src.domain.services.certificates import EligibilityNotifier
from src.domain.services.certification_levels import EligibilityRefreshScheduler
from src.infrastructure.db.session import get_session
from src.libs.pdf_renderer import CertificateRendererProtocol, HttpPdfRenderer

bearer_scheme = HTTPBearer(auto_error=False)

_eligibility_scheduler = EligibilityRefreshScheduler()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> User:
    """Resolve the authenticated user from a bearer token."""
    if credentials is None:
        raise _unauthorized("Missing bearer token")

    try:
        claims = decode_access_token(credentials.credentials)
    except TokenError as exc:
        raise _unauthorized(str(exc)) from exc

    if not claims.roles:
        raise _forbidden("Token missing required roles")

    return User(user_id=claims.subject, email=claims.email or "", roles=list(claims.roles))


def require_roles(*required_roles: Role) -> Callable[[User], User]:
    """Dependency factory enforcing that the caller holds at least one of ``required_roles``."""
    allowed = set(get_settings().allowed_roles)
    disabled = [role.value for role in required_roles if role.value not in allowed]
    if disabled:
        raise ValueError(f"Role(s) disabled by ALLOWED_ROLES: {', '.join(disabled)}")

    required = {role.value for role in required_roles}

    def dependency(user: User = Depends(get_current_user)) -> User:  # noqa: B008
        if not required.intersection(user.roles):
            raise _forbidden("Insufficient role privileges")
        return user

    return dependency


def issue_smoke_token(user_id: str, *, role: Role, email: str | None = None) -> str:
    """Generate a signed token for manual smoke testing."""
    return create_access_token(user_id, roles=[role.value], email=email)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Provide an async SQLAlchemy session for API handlers."""
    async for session in get_session():
        yield session


def get_renderer() -> CertificateRendererProtocol:
    """Certificate PDF renderer; overridden with a fake in tests."""
    return HttpPdfRenderer()


def get_eligibility_notifier() -> EligibilityNotifier:
    """Hook run after a certificate is issued to rescan certification levels."""
    return _eligibility_scheduler


async def drain_background_tasks() -> None:
    await _eligibility_scheduler.drain()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
