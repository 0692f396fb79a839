from functools import lru_cache

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.config import settings
from blog_api.database import get_db
from blog_api.exceptions import Forbidden, Unauthenticated
from blog_api.models import Role, User
from blog_api.security import PasswordHasher, TokenConfig, TokenService
from blog_api.services import user_service

# auto_error=False: a missing or non-bearer header reaches get_current_user
# as None so it can answer with the API's own 401 envelope.
bearer_scheme = HTTPBearer(auto_error=False)


class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates pagination /
    sorting query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``
        regardless of the value supplied by the caller.
    sort_by:
        ORM column name to sort by.  The service layer is responsible
        for validating that this maps to a real column.
    sort_order:
        ``"asc"`` or ``"desc"`` (enforced by the regex pattern).
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
        sort_by: str = Query("published_at", description="Column name to sort results by."),
        sort_order: str = Query(
            "desc",
            pattern="^(asc|desc)$",
            description="Sort direction: 'asc' or 'desc'.",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order


# ---------------------------------------------------------------------------
# Credential service providers (overridden in tests)
# ---------------------------------------------------------------------------

@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=settings.BCRYPT_ROUNDS)


def get_token_service() -> TokenService:
    return TokenService(TokenConfig.from_settings(settings))


# ---------------------------------------------------------------------------
# Authentication gate
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    """
    Resolve the bearer token into a live, active ``User``.

    Liveness is checked on every request, not only at issuance: a token for
    an account that has since been removed or deactivated is rejected.
    The last-login stamp is refreshed as a best-effort side effect.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access denied. No token provided.")

    account_id = tokens.verify(credentials.credentials)

    user = await user_service.get_account(db, account_id)
    if user is None:
        raise Unauthenticated("Token is not valid. User not found.")
    if not user.is_active:
        raise Unauthenticated("Account is deactivated.")

    await user_service.touch_last_login(db, user)
    return user


def require_role(*roles: Role):
    """Dependency factory admitting only authenticated users holding one of *roles*."""

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise Forbidden("Access denied. Insufficient permissions.")
        return user

    return _check
