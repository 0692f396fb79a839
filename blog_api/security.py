"""
Credential primitives: password hashing and signed access tokens.

Neither class reads global configuration on its own.  The application wires
them from ``settings`` through the providers in ``blog_api.dependencies``;
tests construct them directly with their own rounds, secrets and clocks.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from jose import jwt
from jose.exceptions import JOSEError
from passlib.context import CryptContext

from blog_api.config import Settings
from blog_api.exceptions import InvalidToken

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

class PasswordHasher:
    """
    bcrypt hashing via passlib.

    Every call to ``hash_password`` draws a fresh salt, so hashing the same
    plaintext twice yields two different strings that both verify.
    """

    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def hash_password(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify_password(self, plaintext: str, hashed: str | None) -> bool:
        """Return True when *plaintext* matches *hashed*; False for unusable hashes."""
        if not hashed:
            return False
        try:
            return self._context.verify(plaintext, hashed)
        except (ValueError, TypeError) as exc:
            logger.warning("Password verification against malformed hash: %s", exc)
            return False


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenConfig:
    secret_key: str
    algorithm: str = "HS256"
    lifetime: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        return cls(
            secret_key=settings.SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
            lifetime=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        )


class TokenService:
    """
    Issues and verifies JWT access tokens bound to an account id.

    Expiry is checked against the injected *clock* rather than by the JWT
    library, so a test can move time forward without sleeping.  Rotating
    ``secret_key`` invalidates every token issued under the old one.
    """

    def __init__(self, config: TokenConfig, clock: Clock | None = None) -> None:
        self._config = config
        self._clock = clock or utcnow

    @property
    def lifetime(self) -> timedelta:
        return self._config.lifetime

    def issue(self, account_id: int) -> str:
        now = self._clock()
        claims = {
            "sub": str(account_id),
            "iat": int(now.timestamp()),
            "exp": int((now + self._config.lifetime).timestamp()),
        }
        return jwt.encode(claims, self._config.secret_key, algorithm=self._config.algorithm)

    def verify(self, token: str) -> int:
        """Return the account id carried by *token* or raise ``InvalidToken``."""
        try:
            claims = jwt.decode(
                token,
                self._config.secret_key,
                algorithms=[self._config.algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except (JOSEError, AttributeError, TypeError) as exc:
            raise InvalidToken() from exc

        expires_at = claims.get("exp")
        if not isinstance(expires_at, int):
            raise InvalidToken()
        if self._clock().timestamp() >= expires_at:
            raise InvalidToken("Token has expired")

        try:
            return int(claims["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc
