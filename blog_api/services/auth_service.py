"""
Auth service — registration, login and the authenticated account's own
profile and credentials.

Passwords only ever enter the database through the ``hash_password_change``
transform, so a plaintext value is never persisted and an unchanged
password is never re-hashed.
"""
import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.exceptions import DuplicateError, Unauthenticated, ValidationError
from blog_api.models import User
from blog_api.schemas import LoginRequest, PasswordChange, ProfileUpdate, RegisterRequest
from blog_api.security import PasswordHasher, TokenService, utcnow
from blog_api.services.user_service import user_to_dict
from blog_api.transforms import apply_changes, hash_password_change, normalize_email, prepare

logger = logging.getLogger(__name__)

# Profile fields an account may change about itself.
PROFILE_FIELDS: tuple[str, ...] = ("first_name", "last_name", "bio", "avatar")


async def register(
    db: AsyncSession,
    data: RegisterRequest,
    hasher: PasswordHasher,
    tokens: TokenService,
) -> dict:
    """
    Create an account and return ``{"user": ..., "token": ...}``.

    Raises ``DuplicateError`` when the email (case-insensitive) or the
    username is already taken.
    """
    changes = prepare(data.model_dump(), normalize_email, hash_password_change(hasher))

    existing_q = select(User).where(
        or_(User.email == changes["email"], User.username == changes["username"])
    )
    existing = (await db.execute(existing_q)).scalars().first()
    if existing is not None:
        if existing.email == changes["email"]:
            raise DuplicateError("Email already exists")
        raise DuplicateError("Username already exists")

    user = User()
    apply_changes(user, changes)
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Lost a race against a concurrent registration.
        raise DuplicateError("Email or username already exists") from exc

    logger.info("Registered user_id=%s username=%s", user.id, user.username)
    return {"user": user_to_dict(user, private=True), "token": tokens.issue(user.id)}


async def login(
    db: AsyncSession,
    data: LoginRequest,
    hasher: PasswordHasher,
    tokens: TokenService,
) -> dict:
    """
    Authenticate by email or username and return ``{"user", "token"}``.

    Unknown accounts and wrong passwords get the same message so that the
    response does not reveal which usernames exist.
    """
    identifier = data.email.strip()
    q = select(User).where(or_(User.email == identifier.lower(), User.username == identifier))
    user = (await db.execute(q)).scalars().first()

    if user is None or not hasher.verify_password(data.password, user.password_hash):
        logger.info("Failed login for identifier=%r", identifier)
        raise Unauthenticated("Invalid credentials")
    if not user.is_active:
        raise Unauthenticated("Account is deactivated")

    user.last_login = utcnow()
    await db.flush()

    logger.info("Login user_id=%s", user.id)
    return {"user": user_to_dict(user, private=True), "token": tokens.issue(user.id)}


def get_me(user: User) -> dict:
    return {"user": user_to_dict(user, private=True)}


async def update_profile(db: AsyncSession, user: User, data: ProfileUpdate) -> dict:
    """Apply only the whitelisted profile fields present in the payload."""
    changes = {
        field: value
        for field, value in data.model_dump(exclude_unset=True).items()
        if field in PROFILE_FIELDS
    }
    apply_changes(user, changes)
    await db.flush()
    return {"user": user_to_dict(user, private=True)}


async def change_password(
    db: AsyncSession,
    user: User,
    data: PasswordChange,
    hasher: PasswordHasher,
) -> None:
    if not hasher.verify_password(data.current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")

    apply_changes(user, prepare({"password": data.new_password}, hash_password_change(hasher)))
    await db.flush()
    logger.info("Password changed for user_id=%s", user.id)
