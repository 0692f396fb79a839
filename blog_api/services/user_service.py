"""
User service — account lookups, public profiles and soft deactivation.

Accounts are never hard-deleted; deactivation flips ``is_active`` and the
authentication gate rejects the account from the next request on.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from blog_api.exceptions import NotFound
from blog_api.models import Post, PostStatus, User
from blog_api.permissions import authorize
from blog_api.security import utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def user_to_dict(user: User, private: bool = False) -> dict:
    """
    Serialise a User ORM instance.

    The password hash is never included.  Email, active flag and last
    login are only exposed on the account's own view (*private*).
    """
    data = {
        "id": user.id,
        "username": user.username,
        "role": user.role.value,
        "profile": {
            "first_name": user.first_name,
            "last_name": user.last_name,
            "bio": user.bio,
            "avatar": user.avatar,
        },
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
    if private:
        data["email"] = user.email
        data["is_active"] = user.is_active
        data["last_login"] = user.last_login.isoformat() if user.last_login else None
    return data


def _post_summary_to_dict(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "views": post.views,
        "published_at": post.published_at.isoformat() if post.published_at else None,
    }


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_account(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def touch_last_login(db: AsyncSession, user: User) -> None:
    """
    Stamp ``last_login`` with a single UPDATE.

    Best-effort: the UPDATE runs in a SAVEPOINT, and a failure is logged
    and swallowed so that it never blocks the request that triggered it.
    """
    now = utcnow()
    stmt = (
        update(User)
        .where(User.id == user.id)
        .values(last_login=now)
        .execution_options(synchronize_session=False)
    )
    try:
        async with db.begin_nested():
            await db.execute(stmt)
    except SQLAlchemyError:
        logger.warning("Could not stamp last_login for user_id=%s", user.id, exc_info=True)
        return
    # Already persisted; keep the instance in sync without marking it dirty.
    set_committed_value(user, "last_login", now)


async def get_user_profile(db: AsyncSession, user_id: int) -> dict:
    """
    Return the public profile for *user_id* with a summary of their
    published posts (newest first).
    """
    user = await get_account(db, user_id)
    if user is None:
        raise NotFound("User not found")

    posts_q = (
        select(Post)
        .where(Post.author_id == user_id, Post.status == PostStatus.PUBLISHED)
        .order_by(Post.published_at.desc(), Post.id.desc())
    )
    posts = (await db.execute(posts_q)).scalars().all()

    data = user_to_dict(user)
    data["posts"] = [_post_summary_to_dict(p) for p in posts]
    return data


async def set_active(db: AsyncSession, actor: User, user_id: int, is_active: bool) -> dict:
    """
    Soft-(de)activate an account.  Allowed for the account itself or an
    admin; owned posts are left untouched.
    """
    user = await get_account(db, user_id)
    if user is None:
        raise NotFound("User not found")
    authorize(actor, user, "Access denied. You can only change your own account.")

    user.is_active = is_active
    await db.flush()
    logger.info(
        "Account user_id=%s set is_active=%s by user_id=%s", user.id, is_active, actor.id
    )
    return user_to_dict(user, private=True)
