"""
Engagement service — likes, comments, view counts and the materialized
category post count.

Every mutation here is a single SQL statement so that concurrent requests
against the same post are serialized by the database rather than racing
through a read-modify-write in application memory:

- like      → ``INSERT ... ON CONFLICT DO NOTHING`` on ``post_likes``
- unlike    → ``DELETE ... WHERE post_id = :p AND user_id = :u``
- comment   → ``INSERT`` into ``comments``
- view      → ``UPDATE posts SET views = views + 1``
- count     → ``UPDATE categories SET post_count = (SELECT count(*) ...)``

Like and unlike are idempotent: repeating either leaves the like set as
it was.  View counting and category count refreshes are best-effort
secondary effects.  Each runs inside its own SAVEPOINT so that a failure
rolls back only that statement; it is logged and never fails the request.
"""
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.exceptions import NotFound, UnexpectedError
from blog_api.models import Category, Comment, Like, Post, PostStatus, User
from blog_api.schemas import CommentCreate
from blog_api.security import utcnow

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _like_insert(db: AsyncSession, post_id: int, user_id: int):
    dialect = db.get_bind().dialect.name
    try:
        insert_fn = _INSERT_BY_DIALECT[dialect]
    except KeyError:
        raise UnexpectedError(f"Likes are not supported on the {dialect!r} dialect") from None
    return (
        insert_fn(Like)
        .values(post_id=post_id, user_id=user_id, created_at=utcnow())
        .on_conflict_do_nothing(index_elements=["post_id", "user_id"])
    )


async def _ensure_post_exists(db: AsyncSession, post_id: int) -> None:
    found = (await db.execute(select(Post.id).where(Post.id == post_id))).scalar_one_or_none()
    if found is None:
        raise NotFound("Post not found")


async def count_likes(db: AsyncSession, post_id: int) -> int:
    q = select(func.count()).select_from(Like).where(Like.post_id == post_id)
    return (await db.execute(q)).scalar_one()


async def count_comments(db: AsyncSession, post_id: int) -> int:
    q = select(func.count()).select_from(Comment).where(Comment.post_id == post_id)
    return (await db.execute(q)).scalar_one()


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

async def add_like(db: AsyncSession, post_id: int, user: User) -> dict:
    """
    Transition ``not-liked -> liked`` for (*post_id*, *user*).

    Liking an already-liked post is a no-op, not an error.  The returned
    count is read after the write within the same transaction.
    """
    await _ensure_post_exists(db, post_id)
    try:
        await db.execute(_like_insert(db, post_id, user.id))
    except IntegrityError as exc:
        # The post was deleted between the existence check and the insert.
        raise NotFound("Post not found") from exc

    likes = await count_likes(db, post_id)
    logger.debug("Like post_id=%s user_id=%s likes=%s", post_id, user.id, likes)
    return {"likes": likes, "liked": True}


async def remove_like(db: AsyncSession, post_id: int, user: User) -> dict:
    """
    Transition ``liked -> not-liked`` (or stay ``not-liked``).

    Removing a like that does not exist leaves the like set unchanged.
    """
    await _ensure_post_exists(db, post_id)
    await db.execute(
        delete(Like)
        .where(Like.post_id == post_id, Like.user_id == user.id)
        .execution_options(synchronize_session=False)
    )

    likes = await count_likes(db, post_id)
    logger.debug("Unlike post_id=%s user_id=%s likes=%s", post_id, user.id, likes)
    return {"likes": likes, "liked": False}


# ---------------------------------------------------------------------------
# Comments (append-only)
# ---------------------------------------------------------------------------

async def add_comment(db: AsyncSession, post_id: int, user: User, data: CommentCreate) -> dict:
    """
    Append a comment to *post_id* and return it with the post's comment
    count after the append.  Comments are never edited or removed here.
    """
    await _ensure_post_exists(db, post_id)

    comment = Comment(post_id=post_id, user_id=user.id, content=data.content.strip())
    db.add(comment)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise NotFound("Post not found") from exc

    comments = await count_comments(db, post_id)
    logger.info("Comment comment_id=%s post_id=%s user_id=%s", comment.id, post_id, user.id)
    return {
        "comments": comments,
        "comment": {
            "id": comment.id,
            "content": comment.content,
            "user": {"id": user.id, "username": user.username},
            "created_at": comment.created_at.isoformat() if comment.created_at else None,
        },
    }


# ---------------------------------------------------------------------------
# Best-effort secondary effects
# ---------------------------------------------------------------------------

async def increment_views(db: AsyncSession, post_id: int) -> bool:
    """Add exactly one view to *post_id*.  Returns False if the write failed."""
    stmt = (
        update(Post)
        .where(Post.id == post_id)
        .values(views=Post.views + 1)
        .execution_options(synchronize_session=False)
    )
    try:
        async with db.begin_nested():
            await db.execute(stmt)
    except SQLAlchemyError:
        logger.warning("Could not increment views for post_id=%s", post_id, exc_info=True)
        return False
    return True


async def refresh_category_count(db: AsyncSession, category_id: int | None) -> None:
    """
    Recompute ``Category.post_count`` from the authoritative posts table.

    The count is re-queried rather than adjusted by +/-1 so that it cannot
    drift under concurrent writes.  Failures are logged; the primary
    mutation that triggered the refresh is not rolled back.
    """
    if category_id is None:
        return
    published = (
        select(func.count())
        .select_from(Post)
        .where(Post.category_id == category_id, Post.status == PostStatus.PUBLISHED)
        .scalar_subquery()
    )
    stmt = (
        update(Category)
        .where(Category.id == category_id)
        .values(post_count=published)
        .execution_options(synchronize_session=False)
    )
    try:
        async with db.begin_nested():
            await db.execute(stmt)
    except SQLAlchemyError:
        logger.error(
            "Could not refresh post_count for category_id=%s", category_id, exc_info=True
        )
