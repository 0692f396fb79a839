"""
Post service — business logic for the Post aggregate.

Design notes
------------
- Eager loading via ``joinedload`` (many-to-one: author, category) and
  ``selectinload`` (one-to-many: comments, likes; many-to-many: tags) is
  used throughout to avoid N+1 queries; every relationship on the models
  is ``noload``.
- Detail reads use ``populate_existing`` because likes, views and
  category counts are changed by bulk statements that bypass the
  identity map.
- Update and delete resolve the post first (``NotFound``) and only then
  ask the authorization policy (``Forbidden``).
- Any change that can move a post in or out of a category's published
  set is followed by a category count refresh.
- Inserts that can collide on a unique column (post slugs, tag names)
  run inside a SAVEPOINT so a lost race is retried instead of aborting
  the request transaction.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
import logging
import math

from sqlalchemy import asc, delete, desc, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blog_api.exceptions import NotFound, ValidationError
from blog_api.models import Comment, Like, Post, PostStatus, Tag, User, post_tags
from blog_api.permissions import authorize
from blog_api.schemas import PostCreate, PostUpdate
from blog_api.security import utcnow
from blog_api.services import engagement_service
from blog_api.services.category_service import get_active_category
from blog_api.transforms import apply_changes, slugify

logger = logging.getLogger(__name__)

# Columns that are safe to sort by; guards against arbitrary attribute access.
_SORTABLE_COLUMNS: frozenset[str] = frozenset(
    {"created_at", "published_at", "views", "title"}
)

# A slug is re-derived this many times if a concurrent insert takes it first.
_SLUG_ATTEMPTS = 3


def _resolve_sort_column(sort_by: str):
    """
    Return the SQLAlchemy column expression for *sort_by*.

    Falls back to ``Post.published_at`` for any unrecognised column name.
    """
    if sort_by in _SORTABLE_COLUMNS:
        return getattr(Post, sort_by)
    return Post.published_at


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _post_to_dict(post: Post) -> dict:
    """Serialise a Post ORM instance to a plain dict (list view)."""
    return {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "content": post.content,
        "status": post.status.value,
        "views": post.views,
        "author": {"id": post.author.id, "username": post.author.username} if post.author else None,
        "author_id": post.author_id,
        "category": (
            {"id": post.category.id, "name": post.category.name, "slug": post.category.slug}
            if post.category
            else None
        ),
        "category_id": post.category_id,
        "tags": [t.name for t in post.tags],
        "like_count": len(post.likes),
        "comment_count": len(post.comments),
        "published_at": _isoformat(post.published_at),
        "created_at": _isoformat(post.created_at),
        "updated_at": _isoformat(post.updated_at),
    }


def _post_detail_to_dict(post: Post) -> dict:
    """Serialise a Post ORM instance to a plain dict (detail view)."""
    data = _post_to_dict(post)
    data["likes"] = [like.user_id for like in post.likes]
    data["comments"] = [
        {
            "id": c.id,
            "content": c.content,
            "user": {"id": c.author.id, "username": c.author.username} if c.author else None,
            "created_at": _isoformat(c.created_at),
        }
        for c in post.comments
    ]
    return data


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------

async def _load_post(db: AsyncSession, post_id: int) -> Post | None:
    q = (
        select(Post)
        .where(Post.id == post_id)
        .options(
            joinedload(Post.author),
            joinedload(Post.category),
            selectinload(Post.comments).joinedload(Comment.author),
            selectinload(Post.likes),
            selectinload(Post.tags),
        )
        .execution_options(populate_existing=True)
    )
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


async def _get_post_or_404(db: AsyncSession, post_id: int, *options) -> Post:
    q = select(Post).where(Post.id == post_id)
    if options:
        q = q.options(*options).execution_options(populate_existing=True)
    post = (await db.execute(q)).scalar_one_or_none()
    if post is None:
        raise NotFound("Post not found")
    return post


async def _require_active_category(db: AsyncSession, category_id: int) -> None:
    if await get_active_category(db, category_id) is None:
        raise ValidationError("Invalid category")


async def _unique_slug(db: AsyncSession, title: str, exclude_id: int | None = None) -> str:
    """
    Return a slug for *title* that no other post uses, suffixing ``-2``,
    ``-3`` ... on collision.
    """
    base = slugify(title) or "post"
    candidate, n = base, 1
    while True:
        q = select(Post.id).where(Post.slug == candidate)
        if exclude_id is not None:
            q = q.where(Post.id != exclude_id)
        if (await db.execute(q)).first() is None:
            return candidate
        n += 1
        candidate = f"{base}-{n}"


async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag ORM instances for each name in *tag_names*, creating any
    that do not yet exist.  A tag created concurrently by another request
    is picked up instead of failing on the unique name.
    """
    tags: list[Tag] = []
    for name in tag_names:
        q = select(Tag).where(Tag.name == name)
        tag = (await db.execute(q)).scalar_one_or_none()
        if tag is None:
            try:
                async with db.begin_nested():
                    tag = Tag(name=name)
                    db.add(tag)
            except IntegrityError:
                tag = (await db.execute(q)).scalar_one()
        tags.append(tag)
    return tags


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_posts(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 10,
    sort_by: str = "published_at",
    sort_order: str = "desc",
    category_id: int | None = None,
    author_id: int | None = None,
    search: str | None = None,
    tag: str | None = None,
) -> dict:
    """
    Return a page of published posts plus pagination metadata.

    Optional filters narrow by category, by author, by tag name, and by a
    case-insensitive substring of the title or content.
    """
    filters = [Post.status == PostStatus.PUBLISHED]
    if category_id is not None:
        filters.append(Post.category_id == category_id)
    if author_id is not None:
        filters.append(Post.author_id == author_id)
    if tag:
        filters.append(Post.tags.any(Tag.name == tag.strip().lower()))
    if search:
        pattern = f"%{search}%"
        filters.append(or_(Post.title.ilike(pattern), Post.content.ilike(pattern)))

    total: int = (
        await db.execute(select(func.count()).select_from(Post).where(*filters))
    ).scalar_one()

    sort_col = _resolve_sort_column(sort_by)
    order_expr = desc(sort_col) if sort_order == "desc" else asc(sort_col)

    posts_q = (
        select(Post)
        .where(*filters)
        .options(
            joinedload(Post.author),
            joinedload(Post.category),
            selectinload(Post.comments),
            selectinload(Post.likes),
            selectinload(Post.tags),
        )
        .order_by(order_expr, desc(Post.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    posts = (await db.execute(posts_q)).unique().scalars().all()

    return {
        "posts": [_post_to_dict(p) for p in posts],
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "pages": math.ceil(total / page_size) if total > 0 else 0,
        },
    }


async def get_post(db: AsyncSession, post_id: int) -> dict:
    """
    Return the full detail dict for *post_id*, counting one view.

    The view increment is best-effort: if it cannot be written the post
    is still returned with its last known view count.
    """
    post = await _load_post(db, post_id)
    if post is None:
        raise NotFound("Post not found")

    if await engagement_service.increment_views(db, post_id):
        await db.refresh(post, ["views"])

    return _post_detail_to_dict(post)


async def create_post(db: AsyncSession, actor: User, data: PostCreate) -> dict:
    """Create a post authored by *actor* under an existing, active category."""
    await _require_active_category(db, data.category)
    tags = await _resolve_tags(db, data.tags)

    for attempt in range(1, _SLUG_ATTEMPTS + 1):
        post = Post(
            title=data.title,
            slug=await _unique_slug(db, data.title),
            content=data.content,
            status=data.status,
            category_id=data.category,
            author_id=actor.id,
            tags=list(tags),
        )
        if data.status == PostStatus.PUBLISHED:
            post.published_at = utcnow()
        try:
            async with db.begin_nested():
                db.add(post)
            break
        except IntegrityError:
            if attempt == _SLUG_ATTEMPTS:
                raise
            logger.info("Slug %r was taken concurrently, retrying", post.slug)

    await engagement_service.refresh_category_count(db, post.category_id)

    logger.info("Post created post_id=%s author_id=%s", post.id, actor.id)
    return _post_detail_to_dict(await _load_post(db, post.id))


async def update_post(db: AsyncSession, actor: User, post_id: int, data: PostUpdate) -> dict:
    """
    Partially update a post owned by *actor* (or any post, for admins).

    Only fields present and non-null in the payload are changed; the
    author is never reassigned.
    """
    post = await _get_post_or_404(db, post_id, selectinload(Post.tags))
    authorize(actor, post, "Not authorized to update this post")

    changes = {
        field: value
        for field, value in data.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if "category" in changes:
        changes["category_id"] = changes.pop("category")
        await _require_active_category(db, changes["category_id"])
    if "title" in changes:
        changes["slug"] = await _unique_slug(db, changes["title"], exclude_id=post_id)
    if changes.get("status") == PostStatus.PUBLISHED and post.published_at is None:
        changes["published_at"] = utcnow()
    tag_names = changes.pop("tags", None)
    tags = None if tag_names is None else await _resolve_tags(db, tag_names)

    previous_category_id = post.category_id
    affects_counts = "category_id" in changes or "status" in changes

    apply_changes(post, changes)
    if tags is not None:
        post.tags = tags
    await db.flush()

    if affects_counts:
        await engagement_service.refresh_category_count(db, previous_category_id)
        if post.category_id != previous_category_id:
            await engagement_service.refresh_category_count(db, post.category_id)

    logger.info("Post updated post_id=%s by user_id=%s", post_id, actor.id)
    return _post_detail_to_dict(await _load_post(db, post_id))


async def delete_post(db: AsyncSession, actor: User, post_id: int) -> None:
    """Delete a post together with its likes, comments and tag links."""
    post = await _get_post_or_404(db, post_id)
    authorize(actor, post, "Not authorized to delete this post")
    category_id = post.category_id

    await db.execute(delete(post_tags).where(post_tags.c.post_id == post_id))
    await db.execute(
        delete(Like).where(Like.post_id == post_id).execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(Comment)
        .where(Comment.post_id == post_id)
        .execution_options(synchronize_session=False)
    )
    await db.delete(post)
    await db.flush()

    await engagement_service.refresh_category_count(db, category_id)
    logger.info("Post deleted post_id=%s by user_id=%s", post_id, actor.id)
