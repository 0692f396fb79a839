"""
Category service — reads are public, writes are admin-only.

Categories have no owner, so the authorization policy gates them by role
alone.  The slug is derived from the name by the ``derive_slug`` transform
whenever the name is part of the change set.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.exceptions import DuplicateError, NotFound
from blog_api.models import Category, User
from blog_api.permissions import require_admin
from blog_api.schemas import CategoryCreate, CategoryUpdate
from blog_api.transforms import apply_changes, derive_slug, prepare

logger = logging.getLogger(__name__)


def category_to_dict(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "color": category.color,
        "is_active": category.is_active,
        "post_count": category.post_count,
    }


async def _get(db: AsyncSession, category_id: int) -> Category:
    q = (
        select(Category)
        .where(Category.id == category_id)
        # post_count is maintained by bulk UPDATEs; never trust the identity map.
        .execution_options(populate_existing=True)
    )
    category = (await db.execute(q)).scalar_one_or_none()
    if category is None:
        raise NotFound("Category not found")
    return category


async def get_active_category(db: AsyncSession, category_id: int) -> Category | None:
    q = select(Category).where(Category.id == category_id, Category.is_active.is_(True))
    return (await db.execute(q)).scalar_one_or_none()


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id: int | None = None) -> None:
    q = select(Category.id).where(Category.name == name)
    if exclude_id is not None:
        q = q.where(Category.id != exclude_id)
    if (await db.execute(q)).first() is not None:
        raise DuplicateError("Category already exists")


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_categories(db: AsyncSession) -> list[dict]:
    """Return active categories ordered by name."""
    q = (
        select(Category)
        .where(Category.is_active.is_(True))
        .order_by(Category.name)
        .execution_options(populate_existing=True)
    )
    return [category_to_dict(c) for c in (await db.execute(q)).scalars().all()]


async def get_category(db: AsyncSession, category_id: int) -> dict:
    return category_to_dict(await _get(db, category_id))


async def create_category(db: AsyncSession, actor: User, data: CategoryCreate) -> dict:
    require_admin(actor)
    await _ensure_unique_name(db, data.name)

    category = Category()
    apply_changes(category, prepare(data.model_dump(), derive_slug("name")))
    db.add(category)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Category already exists") from exc

    logger.info("Category created category_id=%s slug=%s", category.id, category.slug)
    return category_to_dict(category)


async def update_category(
    db: AsyncSession, actor: User, category_id: int, data: CategoryUpdate
) -> dict:
    category = await _get(db, category_id)
    require_admin(actor)

    # Only the description may be cleared; null for anything else means "unchanged".
    changes = {
        field: value
        for field, value in data.model_dump(exclude_unset=True).items()
        if value is not None or field == "description"
    }
    if "name" in changes:
        await _ensure_unique_name(db, changes["name"], exclude_id=category_id)
    apply_changes(category, prepare(changes, derive_slug("name")))
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Category already exists") from exc

    logger.info("Category updated category_id=%s", category.id)
    return category_to_dict(category)
