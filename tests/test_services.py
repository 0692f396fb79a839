"""
Direct service-layer tests — exercises business logic without HTTP overhead.

These tests call service functions directly with a database session, which
pins down the SQL paths (single-statement likes, view increments, count
refreshes) and the order in which existence and authorization are checked.
"""
import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.exceptions import DuplicateError, Forbidden, NotFound, Unauthenticated, ValidationError
from blog_api.models import Category, Role, Tag, User
from blog_api.schemas import (
    CategoryCreate,
    CategoryUpdate,
    CommentCreate,
    LoginRequest,
    PasswordChange,
    PostCreate,
    PostUpdate,
    RegisterRequest,
)
from blog_api.security import TokenService
from blog_api.services import (
    auth_service,
    category_service,
    engagement_service,
    post_service,
    user_service,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(
    db: AsyncSession, username: str = "svcuser", role: Role = Role.USER
) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash="unusable",
        role=role,
    )
    db.add(user)
    await db.flush()
    return user


async def _create_category(db: AsyncSession, name: str = "Technology") -> Category:
    category = Category(name=name, slug=name.lower())
    db.add(category)
    await db.flush()
    return category


def _post_data(category_id: int, **overrides) -> PostCreate:
    return PostCreate(**{
        "title": "Service Post",
        "content": "Direct service test content",
        "category": category_id,
        **overrides,
    })


# ---------------------------------------------------------------------------
# auth_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_stores_hash_not_plaintext(db_session: AsyncSession, hasher, token_config):
    tokens = TokenService(token_config)
    data = RegisterRequest(username="alice", email="Alice@Example.com", password="Passw0rd")

    result = await auth_service.register(db_session, data, hasher, tokens)

    user = await user_service.get_account(db_session, result["user"]["id"])
    assert user.email == "alice@example.com"
    assert user.password_hash != "Passw0rd"
    assert hasher.verify_password("Passw0rd", user.password_hash)
    assert tokens.verify(result["token"]) == user.id


@pytest.mark.asyncio
async def test_register_duplicates(db_session: AsyncSession, hasher, token_config):
    tokens = TokenService(token_config)
    await auth_service.register(
        db_session,
        RegisterRequest(username="alice", email="alice@example.com", password="Passw0rd"),
        hasher,
        tokens,
    )

    with pytest.raises(DuplicateError, match="Email already exists"):
        await auth_service.register(
            db_session,
            RegisterRequest(username="other", email="ALICE@example.com", password="Passw0rd"),
            hasher,
            tokens,
        )
    with pytest.raises(DuplicateError, match="Username already exists"):
        await auth_service.register(
            db_session,
            RegisterRequest(username="alice", email="new@example.com", password="Passw0rd"),
            hasher,
            tokens,
        )


@pytest.mark.asyncio
async def test_login_failures(db_session: AsyncSession, hasher, token_config):
    tokens = TokenService(token_config)
    await auth_service.register(
        db_session,
        RegisterRequest(username="alice", email="alice@example.com", password="Passw0rd"),
        hasher,
        tokens,
    )

    with pytest.raises(Unauthenticated, match="Invalid credentials"):
        await auth_service.login(
            db_session, LoginRequest(email="alice", password="nope"), hasher, tokens
        )

    user = await user_service.get_account(db_session, 1)
    user.is_active = False
    await db_session.flush()
    with pytest.raises(Unauthenticated, match="Account is deactivated"):
        await auth_service.login(
            db_session, LoginRequest(email="alice", password="Passw0rd"), hasher, tokens
        )


@pytest.mark.asyncio
async def test_change_password_rehashes_only_new_password(db_session: AsyncSession, hasher):
    user = await _create_user(db_session)
    user.password_hash = hasher.hash_password("Passw0rd")
    await db_session.flush()

    with pytest.raises(ValidationError):
        await auth_service.change_password(
            db_session, user, PasswordChange(current_password="Wrong1", new_password="N3wSecret"), hasher
        )

    await auth_service.change_password(
        db_session, user, PasswordChange(current_password="Passw0rd", new_password="N3wSecret"), hasher
    )
    assert hasher.verify_password("N3wSecret", user.password_hash)
    assert not hasher.verify_password("Passw0rd", user.password_hash)


# ---------------------------------------------------------------------------
# user_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_touch_last_login(db_session: AsyncSession):
    user = await _create_user(db_session)
    assert user.last_login is None

    await user_service.touch_last_login(db_session, user)

    assert user.last_login is not None
    assert user not in db_session.dirty


@pytest.mark.asyncio
async def test_set_active_checks_existence_before_permission(db_session: AsyncSession):
    actor = await _create_user(db_session)
    with pytest.raises(NotFound):
        await user_service.set_active(db_session, actor, 999, False)

    other = await _create_user(db_session, "other")
    with pytest.raises(Forbidden):
        await user_service.set_active(db_session, actor, other.id, False)


# ---------------------------------------------------------------------------
# post_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_posts_empty(db_session: AsyncSession):
    result = await post_service.get_posts(db_session)
    assert result["posts"] == []
    assert result["pagination"]["total"] == 0
    assert result["pagination"]["pages"] == 0


@pytest.mark.asyncio
async def test_get_posts_unknown_sort_column_falls_back(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    await post_service.create_post(db_session, user, _post_data(category.id))

    result = await post_service.get_posts(db_session, sort_by="password_hash")
    assert result["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_create_post_sets_author_and_count(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)

    post = await post_service.create_post(db_session, user, _post_data(category.id))

    assert post["author_id"] == user.id
    assert post["slug"] == "service-post"
    refreshed = await category_service.get_category(db_session, category.id)
    assert refreshed["post_count"] == 1


@pytest.mark.asyncio
async def test_update_post_missing_before_forbidden(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    stranger = await _create_user(db_session, "stranger")
    category = await _create_category(db_session)
    post = await post_service.create_post(db_session, author, _post_data(category.id))

    with pytest.raises(NotFound):
        await post_service.update_post(db_session, stranger, 999, PostUpdate(title="Nope"))
    with pytest.raises(Forbidden):
        await post_service.update_post(db_session, stranger, post["id"], PostUpdate(title="Nope"))
    with pytest.raises(Forbidden):
        await post_service.delete_post(db_session, stranger, post["id"])


@pytest.mark.asyncio
async def test_update_post_null_fields_are_ignored(db_session: AsyncSession):
    author = await _create_user(db_session)
    category = await _create_category(db_session)
    post = await post_service.create_post(db_session, author, _post_data(category.id))

    updated = await post_service.update_post(
        db_session, author, post["id"], PostUpdate(title=None, content="Replaced body text")
    )
    assert updated["title"] == "Service Post"
    assert updated["content"] == "Replaced body text"


@pytest.mark.asyncio
async def test_create_post_retries_slug_taken_concurrently(db_session: AsyncSession, monkeypatch):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    await post_service.create_post(db_session, user, _post_data(category.id))

    # The first lookup answers as if the existing post had not been committed yet.
    original = post_service._unique_slug
    calls = []

    async def stale_then_fresh(db, title, exclude_id=None):
        calls.append(title)
        if len(calls) == 1:
            return "service-post"
        return await original(db, title, exclude_id)

    monkeypatch.setattr(post_service, "_unique_slug", stale_then_fresh)
    post = await post_service.create_post(db_session, user, _post_data(category.id, tags=["retry"]))

    assert len(calls) == 2
    assert post["slug"] == "service-post-2"
    assert post["tags"] == ["retry"]
    refreshed = await category_service.get_category(db_session, category.id)
    assert refreshed["post_count"] == 2


@pytest.mark.asyncio
async def test_create_post_gives_up_after_repeated_slug_collisions(db_session: AsyncSession, monkeypatch):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    await post_service.create_post(db_session, user, _post_data(category.id))

    async def always_taken(db, title, exclude_id=None):
        return "service-post"

    monkeypatch.setattr(post_service, "_unique_slug", always_taken)
    with pytest.raises(IntegrityError):
        await post_service.create_post(db_session, user, _post_data(category.id))

    total = await post_service.get_posts(db_session)
    assert total["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_update_post_tags_replace_and_reuse(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    post = await post_service.create_post(
        db_session, user, _post_data(category.id, tags=["python", "web"])
    )

    updated = await post_service.update_post(
        db_session, user, post["id"], PostUpdate(tags=["web", "sql"])
    )
    assert updated["tags"] == ["sql", "web"]

    names = (await db_session.execute(select(Tag.name).order_by(Tag.name))).scalars().all()
    assert names == ["python", "sql", "web"]

    listed = await post_service.get_posts(db_session, tag="SQL")
    assert [p["id"] for p in listed["posts"]] == [post["id"]]


@pytest.mark.asyncio
async def test_get_post_increments_views(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    post = await post_service.create_post(db_session, user, _post_data(category.id))

    assert (await post_service.get_post(db_session, post["id"]))["views"] == 1
    assert (await post_service.get_post(db_session, post["id"]))["views"] == 2


# ---------------------------------------------------------------------------
# engagement_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_like_state_machine(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    post = await post_service.create_post(db_session, user, _post_data(category.id))

    assert await engagement_service.remove_like(db_session, post["id"], user) == {"likes": 0, "liked": False}
    assert await engagement_service.add_like(db_session, post["id"], user) == {"likes": 1, "liked": True}
    assert await engagement_service.add_like(db_session, post["id"], user) == {"likes": 1, "liked": True}
    assert await engagement_service.remove_like(db_session, post["id"], user) == {"likes": 0, "liked": False}


@pytest.mark.asyncio
async def test_engagement_on_missing_post(db_session: AsyncSession):
    user = await _create_user(db_session)
    with pytest.raises(NotFound):
        await engagement_service.add_like(db_session, 999, user)
    with pytest.raises(NotFound):
        await engagement_service.add_comment(db_session, 999, user, CommentCreate(content="hi"))


@pytest.mark.asyncio
async def test_add_comment_counts(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    post = await post_service.create_post(db_session, user, _post_data(category.id))

    first = await engagement_service.add_comment(db_session, post["id"], user, CommentCreate(content="one"))
    second = await engagement_service.add_comment(db_session, post["id"], user, CommentCreate(content="two"))

    assert first["comments"] == 1
    assert second["comments"] == 2
    assert second["comment"]["id"] > first["comment"]["id"]


@pytest.mark.asyncio
async def test_refresh_category_count_recomputes(db_session: AsyncSession):
    user = await _create_user(db_session)
    category = await _create_category(db_session)
    await post_service.create_post(db_session, user, _post_data(category.id))
    await post_service.create_post(db_session, user, _post_data(category.id, status="draft"))

    # A stale value is overwritten rather than adjusted.
    category.post_count = 42
    await db_session.flush()
    await engagement_service.refresh_category_count(db_session, category.id)

    assert (await category_service.get_category(db_session, category.id))["post_count"] == 1


@pytest.mark.asyncio
async def test_refresh_category_count_without_category_is_noop(db_session: AsyncSession):
    await engagement_service.refresh_category_count(db_session, None)


# ---------------------------------------------------------------------------
# category_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_category_writes_are_admin_only(db_session: AsyncSession):
    user = await _create_user(db_session)
    admin = await _create_user(db_session, "boss", role=Role.ADMIN)

    with pytest.raises(Forbidden):
        await category_service.create_category(db_session, user, CategoryCreate(name="Travel"))

    created = await category_service.create_category(db_session, admin, CategoryCreate(name="Travel"))
    assert created["slug"] == "travel"

    with pytest.raises(DuplicateError):
        await category_service.create_category(db_session, admin, CategoryCreate(name="Travel"))


@pytest.mark.asyncio
async def test_update_category_clears_description(db_session: AsyncSession):
    admin = await _create_user(db_session, "boss", role=Role.ADMIN)
    created = await category_service.create_category(
        db_session, admin, CategoryCreate(name="Travel", description="Trips")
    )

    updated = await category_service.update_category(
        db_session, admin, created["id"], CategoryUpdate(description=None, color=None)
    )
    assert updated["description"] is None
    assert updated["color"] == "#007bff"
