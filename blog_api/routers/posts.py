from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import PaginationParams, get_current_user
from blog_api.models import User
from blog_api.schemas import CommentCreate, PostCreate, PostUpdate, envelope
from blog_api.services import engagement_service, post_service

router = APIRouter(prefix="/api/posts", tags=["posts"])


@router.get("")
async def list_posts(
    pagination: PaginationParams = Depends(),
    category: int | None = Query(None, gt=0, description="Filter by category id."),
    author: int | None = Query(None, gt=0, description="Filter by author id."),
    search: str | None = Query(None, max_length=100, description="Title/content substring."),
    tag: str | None = Query(None, max_length=50, description="Tag name."),
    db: AsyncSession = Depends(get_db),
):
    result = await post_service.get_posts(
        db,
        pagination.page,
        pagination.page_size,
        pagination.sort_by,
        pagination.sort_order,
        category_id=category,
        author_id=author,
        search=search,
        tag=tag,
    )
    return envelope("Posts retrieved", result)


@router.get("/{post_id}")
async def get_post(post_id: int, db: AsyncSession = Depends(get_db)):
    post = await post_service.get_post(db, post_id)
    return envelope("Post retrieved", {"post": post})


@router.post("", status_code=201)
async def create_post(
    data: PostCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await post_service.create_post(db, user, data)
    return envelope("Post created successfully", {"post": post})


@router.put("/{post_id}")
async def update_post(
    post_id: int,
    data: PostUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await post_service.update_post(db, user, post_id, data)
    return envelope("Post updated successfully", {"post": post})


@router.delete("/{post_id}")
async def delete_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await post_service.delete_post(db, user, post_id)
    return envelope("Post deleted successfully")


@router.post("/{post_id}/like")
async def like_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await engagement_service.add_like(db, post_id, user)
    return envelope("Post liked successfully", result)


@router.delete("/{post_id}/like")
async def unlike_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await engagement_service.remove_like(db, post_id, user)
    return envelope("Post unliked successfully", result)


@router.post("/{post_id}/comments", status_code=201)
async def add_comment(
    post_id: int,
    data: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await engagement_service.add_comment(db, post_id, user, data)
    return envelope("Comment added successfully", result)
