from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import get_current_user, require_role
from blog_api.models import Role, User
from blog_api.schemas import CategoryCreate, CategoryUpdate, envelope
from blog_api.services import category_service

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("")
async def list_categories(db: AsyncSession = Depends(get_db)):
    categories = await category_service.get_categories(db)
    return envelope("Categories retrieved", {"categories": categories})


@router.get("/{category_id}")
async def get_category(category_id: int, db: AsyncSession = Depends(get_db)):
    category = await category_service.get_category(db, category_id)
    return envelope("Category retrieved", {"category": category})


@router.post("", status_code=201)
async def create_category(
    data: CategoryCreate,
    user: User = Depends(require_role(Role.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    category = await category_service.create_category(db, user, data)
    return envelope("Category created successfully", {"category": category})


@router.put("/{category_id}")
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    # Role is checked in the service, after the category lookup (404 before 403).
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    category = await category_service.update_category(db, user, category_id, data)
    return envelope("Category updated successfully", {"category": category})
