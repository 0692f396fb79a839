from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import get_current_user
from blog_api.models import User
from blog_api.schemas import AccountStatusUpdate, envelope
from blog_api.services import user_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/{user_id}")
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_user_profile(db, user_id)
    return envelope("User retrieved", {"user": user})


@router.put("/{user_id}/status")
async def set_account_status(
    user_id: int,
    data: AccountStatusUpdate,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.set_active(db, actor, user_id, data.is_active)
    message = "Account activated" if data.is_active else "Account deactivated"
    return envelope(message, {"user": user})
