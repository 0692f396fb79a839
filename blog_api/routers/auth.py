from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import get_current_user, get_password_hasher, get_token_service
from blog_api.models import User
from blog_api.schemas import LoginRequest, PasswordChange, ProfileUpdate, RegisterRequest, envelope
from blog_api.security import PasswordHasher, TokenService
from blog_api.services import auth_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
):
    result = await auth_service.register(db, data, hasher, tokens)
    return envelope("User registered successfully", result)


@router.post("/login")
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
):
    result = await auth_service.login(db, data, hasher, tokens)
    return envelope("Login successful", result)


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return envelope("Current user", auth_service.get_me(user))


@router.put("/profile")
async def update_profile(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await auth_service.update_profile(db, user, data)
    return envelope("Profile updated successfully", result)


@router.put("/change-password")
async def change_password(
    data: PasswordChange,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    await auth_service.change_password(db, user, data, hasher)
    return envelope("Password changed successfully")
