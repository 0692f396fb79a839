import re

from pydantic import BaseModel, Field, field_validator

from blog_api.models import PostStatus

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def _strip(value):
    return value.strip() if isinstance(value, str) else value


TAG_MAX_LENGTH = 50


def _normalize_tags(values: list[str]) -> list[str]:
    """Lowercase and trim tag names, dropping blanks and repeats."""
    tags: list[str] = []
    for value in values:
        name = value.strip().lower()
        if not name or name in tags:
            continue
        if len(name) > TAG_MAX_LENGTH:
            raise ValueError(f"Tags cannot exceed {TAG_MAX_LENGTH} characters")
        tags.append(name)
    return tags


def _check_password_strength(value: str) -> str:
    if not (
        re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"\d", value)
    ):
        raise ValueError(
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number"
        )
    return value


# --- Auth ---

class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    email: str = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)

    @field_validator("username", mode="before")
    @classmethod
    def _strip_username(cls, value):
        return _strip(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("Please provide a valid email")
        return value

    @field_validator("password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(BaseModel):
    # Either the account's email or its username.
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)
    bio: str | None = Field(None, max_length=500)
    avatar: str | None = Field(None, max_length=500)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class AccountStatusUpdate(BaseModel):
    is_active: bool


# --- Category ---

class CategoryCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    description: str | None = Field(None, max_length=200)
    color: str = Field("#007bff", pattern=r"^#[0-9A-Fa-f]{6}$")

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return _strip(value)


class CategoryUpdate(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=50)
    description: str | None = Field(None, max_length=200)
    color: str | None = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    is_active: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return _strip(value)


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=3, max_length=100)
    content: str = Field(min_length=10)
    category: int = Field(gt=0, description="Category id.")
    status: PostStatus = PostStatus.PUBLISHED
    tags: list[str] = []

    @field_validator("title", "content", mode="before")
    @classmethod
    def _strip_text(cls, value):
        return _strip(value)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return _normalize_tags(value)


class PostUpdate(BaseModel):
    title: str | None = Field(None, min_length=3, max_length=100)
    content: str | None = Field(None, min_length=10)
    category: int | None = Field(None, gt=0)
    status: PostStatus | None = None
    # Replaces the whole tag set; an empty list clears it.
    tags: list[str] | None = None

    @field_validator("title", "content", mode="before")
    @classmethod
    def _strip_text(cls, value):
        return _strip(value)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _normalize_tags(value)


# --- Comment ---

class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=500)

    @field_validator("content", mode="before")
    @classmethod
    def _strip_content(cls, value):
        return _strip(value)


# --- Envelope ---

def envelope(message: str, data: dict | None = None) -> dict:
    body: dict = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body
