import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blog_api.config import settings
from blog_api.exceptions import register_exception_handlers
from blog_api.middleware import RequestLoggingMiddleware, configure_logging
from blog_api.routers import auth, categories, posts, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting blog API (env=%s)", settings.APP_ENV)
    yield
    logger.info("Shutting down blog API")


app = FastAPI(
    title="Blog API",
    description="Blog content service: accounts, posts, categories, likes and comments",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    # Credentials must not be advertised together with a wildcard origin.
    allow_credentials="*" not in settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers
app.include_router(auth.router)
app.include_router(posts.router)
app.include_router(categories.router)
app.include_router(users.router)


@app.get("/")
async def root():
    return {
        "success": True,
        "message": "Welcome to the Blog API",
        "version": "1.0.0",
        "endpoints": {
            "auth": "/api/auth",
            "posts": "/api/posts",
            "categories": "/api/categories",
            "users": "/api/users",
            "health": "/health",
        },
    }


@app.get("/health")
async def health():
    return {"success": True, "status": "healthy", "version": "1.0.0"}
