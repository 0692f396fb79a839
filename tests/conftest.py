"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- The credential providers are overridden as well: bcrypt runs at its
  minimum cost (4 rounds) and tokens are signed with a test-only secret.
- All tables are created fresh before each test and dropped after, giving
  each test a clean isolated state without needing transactions or truncation.
"""
from dataclasses import dataclass
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blog_api.database import Base, enable_sqlite_foreign_keys, get_db
from blog_api.dependencies import get_password_hasher, get_token_service
from blog_api.main import app
from blog_api.models import Category, Role, User
from blog_api.security import PasswordHasher, TokenConfig, TokenService
from blog_api.transforms import apply_changes, hash_password_change, prepare, slugify

DEFAULT_PASSWORD = "Passw0rd"

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ---------------------------------------------------------------------------
# Credential services: cheap hashing, fixed secret
# ---------------------------------------------------------------------------

TEST_TOKEN_CONFIG = TokenConfig(secret_key="test-secret-key", lifetime=timedelta(days=7))
test_hasher = PasswordHasher(rounds=4)
test_tokens = TokenService(TEST_TOKEN_CONFIG)


# ---------------------------------------------------------------------------
# Dependency overrides
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_password_hasher] = lambda: test_hasher
app.dependency_overrides[get_token_service] = lambda: test_tokens


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that call service functions
    directly.  Nothing is committed; the table drop discards it all.
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def hasher() -> PasswordHasher:
    return test_hasher


@pytest.fixture
def token_config() -> TokenConfig:
    return TEST_TOKEN_CONFIG


@dataclass
class Account:
    id: int
    username: str
    email: str
    token: str

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture
def make_account():
    """
    Factory that commits an account straight to the database and returns
    it together with a valid bearer token.  Used for roles the public API
    cannot create (admins) and to keep tests focused.
    """

    async def _make(
        username: str = "alice",
        role: Role = Role.USER,
        is_active: bool = True,
        password: str = DEFAULT_PASSWORD,
    ) -> Account:
        email = f"{username}@example.com"
        async with async_session_test() as session:
            user = User(username=username, email=email, role=role, is_active=is_active)
            apply_changes(user, prepare({"password": password}, hash_password_change(test_hasher)))
            session.add(user)
            await session.commit()
            return Account(id=user.id, username=username, email=email, token=test_tokens.issue(user.id))

    return _make


@pytest.fixture
def make_category():
    """Factory that commits a category and returns its id."""

    async def _make(name: str = "Technology", is_active: bool = True) -> int:
        async with async_session_test() as session:
            category = Category(name=name, slug=slugify(name), is_active=is_active)
            session.add(category)
            await session.commit()
            return category.id

    return _make


@pytest.fixture
def fail_updates_of():
    """
    Install a trigger that aborts every UPDATE touching ``table.column``.
    The trigger goes away with its table in ``setup_db``.
    """

    async def _install(table: str, column: str) -> None:
        async with engine_test.begin() as conn:
            await conn.execute(text(
                f"CREATE TRIGGER fail_{table}_{column} BEFORE UPDATE OF {column} ON {table} "
                "BEGIN SELECT RAISE(ABORT, 'forced failure'); END"
            ))

    return _install


@pytest.fixture
def savepoint_rollbacks():
    """Record the name of every SAVEPOINT rolled back on the test engine."""
    names: list[str] = []

    def _record(conn, name, context):
        names.append(name)

    event.listen(engine_test.sync_engine, "rollback_savepoint", _record)
    yield names
    event.remove(engine_test.sync_engine, "rollback_savepoint", _record)
