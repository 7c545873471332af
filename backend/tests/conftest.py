# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("OPENAI_API_KEY", None)

from models import Base, User, UserRole  # noqa: E402
from auth import AuthService  # noqa: E402
from database import get_db_session  # noqa: E402
from template_service import TemplateService  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "Onboard1!"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        await TemplateService(session).ensure_default_categories()
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, db_session):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db_session, email, role, first_name, department=None, is_active=True):
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        password_hash=AuthService.hash_password(PASSWORD),
        first_name=first_name,
        last_name="Tester",
        role=role,
        department=department,
        is_active=is_active,
        login_attempts=0,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def employee_user(db_session):
    """Create an employee in Engineering"""
    return await _make_user(db_session, "employee@acme-hr.com", UserRole.EMPLOYEE, "Emma", "Engineering")


@pytest_asyncio.fixture
async def hr_user(db_session):
    """Create an HR manager"""
    return await _make_user(db_session, "hr@acme-hr.com", UserRole.HR_MANAGER, "Hugo", "People")


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create an admin"""
    return await _make_user(db_session, "admin@acme-hr.com", UserRole.ADMIN, "Ada", "IT")


@pytest.fixture
def auth_headers(db_session):
    """Log a user in through AuthService and return bearer headers.

    A real session row backs the token, so verify_token accepts it.
    """
    async def _login(user: User, password: str = PASSWORD) -> dict:
        result = await AuthService(db_session).login(user.email, password)
        return {"Authorization": f"Bearer {result.token}"}
    return _login
