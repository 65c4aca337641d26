import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from feedesk.auth.models import User
from feedesk.auth.security import create_access_token, hash_password
from feedesk.core.balance_service import initialize_balance
from feedesk.core.enums import FeeAssignmentStatus
from feedesk.core.models import FeeAssignment, FeeStructure, Student
from feedesk.db.session import Base, get_db
from feedesk.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "StrongPass123"


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """One in-memory database per test, shared by every session through StaticPool."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# --- Users and tokens ---
async def _create_user(db: AsyncSession, email: str, role: str, full_name: str) -> User:
    user = User(
        email=email,
        full_name=full_name,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture()
async def admin_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "admin@school.edu", "admin", "Asha Admin")


@pytest.fixture()
async def accountant_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "accounts@school.edu", "accountant", "Arun Accounts")


@pytest.fixture()
async def parent_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "parent@school.edu", "parent", "Priya Parent")


@pytest.fixture()
async def other_parent_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "other.parent@school.edu", "parent", "Omar Parent")


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(
        subject={"sub": str(user.id), "user_id": str(user.id), "email": user.email, "role": user.role}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(admin_user: User) -> Dict[str, str]:
    return auth_headers(admin_user)


@pytest.fixture()
def accountant_headers(accountant_user: User) -> Dict[str, str]:
    return auth_headers(accountant_user)


@pytest.fixture()
def parent_headers(parent_user: User) -> Dict[str, str]:
    return auth_headers(parent_user)


@pytest.fixture()
def other_parent_headers(other_parent_user: User) -> Dict[str, str]:
    return auth_headers(other_parent_user)


# --- Domain data ---
@pytest.fixture()
def make_student(db_session: AsyncSession) -> Callable:
    counter = {"n": 0}

    async def _make(class_name: str = "10", section: str = "A", parent_id=None) -> Student:
        counter["n"] += 1
        n = counter["n"]
        student = Student(
            student_code=f"S{class_name}{section}{n:03d}",
            first_name=f"Student{n}",
            last_name="Test",
            class_name=class_name,
            section=section,
            roll_number=str(n),
            parent_id=parent_id,
        )
        db_session.add(student)
        await db_session.commit()
        await db_session.refresh(student)
        return student

    return _make


@pytest.fixture()
def make_fee_structure(db_session: AsyncSession) -> Callable:
    async def _make(
        amount: str = "1000.00",
        due_date: date = None,
        late_fee: str = "0",
        class_name: str = "10",
        fee_type: str = "tuition",
        academic_year: str = "2024-2025",
    ) -> FeeStructure:
        fs = FeeStructure(
            class_name=class_name,
            fee_type=fee_type,
            amount=Decimal(amount),
            academic_year=academic_year,
            due_date=due_date or (date.today() + timedelta(days=30)),
            late_fee_amount=Decimal(late_fee),
            is_mandatory=True,
            is_active=True,
        )
        db_session.add(fs)
        await db_session.commit()
        await db_session.refresh(fs)
        return fs

    return _make


@pytest.fixture()
def assign_fee(db_session: AsyncSession) -> Callable:
    """Assign a fee and open its balance, as the assignment endpoint does."""

    async def _assign(student: Student, fs: FeeStructure) -> FeeAssignment:
        fa = FeeAssignment(
            student_id=student.id,
            fee_structure_id=fs.id,
            status=FeeAssignmentStatus.assigned.value,
        )
        db_session.add(fa)
        await db_session.flush()
        await initialize_balance(db_session, student.id, fs)
        await db_session.commit()
        await db_session.refresh(fa)
        return fa

    return _assign
