"""
Centralized Test Configuration.
"""

import pytest
from datetime import date
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, get_session_factory, Base
from backend.app.core.clock import FixedClock
from backend.app.core.dependencies import get_clock, get_recurring_scheduler
from backend.app.core.jwt import create_access_token
from backend.app.core.redis_client import get_redis
from backend.app.core.reliability import notifier_circuit_breaker
from backend.app.domain.ledger.balance import compute_balance_impact
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.models.category import Category
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import (
    CategoryType, RecurrenceFrequency, TransactionStatus, TransactionType
)
from backend.app.services.ledger_notifier import InAppLedgerNotifier
import backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

TODAY = date(2025, 3, 15)
USER_ID = 1
OTHER_USER_ID = 2
ADMIN_ID = 99


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("Redis unavailable")

    async def ping(self):
        self._check()
        if self._closed:
            return False
        return True

    async def get(self, key):
        self._check()
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        self._check()
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def clock():
    """Pinned 'now' shared by the app and the test."""
    return FixedClock(TODAY)


@pytest.fixture(autouse=True)
def apply_overrides(mock_redis, clock):
    """Route the app's database, clock and Redis to the test doubles."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_redis] = override_get_redis
    # One parent at a time: every session shares the single StaticPool connection
    app.dependency_overrides[get_recurring_scheduler] = lambda: RecurringScheduler(
        TestingSessionLocal,
        clock=clock,
        notifier=InAppLedgerNotifier(TestingSessionLocal),
        max_concurrency=1,
    )
    notifier_circuit_breaker.reset_state()
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Fresh connection per test so it is bound to the test's event loop
    await engine.dispose()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


def _headers(user_id: int, username: str, role: str) -> dict:
    token = create_access_token(data={"sub": username, "user_id": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return _headers(USER_ID, "alice", "USER")


@pytest.fixture
def other_user_headers():
    return _headers(OTHER_USER_ID, "bob", "USER")


@pytest.fixture
def admin_headers():
    return _headers(ADMIN_ID, "ops", "ADMIN")


@pytest.fixture
async def expense_category(db_session):
    category = Category(owner_id=USER_ID, name="Rent", type=CategoryType.EXPENSE, is_active=True)
    db_session.add(category)
    await db_session.commit()
    return category


@pytest.fixture
async def income_category(db_session):
    category = Category(owner_id=USER_ID, name="Salary", type=CategoryType.INCOME, is_active=True)
    db_session.add(category)
    await db_session.commit()
    return category


@pytest.fixture
def make_parent(db_session, expense_category):
    """
    Factory for persisted recurring parents.

    Usage:
        parent = await make_parent(next_due=date(2025, 1, 1), max_occurrences=12)
    """
    async def factory(
        next_due: date,
        frequency: RecurrenceFrequency = RecurrenceFrequency.MONTHLY,
        interval: int = 1,
        end_date: date = None,
        max_occurrences: int = None,
        occurrence_count: int = 0,
        is_active: bool = True,
        owner_id: int = USER_ID,
        category_id: int = None,
        amount: str = "1200.00",
        anchor: date = None,
        description: str = "Monthly rent",
    ) -> LedgerEntry:
        amount = Decimal(amount)
        parent = LedgerEntry(
            owner_id=owner_id,
            category_id=category_id or expense_category.id,
            amount=amount,
            type=TransactionType.EXPENSE,
            date=anchor or next_due,
            balance_impact=compute_balance_impact(TransactionType.EXPENSE, amount),
            status=TransactionStatus.COMPLETED,
            description=description,
            tags=["housing"],
            is_recurring_parent=True,
            is_recurring_instance=False,
            recurrence_frequency=frequency,
            recurrence_interval=interval,
            recurrence_next_due_date=next_due,
            recurrence_end_date=end_date,
            recurrence_max_occurrences=max_occurrences,
            recurrence_is_active=is_active,
            recurrence_occurrence_count=occurrence_count,
            is_deleted=False,
        )
        db_session.add(parent)
        await db_session.commit()
        return parent

    return factory
