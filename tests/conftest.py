"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch the real
database. Tables are created before each test and dropped after it.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

from datetime import datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from functools import lru_cache  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from banking_core.api.deps import get_notifier  # noqa: E402
from banking_core.main import app  # noqa: E402
from banking_core.models import Account, Base  # noqa: E402
from banking_core.models.base import get_db, utcnow  # noqa: E402
from banking_core.models.enums import AccountStatus  # noqa: E402
from banking_core.services.account_service import hash_pin  # noqa: E402
from banking_core.services.notifications import RecordingNotifier  # noqa: E402


TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)


# pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT handling.
# Take over transaction control; IMMEDIATE also serializes writers the
# way row locks would on PostgreSQL.
@event.listens_for(engine, "connect")
def _disable_pysqlite_begin(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


# PIN given to every make_account() account unless overridden
DEFAULT_PIN = "1234"

# One bcrypt hash per distinct test PIN
_pin_hash = lru_cache(maxsize=None)(hash_pin)


TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db_session, notifier):
    """Test client bound to the test session and a recording notifier."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


_account_numbers = count(1000000001)


@pytest.fixture
def make_account(db_session):
    """
    Create and commit an account with the given balances and codes.
    Pass pin=None for an account without a transaction PIN.
    """
    def _make(
        cash="0",
        bitcoin="0",
        status=AccountStatus.ACTIVE,
        pin=DEFAULT_PIN,
        imf_code=None,
        cot_code=None,
        daily_transfer_limit="10000",
        name="Test Holder",
    ):
        account = Account(
            account_number=str(next(_account_numbers)),
            name=name,
            email=f"{name.lower().replace(' ', '.')}@example.com",
            currency="USD",
            cash_balance=Decimal(cash),
            bitcoin_balance=Decimal(bitcoin),
            status=status,
            daily_transfer_limit=Decimal(daily_transfer_limit),
            pin_hash=_pin_hash(pin) if pin else None,
            imf_code=imf_code,
            cot_code=cot_code,
        )
        db_session.add(account)
        db_session.commit()
        return account
    return _make


class FakeClock:
    """A clock tests can move forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    """Factory for independent sessions, e.g. one per worker thread."""
    return TestSessionLocal
