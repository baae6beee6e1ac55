"""
Test configuration
Fixtures for an in-memory database, a controllable clock and seeded users
"""

from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from ..app import create_app
from ..config.meal_policy import MealPolicy
from ..config.settings import Settings
from ..core.database import DatabaseManager
from ..core.security import create_access_token
from ..models.transaction import TransactionType
from ..models.user import Role, UserCreate
from ..services.consistency_service import ConsistencyService
from ..services.expiry_service import ExpiryService
from ..services.ledger_service import LedgerService
from ..services.meal_service import MealService
from ..services.payment_service import PaymentService
from ..services.redemption_service import RedemptionService
from ..services.user_service import UserService

# Monday
START = datetime(2026, 3, 2, 8, 0)


class FakeClock:
    """Callable clock that tests move by hand"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return MealPolicy()


@pytest.fixture
def test_db():
    db = DatabaseManager(":memory:")
    yield db
    db.close()


@pytest.fixture
def ledger(test_db, clock):
    return LedgerService(test_db, clock)


@pytest.fixture
def user_service(test_db, clock):
    return UserService(test_db, clock)


@pytest.fixture
def meal_service(test_db, policy, clock, ledger):
    return MealService(test_db, policy, clock, ledger)


@pytest.fixture
def redemption_service(test_db, policy, clock, ledger):
    return RedemptionService(test_db, policy, clock, ledger)


@pytest.fixture
def payment_service(test_db, clock, ledger):
    return PaymentService(test_db, clock, ledger)


@pytest.fixture
def expiry_service(test_db, policy, clock):
    return ExpiryService(test_db, policy, clock)


@pytest.fixture
def consistency_service(test_db, clock):
    return ConsistencyService(test_db, clock)


@pytest.fixture
def make_user(user_service, ledger):
    """Factory: create a user and fund it through the ledger"""
    counter = {"n": 0}

    def _make(role: Role = Role.STUDENT, balance: int = 0, cin: str = None):
        counter["n"] += 1
        user = user_service.create_user(UserCreate(
            cin=cin or f"CIN{counter['n']:05d}",
            first_name="Test",
            last_name=f"User{counter['n']}",
            role=role,
        ))
        if balance > 0:
            ledger.apply_transaction(user.id, TransactionType.BALANCE_RECHARGE, balance, None)
        elif balance < 0:
            ledger.apply_transaction(user.id, TransactionType.BALANCE_ADJUSTMENT, balance, None)
        return user_service.get_user(user.id)

    return _make


@pytest.fixture
def student(make_user):
    return make_user(Role.STUDENT, balance=1000)


@pytest.fixture
def teacher(make_user):
    return make_user(Role.TEACHER, balance=10000)


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN)


@pytest.fixture
def cashier(make_user):
    return make_user(Role.PAYMENT_STAFF)


@pytest.fixture
def verifier(make_user):
    return make_user(Role.VERIFICATION_STAFF)


@pytest.fixture
def tomorrow(clock) -> date:
    return clock().date() + timedelta(days=1)


@pytest.fixture
def assert_consistent(consistency_service):
    """Check balance == sum(ledger) and the schedule invariants"""

    def _check():
        result = consistency_service.check_ledger_consistency()
        assert result.issues == []

    return _check


@pytest.fixture
def test_settings():
    return Settings(
        database_url="duckdb:///:memory:",
        jwt_secret_key="test-secret-key",
        api_title="Canteen API (Test)",
        api_version="1.0.0-test",
        debug=True,
        expiry_sweep_interval_seconds=0,
    )


@pytest.fixture
def client(test_settings, test_db, clock):
    app = create_app(settings=test_settings, db=test_db, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(test_settings):
    """Factory: bearer headers for a user"""

    def _headers(user):
        token = create_access_token(user.id, user.role, test_settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers
