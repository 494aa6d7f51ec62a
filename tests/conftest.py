"""Test configuration and fixtures."""

import os
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conversion.rates import RateCache
from core.settings import Settings
from db.models import Base, ConversionSettings, FiatCurrency, Payment, PaymentStatus
from main import app
from payments.payout import SimulatedPayoutProvider

MERCHANT_ID = "merchant_green_leaf"
OTHER_MERCHANT_ID = "merchant_other"

TEST_RATES = {
    "USDC": {"USD": Decimal("1.00"), "EUR": Decimal("0.85"), "GBP": Decimal("0.73")},
    "USDT": {"USD": Decimal("1.00"), "EUR": Decimal("0.85")},
    "DAI": {"USD": Decimal("1.00")},
    "ETH": {"USD": Decimal("2000.00"), "EUR": Decimal("1700.00")},
    "BTC": {"USD": Decimal("45000.00")},
}

US_BANKING = {
    "account_type": "business",
    "bank_name": "First Hemp Credit Union",
    "account_number": "000123456789",
    "routing_number": "021000021",
    "account_holder_name": "Green Leaf LLC",
}


class StubPricingProvider:
    """Pricing provider returning fixed rates and counting calls."""

    def __init__(self, rates=None, error=None):
        self.rates = TEST_RATES if rates is None else rates
        self.error = error
        self.calls = 0

    def fetch(self, symbols, fiat_codes):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.rates


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FixedRandom:
    """Deterministic stand-in for random.Random in payout tests."""

    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Setup test environment variables before each test."""
    # Store original env vars
    original_env = dict(os.environ)

    # Set test environment variables
    os.environ.update(
        {
            "DATABASE_URL": "sqlite:///:memory:",  # Use in-memory for faster tests
            "APP_NAME": "Test Fiat Conversion",
            "ENVIRONMENT": "development",  # Use development environment for tests
            "DEBUG": "true",
            "DISABLE_TRACING": "true",
            "PAYOUT_SIMULATED_DELAY_SECONDS": "0",
        }
    )

    yield

    # Restore original env vars
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def mock_settings():
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        APP_NAME="Test Fiat Conversion",
        DEBUG=True,
        ENVIRONMENT="development",
        PAYOUT_SIMULATED_DELAY_SECONDS=0,
        PAYOUT_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def test_db_engine(mock_settings):
    """Create a test database engine and setup tables."""
    # Use StaticPool and check_same_thread=False for SQLite testing
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine):
    """Create test database session using the shared engine."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def pricing_provider():
    return StubPricingProvider()


@pytest.fixture
def rate_cache(pricing_provider):
    return RateCache(pricing_provider, staleness_seconds=300, clock=FakeClock())


@pytest.fixture
def payout_provider():
    """Payout rail that always accepts, with no artificial delay."""
    return SimulatedPayoutProvider(success_rate=1.0, delay_seconds=0)


@pytest.fixture
def completed_payment(test_db_session):
    payment = Payment(
        merchant_id=MERCHANT_ID,
        amount=Decimal("500.00"),
        crypto_amount="500",
        currency="USDC",
        status=PaymentStatus.completed,
        customer_email="buyer@example.com",
    )
    test_db_session.add(payment)
    test_db_session.commit()
    return payment


@pytest.fixture
def merchant_settings(test_db_session):
    """Active settings for MERCHANT_ID with auto-conversion on for USDC and ETH."""
    settings = ConversionSettings(
        merchant_id=MERCHANT_ID,
        auto_convert_enabled=True,
        conversion_threshold=Decimal("100"),
        preferred_fiat_currency=FiatCurrency.USD,
        banking_info=dict(US_BANKING),
        slippage_tolerance_percent=Decimal("0.5"),
        min_conversion_amount=Decimal("10"),
        max_conversion_amount=Decimal("10000"),
        conversion_delay_hours=0,
        supported_cryptos=[
            {"symbol": "USDC", "enabled": True},
            {"symbol": "ETH", "enabled": True},
            {"symbol": "BTC", "enabled": False},
        ],
        is_active=True,
    )
    test_db_session.add(settings)
    test_db_session.commit()
    return settings


@pytest.fixture
def client(mock_settings, test_db_engine, rate_cache, payout_provider):
    """Test client with proper database setup."""
    from core.dependencies import get_payout_provider, get_rate_cache
    from db.session import get_db, reset_engines

    # Reset engines to ensure clean state
    reset_engines()

    # Create a session factory bound to the test engine
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_db_engine
    )

    def override_get_db(request: Request):
        db = TestingSessionLocal()
        request.state.db = db
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Override dependencies
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_cache] = lambda: rate_cache
    app.dependency_overrides[get_payout_provider] = lambda: payout_provider

    with patch("core.dependencies._settings", mock_settings):
        with TestClient(app) as test_client:
            yield test_client

    # Clean up
    app.dependency_overrides.clear()
    reset_engines()


@pytest.fixture
def merchant_headers():
    return {"X-Merchant-Id": MERCHANT_ID}


# Pytest markers for different test types
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (SQLite)")
    config.addinivalue_line("markers", "slow: marks tests as slow running")
