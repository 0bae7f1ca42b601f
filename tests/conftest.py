"""
Pytest configuration and shared fixtures.

Every test gets a fresh in-memory SQLite database bound through
dependency overrides; Stripe and Resend are never contacted.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OTP_SECRET", "test-otp-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings, get_settings
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models import License, LicenseDomain, LicenseStatus


TEST_SETTINGS = Settings(
    database_url="sqlite://",
    stripe_secret_key="sk_test_dummy",
    stripe_webhook_secret="whsec_test_secret",
    resend_api_key="re_test_key",
    email_from="SquarePro <no-reply@example.com>",
    otp_secret="test-otp-secret",
    admin_token="admin-token",
    app_base_url="https://app.example.com",
    default_max_domains=2,
)


@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session, settings):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_license(db_session):
    """Insert a license; extra keyword arguments override the defaults."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        n = counter["n"]
        values = {
            "license_key": f"SPRO_test_key_{n}",
            "stripe_customer_id": f"cus_{n}",
            "stripe_subscription_id": f"sub_{n}",
            "status": LicenseStatus.ACTIVE,
            "customer_email": f"owner{n}@example.com",
            "max_domains": 2,
        }
        values.update(overrides)
        license = License(**values)
        db_session.add(license)
        db_session.commit()
        db_session.refresh(license)
        return license

    return _make


@pytest.fixture
def bind_domain(db_session):
    def _bind(license, hostname):
        now = datetime.utcnow()
        domain = LicenseDomain(license_id=license.id, hostname=hostname, created_at=now, last_seen_at=now)
        db_session.add(domain)
        db_session.commit()
        return domain

    return _bind
