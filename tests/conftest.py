import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import linescout.models  # noqa: F401
from linescout.core.config import settings
from linescout.core.deps import get_db
from linescout.db.base import Base
from linescout.main import app
from linescout.routers.auth import login_rate_limiter
from linescout.routers.quotes import pay_rate_limiter
from linescout.services import payment_provider
from linescout.services.payment_provider import PaymentInitRequest, PaymentInitResult, PaymentVerification


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    login_rate_limiter.clear()
    pay_rate_limiter.clear()


class FakeCheckoutProvider:
    """Records initialized checkouts; each one verifies as paid in full."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.checkouts: dict[str, PaymentInitRequest] = {}

    def initialize_payment(self, request: PaymentInitRequest) -> PaymentInitResult:
        self.checkouts[request.reference] = request
        return PaymentInitResult(
            provider=self.name,
            payment_reference=request.reference,
            checkout_url=request.callback_url,
        )

    def verify_payment(self, reference: str) -> PaymentVerification:
        request = self.checkouts.get(reference)
        return PaymentVerification(
            provider=self.name,
            reference=reference,
            successful=request is not None,
            amount=request.amount if request else Decimal("0.00"),
            currency=request.currency if request else "NGN",
            status="success" if request else "not_found",
        )


@pytest.fixture()
def fake_paystack(monkeypatch):
    provider = FakeCheckoutProvider("paystack")
    monkeypatch.setitem(payment_provider._PAYMENT_PROVIDERS, "paystack", provider)
    return provider
