"""
Integration tests for /subscription endpoints and the entitlement guard.
"""
import pytest
import stripe
from types import SimpleNamespace
from datetime import datetime, timedelta
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobbyai.main import app, register_exception_handlers
from jobbyai.db.base import Base
from jobbyai.db.models.user import User
from jobbyai.db.models.subscription import Subscription
from jobbyai.db.session import get_db
from jobbyai.core import config
from jobbyai.core.entitlement_guard import require_entitlement
from jobbyai.core.errors import UsageLedgerWriteConflict
from jobbyai.core.plan_catalog import FeatureKey, PlanId
from jobbyai.core.security import create_access_token
from jobbyai.services import billing_service, subscription_service, usage_ledger


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


# Minimal app exercising the guard dependency the way feature routes use it
guarded_app = FastAPI()
register_exception_handlers(guarded_app)


@guarded_app.post("/resume/generate")
def generate_resume(user: User = Depends(require_entitlement(FeatureKey.RESUME_GENERATION))):
    return {"user_id": user.id, "generated": True}


@pytest.fixture(scope="function", autouse=True)
def setup_db():
    """Create and drop tables for each test."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session():
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def test_user(db_session):
    user = User(full_name="Test User", email="test@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def headers(test_user):
    token = create_access_token({"sub": test_user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client():
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def guarded_client():
    guarded_app.dependency_overrides[get_db] = override_get_db
    yield TestClient(guarded_app)
    guarded_app.dependency_overrides.clear()


@pytest.fixture
def pro_subscription(db_session, test_user):
    return subscription_service.activate(
        db_session, test_user.id, PlanId.PRO, datetime.utcnow() + timedelta(days=30)
    )


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "JobbyAI entitlements API running"


def test_list_plans(client):
    response = client.get("/subscription/plans")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert [plan["id"] for plan in data["data"]] == ["FREE", "BASIC", "PRO", "ENTERPRISE"]

    basic = data["data"][1]
    assert basic["price"] == 999
    assert basic["limits"]["resume_generation"] == 25
    assert basic["limits"]["templates"] == "unlimited"


def test_current_subscription_for_new_user_is_trial(client, headers):
    response = client.get("/subscription/current", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["plan"] == "FREE"
    assert data["status"] == "TRIALING"
    assert data["is_trial_active"] is True
    assert data["days_left_in_trial"] == 14
    assert data["plan_details"]["limits"]["resume_generation"] == 1


def test_cancel_at_period_end(client, headers, pro_subscription):
    response = client.post("/subscription/cancel", json={}, headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "ACTIVE"
    assert data["cancel_at_period_end"] is True
    assert data["entitled_plan"] == "PRO"


def test_cancel_immediately_then_again_conflicts(client, headers, pro_subscription):
    response = client.post("/subscription/cancel", json={"immediate": True}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CANCELED"
    assert response.json()["data"]["entitled_plan"] == "FREE"

    response = client.post("/subscription/cancel", json={}, headers=headers)
    assert response.status_code == 409
    assert response.json()["success"] is False
    assert response.json()["code"] == "INVALID_TRANSITION"


def test_reserve_feature_until_limit(client, headers):
    """FREE allows one resume generation, then returns the 429 envelope."""
    response = client.post("/subscription/usage/resume_generation", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"allowed": True, "remaining": 0, "limit": 1, "used": 1, "plan": "FREE"}

    response = client.post("/subscription/usage/resume_generation", headers=headers)
    assert response.status_code == 429
    assert response.json() == {
        "success": False,
        "error": "resume_generation limit reached",
        "code": "USAGE_LIMIT_EXCEEDED",
    }


def test_reserve_unlimited_feature(client, headers, pro_subscription):
    for expected_used in range(1, 4):
        response = client.post("/subscription/usage/ai_analysis", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["remaining"] == "unlimited"
        assert data["limit"] == "unlimited"
        assert data["used"] == expected_used


def test_peek_feature_does_not_consume(client, headers):
    for _ in range(2):
        response = client.get("/subscription/usage/templates", headers=headers)
        assert response.status_code == 200
        assert response.json()["remaining"] == 3
        assert response.json()["used"] == 0


def test_unknown_feature_is_rejected(client, headers):
    response = client.post("/subscription/usage/cover_letter", headers=headers)
    assert response.status_code == 422


def test_unknown_plan_returns_error_envelope(client, headers, test_user, db_session):
    db_session.add(Subscription(
        user_id=test_user.id,
        plan="GOLD",
        status="ACTIVE",
        current_period_end=datetime.utcnow() + timedelta(days=30),
    ))
    db_session.commit()

    response = client.post("/subscription/usage/ai_analysis", headers=headers)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Unknown plan: GOLD", "code": "UNKNOWN_PLAN"}


def test_missing_subscription_without_provisioning(client, headers, monkeypatch):
    monkeypatch.setattr(config, "AUTO_PROVISION_SUBSCRIPTIONS", False)

    response = client.post("/subscription/usage/templates", headers=headers)

    assert response.status_code == 500
    assert response.json()["code"] == "NO_SUBSCRIPTION"


def test_reserve_requires_authentication(client):
    response = client.post("/subscription/usage/templates")
    assert response.status_code == 401


def test_guard_allows_then_blocks(guarded_client, headers, test_user):
    response = guarded_client.post("/resume/generate", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"user_id": test_user.id, "generated": True}

    response = guarded_client.post("/resume/generate", headers=headers)
    assert response.status_code == 429
    assert response.json()["code"] == "USAGE_LIMIT_EXCEEDED"


def test_guard_unlimited_plan_never_blocks(guarded_client, headers, pro_subscription):
    for _ in range(5):
        assert guarded_client.post("/resume/generate", headers=headers).status_code == 200


def test_ledger_write_conflict_returns_error_envelope(client, headers, monkeypatch):
    def failing_write(db, operation, context):
        raise UsageLedgerWriteConflict(f"Usage ledger write failed: {context}")

    monkeypatch.setattr(usage_ledger, "_run_write", failing_write)

    response = client.post("/subscription/usage/templates", headers=headers)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "USAGE_LEDGER_CONFLICT"
    assert body["error"].startswith("Usage ledger write failed")


@pytest.fixture
def stripe_checkout(monkeypatch):
    """Record checkout sessions instead of calling Stripe."""
    calls = []

    def fake_create(**params):
        calls.append(params)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(billing_service, "PRICE_ID_TO_PLAN", {"price_pro": PlanId.PRO})
    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    return calls


def test_upgrade_creates_checkout_session(client, headers, test_user, stripe_checkout):
    response = client.post("/subscription/upgrade", json={"plan": "pro"}, headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {"url": "https://checkout.stripe.com/c/pay/cs_test_123", "session_id": "cs_test_123"},
    }

    assert len(stripe_checkout) == 1
    params = stripe_checkout[0]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_pro", "quantity": 1}]
    assert params["metadata"] == {"user_id": str(test_user.id), "plan": "PRO"}
    assert params["subscription_data"] == {"metadata": {"user_id": str(test_user.id), "plan": "PRO"}}
    assert params["customer_email"] == "test@example.com"
    assert params["success_url"] == f"{config.FRONTEND_URL}/dashboard?upgraded=1"


def test_upgrade_does_not_change_plan_before_payment(client, headers, stripe_checkout):
    client.post("/subscription/upgrade", json={"plan": "PRO"}, headers=headers)

    response = client.get("/subscription/current", headers=headers)
    assert response.json()["data"]["plan"] == "FREE"
    assert response.json()["data"]["status"] == "TRIALING"


def test_upgrade_reuses_stripe_customer(client, headers, db_session, test_user, stripe_checkout):
    basic = subscription_service.activate(
        db_session, test_user.id, PlanId.BASIC, datetime.utcnow() + timedelta(days=30),
        stripe_customer_id="cus_123",
    )
    assert basic.stripe_customer_id == "cus_123"

    response = client.post("/subscription/upgrade", json={"plan": "PRO"}, headers=headers)

    assert response.status_code == 200
    assert stripe_checkout[0]["customer"] == "cus_123"
    assert "customer_email" not in stripe_checkout[0]


def test_upgrade_to_free_is_rejected(client, headers, stripe_checkout):
    response = client.post("/subscription/upgrade", json={"plan": "FREE"}, headers=headers)
    assert response.status_code == 400
    assert stripe_checkout == []


def test_upgrade_to_unknown_plan_is_rejected(client, headers, stripe_checkout):
    response = client.post("/subscription/upgrade", json={"plan": "GOLD"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown plan: GOLD"


def test_upgrade_to_current_plan_is_rejected(client, headers, pro_subscription, stripe_checkout):
    response = client.post("/subscription/upgrade", json={"plan": "PRO"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Already subscribed to PRO"
    assert stripe_checkout == []


def test_upgrade_without_price_configured_is_rejected(client, headers, stripe_checkout):
    response = client.post("/subscription/upgrade", json={"plan": "ENTERPRISE"}, headers=headers)
    assert response.status_code == 400
    assert "ENTERPRISE" in response.json()["detail"]


def test_upgrade_requires_authentication(client):
    response = client.post("/subscription/upgrade", json={"plan": "PRO"})
    assert response.status_code == 401
