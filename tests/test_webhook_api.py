#!/usr/bin/env python3
"""
API Endpoint Tests

Tests for the FastAPI surface including:
- Subscription webhook status codes and response bodies
- CORS headers and preflight
- Token-protected usage endpoint
- Health and root endpoints

Author: Revive Team
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from models.job_record import JobKind
from subscription.billing_client import BillingProviderError
from subscription.reconciler import SubscriptionEventReconciler
from tests.test_reconciler import FakeBillingClient, event_body, subscriber_body
from web_ui.api.dependencies import get_ledger, get_reconciler
from web_ui.api.main import create_app

WEBHOOK_URL = "/webhooks/subscription"
SECRET = "whsec_test"
API_TOKEN = "api_test_token"


# ============================================================================
# TEST CONFIGURATION
# ============================================================================

@pytest.fixture
def billing():
    return FakeBillingClient()


@pytest.fixture
def app(temp_dir, ledger, billing, clock):
    """App with services wired to fakes; the lifespan is not run"""
    settings = Settings(
        _env_file=None,
        STORAGE_DIR=str(temp_dir),
        WEBHOOK_SECRET=SECRET,
        API_TOKEN=API_TOKEN,
    )
    app = create_app(settings)
    reconciler = SubscriptionEventReconciler(ledger, billing, webhook_secret=SECRET, clock=clock)
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def auth(secret=SECRET):
    return {"Authorization": f"Bearer {secret}"}


# ============================================================================
# SUBSCRIPTION WEBHOOK
# ============================================================================

class TestSubscriptionWebhook:
    """Tests for POST /webhooks/subscription"""

    def test_purchase_returns_success(self, client, billing, ledger):
        """Test a processed event returns 200 with the canonical id"""
        billing.subscribers["alice"] = subscriber_body("alice")

        response = client.post(WEBHOOK_URL, json=event_body("INITIAL_PURCHASE"), headers=auth())

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "canonical_id": "alice",
            "event_type": "INITIAL_PURCHASE",
        }
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert ledger.get_counter("alice", JobKind.VIDEO).limit == 7

    def test_test_event(self, client, billing):
        """Test a TEST event is acknowledged"""
        response = client.post(WEBHOOK_URL, json=event_body("TEST"), headers=auth())

        assert response.status_code == 200
        assert response.json()["message"] == "TEST webhook received successfully"
        assert billing.calls == []

    def test_unknown_event_type(self, client):
        """Test unhandled types still return 200"""
        response = client.post(WEBHOOK_URL, json=event_body("SUBSCRIBER_ALIAS"), headers=auth())

        assert response.status_code == 200
        assert response.json()["message"] == "Event type not handled"

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": SECRET}])
    def test_bad_secret_is_401(self, client, billing, headers):
        """Test a missing or wrong secret is rejected before parsing"""
        response = client.post(WEBHOOK_URL, json=event_body("INITIAL_PURCHASE"), headers=headers)

        assert response.status_code == 401
        assert response.text == "Unauthorized"
        assert billing.calls == []

    def test_invalid_json_is_400(self, client):
        """Test an unparseable body returns 400"""
        response = client.post(
            WEBHOOK_URL,
            content=b"{not json",
            headers={**auth(), "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"

    def test_missing_event_type_is_400(self, client):
        """Test a body without an event type returns 400"""
        response = client.post(WEBHOOK_URL, json={"event": {"app_user_id": "alice"}}, headers=auth())

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid webhook payload"

    def test_billing_failure_is_500(self, client, billing, ledger):
        """Test a failed subscriber fetch returns 500 so the provider retries"""
        billing.error = BillingProviderError("Billing provider returned 403", status_code=403)

        response = client.post(WEBHOOK_URL, json=event_body("RENEWAL"), headers=auth())

        assert response.status_code == 500
        assert "403" in response.json()["error"]
        assert ledger.owners() == []

    def test_malformed_subscriber_record_is_500(self, client, billing, ledger):
        """Test a subscriber record that cannot be parsed returns 500 so the provider retries"""
        body = subscriber_body("alice")
        body["subscriber"]["entitlements"]["pro"]["expires_date"] = "garbage"
        billing.subscribers["alice"] = body

        response = client.post(WEBHOOK_URL, json=event_body("RENEWAL"), headers=auth())

        assert response.status_code == 500
        assert "garbage" in response.json()["error"]
        assert ledger.owners() == []

    def test_bad_event_timestamp_is_400(self, client, billing):
        """Test an unparseable event timestamp is an invalid payload"""
        response = client.post(
            WEBHOOK_URL, json=event_body("RENEWAL", event_timestamp_ms="yesterday"), headers=auth(),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid webhook payload"
        assert billing.calls == []

    def test_unexpected_error_is_500(self, client, billing):
        """Test any other failure returns 500 with its message"""
        billing.error = RuntimeError("boom")

        response = client.post(WEBHOOK_URL, json=event_body("RENEWAL"), headers=auth())

        assert response.status_code == 500
        assert response.json() == {"error": "boom"}

    def test_preflight(self, client):
        """Test OPTIONS answers with CORS headers"""
        response = client.options(WEBHOOK_URL)

        assert response.status_code == 200
        assert response.text == "ok"
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "authorization" in response.headers["Access-Control-Allow-Headers"]


# ============================================================================
# USAGE ENDPOINT
# ============================================================================

class TestUsageEndpoint:
    """Tests for GET /api/v1/usage/{owner_id}"""

    def test_requires_token(self, client):
        """Test requests without a token are rejected"""
        response = client.get("/api/v1/usage/alice")

        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"

    def test_rejects_wrong_token(self, client):
        """Test a wrong token is rejected"""
        response = client.get("/api/v1/usage/alice", headers=auth("wrong"))

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API token"

    def test_returns_summary(self, client, ledger):
        """Test the summary reflects ledger usage"""
        ledger.reserve("alice", JobKind.PHOTO)

        response = client.get("/api/v1/usage/alice", headers=auth(API_TOKEN))

        assert response.status_code == 200
        data = response.json()
        assert data["owner_id"] == "alice"
        assert data["photo"]["used"] == 1
        assert data["photo"]["remaining"] == 4
        assert data["video"]["limit"] == 0

    def test_open_without_configured_token(self, temp_dir, ledger):
        """Test the endpoint is open when no API token is configured"""
        app = create_app(Settings(_env_file=None, STORAGE_DIR=str(temp_dir)))
        app.dependency_overrides[get_ledger] = lambda: ledger

        response = TestClient(app).get("/api/v1/usage/bob")

        assert response.status_code == 200
        assert response.json()["photo"]["plan_type"] == "free"


class TestServiceEndpoints:
    """Tests for root and health"""

    def test_health(self, client):
        """Test the health check"""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client):
        """Test the root endpoint"""
        assert client.get("/").json()["name"] == "Revive API"
