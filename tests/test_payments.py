"""
Payment gateway adapter and the payments API.

Verifies:
- Signature verification (tampered bytes, missing header)
- Activation on captured payments and replay idempotency
- Order creation against a mocked gateway
- Admin subscription management
"""

import asyncio
import json

import pytest

from app.billing.ledger import SubscriptionLedger
from app.errors import InvalidPlan, InvalidSignature
from app.models.payment import ProcessedPayment
from app.services.payment_service import compute_signature

from conftest import WEBHOOK_SECRET, auth_header, signed_webhook


class TestWebhookVerification:

    def test_valid_signature_verifies(self, gateway, alice):
        body, signature = signed_webhook("pay_abc", alice.id, "basic")
        event = gateway.verify_webhook(body, signature)

        assert event.is_capture
        assert (event.payment_id, event.user_id, event.plan_id) == ("pay_abc", alice.id, "basic")

    def test_tampered_byte_fails(self, gateway, alice):
        body, signature = signed_webhook("pay_abc", alice.id, "basic")
        for index in (0, len(body) // 2, len(body) - 1):
            tampered = bytearray(body)
            tampered[index] ^= 0x01
            with pytest.raises(InvalidSignature):
                gateway.verify_webhook(bytes(tampered), signature)

    def test_missing_signature_fails(self, gateway, alice):
        body, _ = signed_webhook("pay_abc", alice.id, "basic")
        with pytest.raises(InvalidSignature):
            gateway.verify_webhook(body, None)

    def test_notes_fall_back_to_order_entity(self, gateway):
        body = json.dumps({
            "event": "order.paid",
            "payload": {
                "payment": {"entity": {"id": "pay_order"}},
                "order": {"entity": {"notes": {"user_id": "7", "plan_id": "premium"}}},
            },
        }).encode()
        event = gateway.verify_webhook(body, compute_signature(body, WEBHOOK_SECRET))

        assert event.is_capture
        assert (event.user_id, event.plan_id) == (7, "premium")


class TestWebhookEndpoint:

    def _post(self, client, body, signature):
        return client.post(
            "/api/payments/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
        )

    def test_captured_payment_activates_subscription(self, client, db, alice, notifier):
        body, signature = signed_webhook("pay_1", alice.id, "basic")
        response = self._post(client, body, signature)

        assert response.status_code == 200
        assert response.json()["status"] == "activated"
        sub = SubscriptionLedger(db).get_active(alice.id)
        assert (sub.plan_id, sub.images_limit, sub.images_generated) == ("basic", 2, 0)
        notifier.send_subscription_confirmation.assert_called_once()

    def test_activation_runs_off_the_event_loop(self, client, alice, notifier):
        loop_running = []

        def record_loop(*args):
            try:
                asyncio.get_running_loop()
                loop_running.append(True)
            except RuntimeError:
                loop_running.append(False)
            return True

        notifier.send_subscription_confirmation.side_effect = record_loop
        body, signature = signed_webhook("pay_1", alice.id, "basic")

        assert self._post(client, body, signature).json()["status"] == "activated"
        assert loop_running == [False]

    def test_replay_does_not_reset_usage(self, client, db, alice, notifier):
        body, signature = signed_webhook("pay_1", alice.id, "basic")
        self._post(client, body, signature)
        SubscriptionLedger(db).consume(alice.id)
        db.commit()

        response = self._post(client, body, signature)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"
        assert SubscriptionLedger(db).get(alice.id).images_generated == 1
        assert db.query(ProcessedPayment).count() == 1
        notifier.send_subscription_confirmation.assert_called_once()

    def test_bad_signature_rejected(self, client, db, alice):
        body, _ = signed_webhook("pay_1", alice.id, "basic")
        response = self._post(client, body, "0" * 64)

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidSignature"
        assert SubscriptionLedger(db).get(alice.id) is None

    def test_other_events_are_ignored(self, client, db, alice):
        body, signature = signed_webhook("pay_1", alice.id, "basic", event="payment.failed")
        response = self._post(client, body, signature)

        assert response.json()["status"] == "ignored"
        assert SubscriptionLedger(db).get(alice.id) is None

    def test_unknown_plan_in_notes(self, client, alice):
        body, signature = signed_webhook("pay_1", alice.id, "platinum")
        response = self._post(client, body, signature)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidPlan"


class TestCreateSession:

    def test_create_session_sends_smallest_unit(self, gateway, gateway_requests):
        session = gateway.create_session(42, "premium")

        assert gateway_requests[0]["amount"] == 10000
        assert gateway_requests[0]["currency"] == "INR"
        assert gateway_requests[0]["notes"] == {"user_id": "42", "plan_id": "premium"}
        assert session["order_id"] == "order_test123"
        assert session["amount"] == 100
        assert session["key"] == "rzp_test_key"

    def test_unknown_plan(self, gateway, gateway_requests):
        with pytest.raises(InvalidPlan):
            gateway.create_session(42, "gold")
        assert gateway_requests == []

    def test_endpoint_requires_auth(self, client):
        response = client.post("/api/payments/create-session", json={"plan_id": "basic"})
        assert response.status_code == 401

    def test_endpoint(self, client, alice):
        response = client.post(
            "/api/payments/create-session", json={"plan_id": "basic"}, headers=auth_header(alice)
        )
        assert response.status_code == 200
        assert response.json()["data"]["plan"]["images_limit"] == 2


def test_plans_catalog(client):
    plans = {p["id"]: p for p in client.get("/api/payments/plans").json()["data"]}
    assert plans["basic"]["price"] == 50 and plans["basic"]["images_limit"] == 2
    assert plans["premium"]["price"] == 100 and plans["premium"]["images_limit"] == 5


def test_subscription_and_can_generate(client, db, alice):
    headers = auth_header(alice)
    assert client.get("/api/payments/subscription", headers=headers).status_code == 404
    assert client.get("/api/payments/can-generate", headers=headers).json()["can_generate"] is False

    SubscriptionLedger(db).activate(alice.id, "basic", "pay_1")
    db.commit()

    assert client.get("/api/payments/subscription", headers=headers).json()["images_remaining"] == 2
    assert client.get("/api/payments/can-generate", headers=headers).json() == {
        "can_generate": True,
        "images_remaining": 2,
        "plan_id": "basic",
    }


class TestAdmin:

    def test_add_subscription(self, client, alice, admin):
        response = client.post(
            "/api/payments/admin/add-subscription",
            json={"user_id": alice.id, "plan_id": "basic", "additional_images": 3},
            headers=auth_header(admin),
        )
        assert response.status_code == 200
        assert response.json()["images_limit"] == 5

    def test_list_subscriptions(self, client, db, alice, bob, admin):
        ledger = SubscriptionLedger(db)
        ledger.activate(alice.id, "basic", "pay_a")
        ledger.activate(bob.id, "premium", "pay_b")
        db.commit()

        body = client.get("/api/payments/admin/subscriptions?limit=1", headers=auth_header(admin)).json()
        assert body["count"] == 1
        assert body["pagination"] == {"page": 1, "limit": 1, "total_pages": 2, "total": 2}
        assert body["data"][0]["user_id"] == bob.id
