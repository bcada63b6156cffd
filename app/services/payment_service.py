"""Razorpay gateway: order creation and webhook verification."""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from app.billing.plans import get_plan
from app.errors import InvalidInput, InvalidSignature, UpstreamFailure

logger = logging.getLogger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"
CAPTURE_EVENTS = ("payment.captured", "order.paid")


@dataclass
class VerifiedEvent:
    event_type: str
    payment_id: Optional[str]
    user_id: Optional[int]
    plan_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_capture(self) -> bool:
        return self.event_type in CAPTURE_EVENTS


def compute_signature(raw_payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def _parse_user_id(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        callback_url: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.key_id = key_id
        self.webhook_secret = webhook_secret
        self.callback_url = callback_url
        self.client = client or httpx.Client(
            base_url=RAZORPAY_API_BASE,
            auth=(key_id, key_secret),
            timeout=timeout,
        )

    def close(self) -> None:
        self.client.close()

    def create_session(self, user_id: int, plan_id: str) -> Dict[str, Any]:
        plan = get_plan(plan_id)
        notes = {"user_id": str(user_id), "plan_id": plan.id}
        try:
            response = self.client.post("/orders", json={
                "amount": plan.price * 100,  # smallest currency unit
                "currency": plan.currency,
                "receipt": f"rcpt_{user_id}_{int(time.time() * 1000)}",
                "notes": notes,
            })
            response.raise_for_status()
            order = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Razorpay order creation failed for user {user_id}: {e}")
            raise UpstreamFailure("Payment session creation failed", service="payments", original_error=e)

        return {
            "id": order["id"],
            "order_id": order["id"],
            "amount": order["amount"] / 100,
            "currency": order["currency"],
            "key": self.key_id,
            "callback_url": self.callback_url,
            "plan": plan.to_dict(),
            "notes": notes,
        }

    def verify_webhook(self, raw_payload: bytes, signature: Optional[str]) -> VerifiedEvent:
        """Check the HMAC-SHA256 of the exact raw body, then parse it."""
        if not signature:
            raise InvalidSignature("Missing webhook signature")
        if not self.webhook_secret:
            raise InvalidSignature("Webhook secret is not configured")

        expected = compute_signature(raw_payload, self.webhook_secret)
        if not hmac.compare_digest(expected, signature.strip()):
            raise InvalidSignature("Invalid webhook signature")

        try:
            payload = json.loads(raw_payload)
        except ValueError as e:
            raise InvalidInput("Webhook payload is not valid JSON", original_error=e)
        if not isinstance(payload, dict):
            raise InvalidInput("Webhook payload must be a JSON object")

        body = payload.get("payload") or {}
        entity = (body.get("payment") or {}).get("entity") or {}
        order = (body.get("order") or {}).get("entity") or {}
        notes = entity.get("notes") or order.get("notes") or {}
        return VerifiedEvent(
            event_type=payload.get("event", ""),
            payment_id=entity.get("id"),
            user_id=_parse_user_id(notes.get("user_id")),
            plan_id=notes.get("plan_id"),
            payload=payload,
        )
