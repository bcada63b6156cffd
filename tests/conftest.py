"""
Test configuration and fixtures for Artify Ghibli.

Environment is fixed before any ``app`` import so settings, the engine and
the limiter pick up the test values.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="artify-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ.pop("REDIS_URL", None)

import json
import threading
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from app.auth.security import create_access_token, hash_password
from app.database import Base, SessionLocal, engine
from app.errors import UpstreamFailure
from app.generation.orchestrator import GenerationOrchestrator
from app.models.user import Role, User
from app.services.cloudinary_service import StoredAsset
from app.services.container import Services
from app.services.email_service import EmailNotifier
from app.services.payment_service import RAZORPAY_API_BASE, RazorpayGateway, compute_signature

WEBHOOK_SECRET = "whsec_test"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# =============================================================================
# Fakes
# =============================================================================

class FakeStorage:
    def __init__(self):
        self.uploads = []
        self.destroyed = []
        self.fail_upload = False
        self.fail_destroy = False
        self._lock = threading.Lock()

    def upload_image(self, source, public_id, subfolder="originals", **options):
        if self.fail_upload:
            raise UpstreamFailure("storage down", service="storage")
        full_id = f"artify/{subfolder}/{public_id}"
        with self._lock:
            self.uploads.append({"public_id": full_id, "source": source, "options": options})
        return StoredAsset(public_id=full_id, url=f"https://res.example.com/{full_id}.jpg")

    def destroy_image(self, public_id):
        if self.fail_destroy:
            raise UpstreamFailure("storage down", service="storage")
        with self._lock:
            self.destroyed.append(public_id)

    def ping(self):
        return True


class FakeTransformer:
    def __init__(self):
        self.fail = False
        self.calls = []

    def transform(self, source_public_id, prompt=None):
        self.calls.append((source_public_id, prompt))
        if self.fail:
            raise UpstreamFailure("transformation exploded", service="transformer")
        return f"https://res.example.com/render/{source_public_id}.jpg"

    def render_options(self, prompt=None):
        return {"context": {"prompt": prompt}} if prompt else {}


class ManualScheduler:
    """Collects dispatched jobs; tests decide when the background step runs."""

    def __init__(self):
        self.pending = []
        self.intervals = {}
        self.fail = False
        self.running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=False):
        self.running = False

    def schedule(self, func, job_id, delay_seconds=None):
        if self.fail:
            raise RuntimeError("scheduler unavailable")
        self.pending.append((func, job_id))

    def every(self, func, minutes, name):
        self.intervals[name] = (func, minutes)

    def run_all(self):
        ran = 0
        while self.pending:
            func, job_id = self.pending.pop(0)
            func(job_id)
            ran += 1
        return ran


class MemoryTokenStore:
    def __init__(self):
        self.tokens = set()

    def ping(self):
        return True

    def blacklist_token(self, token, expires_in_minutes=None):
        self.tokens.add(token)
        return True

    def is_token_blacklisted(self, token):
        return token in self.tokens


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def transformer():
    return FakeTransformer()


@pytest.fixture
def notifier():
    return MagicMock(spec=EmailNotifier)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def gateway_requests():
    return []


@pytest.fixture
def gateway(gateway_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        gateway_requests.append(body)
        return httpx.Response(200, json={
            "id": "order_test123",
            "amount": body["amount"],
            "currency": body["currency"],
            "receipt": body["receipt"],
            "notes": body["notes"],
        })

    client = httpx.Client(
        base_url=RAZORPAY_API_BASE,
        transport=httpx.MockTransport(handler),
        auth=("rzp_test_key", "rzp_test_secret"),
    )
    return RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="rzp_test_secret",
        webhook_secret=WEBHOOK_SECRET,
        callback_url="http://localhost:5173/dashboard",
        client=client,
    )


@pytest.fixture
def orchestrator(storage, transformer, notifier, scheduler):
    return GenerationOrchestrator(
        session_factory=SessionLocal,
        storage=storage,
        transformer=transformer,
        notifier=notifier,
        scheduler=scheduler,
        max_upload_bytes=1024,
        processing_timeout_minutes=30,
    )


@pytest.fixture
def services(storage, transformer, notifier, gateway, scheduler, orchestrator):
    return Services(
        storage=storage,
        transformer=transformer,
        notifier=notifier,
        payments=gateway,
        scheduler=scheduler,
        token_store=MemoryTokenStore(),
        orchestrator=orchestrator,
    )


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app(services):
    from app.main import create_app
    return create_app(services)


@pytest.fixture
def client(app):
    return TestClient(app)


# =============================================================================
# Sample Data Fixtures
# =============================================================================

def make_user(db, email="alice@example.com", name="Alice", role=Role.USER, password="Passw0rd"):
    user = User(email=email, name=name, hashed_password=hash_password(password), role=role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def signed_webhook(payment_id, user_id, plan_id, event="payment.captured"):
    body = json.dumps({
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "notes": {"user_id": str(user_id), "plan_id": plan_id},
                }
            }
        },
    }).encode()
    return body, compute_signature(body, WEBHOOK_SECRET)


@pytest.fixture
def alice(db):
    return make_user(db)


@pytest.fixture
def bob(db):
    return make_user(db, email="bob@example.com", name="Bob")


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", name="Admin", role=Role.ADMIN)
