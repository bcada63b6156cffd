"""Authentication: registration, login, tokens, logout and password reset."""

import re
from datetime import timedelta
from unittest.mock import patch

import pytest
from jose import jwt

from app.auth import service as auth_service
from app.billing.ledger import SubscriptionLedger
from app.auth.security import (
    authenticate,
    create_access_token,
    decode_access_token,
    has_role,
    hash_reset_token,
)
from app.config import settings
from app.errors import Forbidden, InvalidOrExpiredToken, Unauthorized
from app.models.user import Role, User

from conftest import auth_header


class TestRegisterAndLogin:

    def test_register_returns_token_and_hashes_password(self, client, db, notifier):
        response = client.post("/api/auth/register", json={
            "email": "Alice@Example.com",
            "password": "Passw0rd",
            "name": "Alice",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == "alice@example.com"
        assert body["user"]["role"] == "user"
        assert body["user"]["subscription"] is None

        user = db.query(User).filter(User.email == "alice@example.com").one()
        assert user.hashed_password != "Passw0rd"
        assert decode_access_token(body["access_token"]).user_id == user.id
        notifier.send_welcome.assert_called_once()

    def test_duplicate_email_is_case_insensitive(self, client, alice):
        response = client.post("/api/auth/register", json={
            "email": "ALICE@example.com",
            "password": "Passw0rd",
            "name": "Alice Again",
        })
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateEmail"

    def test_register_race_on_unique_email_is_duplicate(self, client, db, alice, notifier):
        with patch.object(auth_service, "find_by_email", return_value=None):
            response = client.post("/api/auth/register", json={
                "email": "alice@example.com",
                "password": "Passw0rd",
                "name": "Alice Twin",
            })
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateEmail"
        assert db.query(User).filter(User.email == "alice@example.com").count() == 1
        notifier.send_welcome.assert_not_called()

    def test_weak_password_rejected(self, client):
        response = client.post("/api/auth/register", json={
            "email": "carol@example.com",
            "password": "password",
            "name": "Carol",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidInput"

    def test_login_success(self, client, alice):
        response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "Passw0rd"})
        assert response.status_code == 200
        assert response.json()["user"]["id"] == alice.id

    @pytest.mark.parametrize("email,password", [
        ("alice@example.com", "WrongPass1"),
        ("nobody@example.com", "Passw0rd"),
    ])
    def test_login_failures_look_identical(self, client, alice, email, password):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 401
        assert response.json() == {"error": "InvalidCredentials", "message": "Invalid credentials"}


class TestTokens:

    def test_missing_token_is_unauthorized(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_garbage_token_is_forbidden(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"

    def test_expired_token_is_forbidden(self, alice):
        token = jwt.encode(
            {"sub": str(alice.id), "role": "user", "exp": 1},
            settings.secret_key,
            algorithm=settings.algorithm,
        )
        with pytest.raises(Forbidden):
            authenticate(token)

    def test_wrong_signature_is_forbidden(self, alice):
        token = jwt.encode({"sub": str(alice.id), "role": "user"}, "other-secret", algorithm="HS256")
        with pytest.raises(Forbidden):
            decode_access_token(token)

    def test_absent_token(self):
        with pytest.raises(Unauthorized):
            authenticate(None)

    def test_token_claims(self, alice):
        principal = decode_access_token(create_access_token(alice.id, alice.role))
        assert principal.user_id == alice.id
        assert principal.role == Role.USER

    def test_inactive_user_is_forbidden(self, client, db, alice):
        headers = auth_header(alice)
        alice.is_active = False
        db.commit()
        assert client.get("/api/auth/me", headers=headers).status_code == 403

    def test_me_includes_subscription(self, client, db, alice):
        SubscriptionLedger(db).activate(alice.id, "premium", "pay_me")
        db.commit()

        body = client.get("/api/auth/me", headers=auth_header(alice)).json()
        assert body["subscription"]["plan_id"] == "premium"
        assert body["subscription"]["images_remaining"] == 5

    def test_logout_revokes_token(self, client, alice):
        headers = auth_header(alice)
        response = client.get("/api/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Successfully logged out"

        assert client.get("/api/auth/me", headers=headers).status_code == 403


def test_has_role_admin_passes_every_gate():
    assert has_role(Role.ADMIN, Role.USER)
    assert has_role("user", Role.USER)
    assert not has_role(Role.USER, Role.ADMIN)


def test_admin_route_rejects_plain_user(client, alice):
    response = client.get("/api/payments/admin/subscriptions", headers=auth_header(alice))
    assert response.status_code == 403


class TestPasswordReset:

    def test_forgot_password_does_not_enumerate(self, client, alice, notifier):
        known = client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
        unknown = client.post("/api/auth/forgotpassword", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        notifier.send_password_reset.assert_called_once()

    def test_reset_flow_is_single_use(self, client, db, alice, notifier):
        client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
        reset_url = notifier.send_password_reset.call_args.args[1]
        token = re.search(r"/resetpassword/(\w+)$", reset_url).group(1)

        db.refresh(alice)
        assert alice.reset_password_token == hash_reset_token(token)

        response = client.put(f"/api/auth/resetpassword/{token}", json={"password": "N3wPassword"})
        assert response.status_code == 200

        login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "N3wPassword"})
        assert login.status_code == 200

        again = client.put(f"/api/auth/resetpassword/{token}", json={"password": "An0therPass"})
        assert again.status_code == 400
        assert again.json()["error"] == "InvalidOrExpiredToken"

    def test_expired_reset_token(self, db, alice):
        token = auth_service.issue_reset_token(db, alice, expires_minutes=10)
        alice.reset_password_expires_at = alice.reset_password_expires_at - timedelta(minutes=11)
        db.commit()

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(db, token, "N3wPassword")

    def test_unknown_reset_token(self, db):
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(db, "deadbeef", "N3wPassword")


def test_register_service_normalizes_email(db):
    user, token = auth_service.register(db, " Dana@Example.COM ", "Passw0rd", "Dana")
    assert user.email == "dana@example.com"
    assert auth_service.login(db, "DANA@example.com", "Passw0rd")[0].id == user.id
