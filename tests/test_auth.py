"""
Tests for routes/auth.py: registration, login, refresh rotation and profile.
"""
from extensions import db
from models import User


def _register(client, **overrides):
    payload = {"name": "Kavya Rao", "email": "kavya@civicmail.in", "password": "Secure123"}
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


class TestRegistration:
    def test_register_returns_tokens_and_sets_cookie(self, client):
        resp = _register(client)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["user"]["email"] == "kavya@civicmail.in"
        assert body["data"]["user"]["role"] == "citizen"
        assert body["data"]["accessToken"]
        assert client.get_cookie("refreshToken") is not None

    def test_duplicate_email_rejected(self, client):
        _register(client)
        resp = _register(client, email="KAVYA@civicmail.in")
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "An account with this email already exists."

    def test_weak_password_rejected(self, client):
        resp = _register(client, password="alllowercase1")
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["message"] == "Validation failed"
        assert "password" in body["errors"]

    def test_invalid_email_rejected(self, client):
        resp = _register(client, email="not-an-email")
        assert resp.status_code == 400
        assert "email" in resp.get_json()["errors"]


class TestLogin:
    def test_login_success(self, client, citizen):
        resp = client.post("/api/auth/login", json={"email": citizen.email, "password": citizen.password})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["message"] == "Welcome back, Asha Verma!"
        assert body["data"]["user"]["lastLogin"] is not None

    def test_wrong_password(self, client, citizen):
        resp = client.post("/api/auth/login", json={"email": citizen.email, "password": "Wrong1234"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid email or password."

    def test_deactivated_account(self, client, make_user):
        user = make_user(active=False)
        resp = client.post("/api/auth/login", json={"email": user.email, "password": user.password})
        assert resp.status_code == 401
        assert "deactivated" in resp.get_json()["message"]

    def test_rate_limit(self, app, client, citizen):
        app.config["AUTH_RATE_LIMIT"] = 2
        payload = {"email": citizen.email, "password": citizen.password}
        assert client.post("/api/auth/login", json=payload).status_code == 200
        assert client.post("/api/auth/login", json=payload).status_code == 200
        resp = client.post("/api/auth/login", json=payload)
        assert resp.status_code == 429
        assert resp.get_json()["message"] == "Too many requests, please try again later."


class TestTokens:
    def test_missing_token(self, client):
        resp = client.get("/api/auth/profile")
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Not authorized, no token"

    def test_forged_token(self, client):
        resp = client.get("/api/auth/profile", headers={"Authorization": "Bearer forged.token.value"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Not authorized, token failed"

    def test_access_cookie_is_accepted(self, client, citizen):
        client.set_cookie("accessToken", citizen.token)
        resp = client.get("/api/auth/profile")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["id"] == citizen.id

    def test_refresh_rotates_and_revokes_old_token(self, app, client):
        _register(client)
        old_refresh = client.get_cookie("refreshToken").value

        resp = client.post("/api/auth/refresh-token")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["accessToken"]
        assert client.get_cookie("refreshToken").value != old_refresh

        replay = app.test_client().post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
        assert replay.status_code == 401
        assert replay.get_json()["message"] == "Invalid refresh token."

    def test_refresh_without_token(self, client):
        resp = client.post("/api/auth/refresh-token")
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Refresh token not found."

    def test_refresh_with_garbage(self, client):
        resp = client.post("/api/auth/refresh-token", json={"refreshToken": "garbage"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid or expired refresh token."

    def test_logout_revokes_refresh(self, app, client, citizen):
        resp = client.post("/api/auth/logout", headers=citizen.headers)
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Logged out successfully."
        with app.app_context():
            assert db.session.get(User, citizen.id).refresh_token_hash is None

        replay = app.test_client().post("/api/auth/refresh-token", json={"refreshToken": citizen.refresh})
        assert replay.status_code == 401


class TestProfile:
    def test_profile_ids_are_encrypted_at_rest(self, app, client, citizen):
        resp = client.put(
            "/api/auth/profile",
            json={"aadharNumber": "123456789012", "panNumber": "ABCDE1234F", "phoneNumber": "9876543210"},
            headers=citizen.headers,
        )
        assert resp.status_code == 200
        user = resp.get_json()["data"]["user"]
        assert user["aadharNumber"] == "123456789012"
        assert user["panNumber"] == "ABCDE1234F"

        with app.app_context():
            stored = db.session.get(User, citizen.id)
            assert stored.aadhar_number_encrypted
            assert "123456789012" not in stored.aadhar_number_encrypted
            assert stored.aadhar_number == "123456789012"

    def test_profile_validation(self, client, citizen):
        resp = client.put("/api/auth/profile", json={"aadharNumber": "12345"}, headers=citizen.headers)
        assert resp.status_code == 400
        assert resp.get_json()["errors"]["aadharNumber"] == ["Aadhar number must be 12 digits"]

    def test_empty_string_clears_field(self, client, citizen):
        client.put("/api/auth/profile", json={"address": "12 MG Road"}, headers=citizen.headers)
        resp = client.put("/api/auth/profile", json={"address": ""}, headers=citizen.headers)
        assert resp.get_json()["data"]["user"]["address"] is None
