"""
Authentication tests.

Covers password registration and login, bearer sessions, login throttling
(per email and per admin IP), password changes, and the WhatsApp OTP
signup and passwordless login flows.
"""

import json
from datetime import timedelta

import httpx
import pytest
from conftest import DEFAULT_PASSWORD, auth_headers_for

from farmmarket.errors import UpstreamError
from farmmarket.extensions import db
from farmmarket.models import OtpVerification, SessionToken, User
from farmmarket.services import otp_service
from farmmarket.time_utils import utcnow


class RecordingSender(otp_service.OtpSender):
    def __init__(self):
        self.sent = []

    def send(self, phone, code, purpose):
        self.sent.append((phone, code, purpose))

    @property
    def last_code(self):
        return self.sent[-1][1]


@pytest.fixture
def sender(monkeypatch):
    recorder = RecordingSender()
    monkeypatch.setattr(otp_service, "get_sender", lambda config: recorder)
    return recorder


def _registration(**overrides):
    payload = {
        "email": "Tani@Example.com",
        "password": "Petani123!",
        "full_name": "Pak Tani",
        "role": "farmer",
        "phone": "+6281299990000",
        "address": "Desa Sukamaju, Lembang",
    }
    payload.update(overrides)
    return payload


def _age_otps(minutes=2):
    db.session.query(OtpVerification).update(
        {OtpVerification.created_at: utcnow() - timedelta(minutes=minutes)},
        synchronize_session=False,
    )
    db.session.commit()


# =============================================================================
# PASSWORD AUTH
# =============================================================================


class TestRegister:
    def test_register_returns_session(self, client):
        response = client.post("/api/auth/register", json=_registration())

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["user"]["email"] == "tani@example.com"
        assert data["user"]["role"] == "farmer"
        assert data["user"]["is_verified"] is False
        assert "password_hash" not in data["user"]
        assert len(data["token"]) == 64
        assert data["expires_at"].endswith("Z")

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.get_json()["data"]["email"] == "tani@example.com"

    @pytest.mark.parametrize("overrides", [
        {"password": "short1!"},
        {"password": "alllowercase1!"},
        {"password": "NoDigitsHere!"},
        {"password": "NoSpecial123"},
        {"email": "not-an-email"},
        {"role": "admin"},
        {"full_name": "X"},
        {"role": "retailer"},
        {"phone": "12-ab"},
    ])
    def test_rejects(self, client, overrides):
        response = client.post("/api/auth/register", json=_registration(**overrides))
        assert response.status_code == 400

    def test_duplicate_email(self, client, farmer):
        response = client.post("/api/auth/register", json=_registration(email=farmer.email, phone=None))
        assert response.status_code == 409


class TestLogin:
    def test_login_and_logout(self, client, retailer):
        response = client.post("/api/auth/login", json={"email": retailer.email.upper(), "password": DEFAULT_PASSWORD})

        assert response.status_code == 200
        token = response.get_json()["data"]["token"]
        headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/api/auth/me", headers=headers).status_code == 200

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_wrong_password(self, client, retailer):
        response = client.post("/api/auth/login", json={"email": retailer.email, "password": "Wrong123!"})
        assert response.status_code == 401

    def test_missing_fields(self, client):
        assert client.post("/api/auth/login", json={"email": "a@b.co"}).status_code == 400

    def test_deactivated_account(self, client, make_user):
        user = make_user("retailer", is_active=False)
        response = client.post("/api/auth/login", json={"email": user.email, "password": DEFAULT_PASSWORD})
        assert response.status_code == 401

    def test_lockout_after_five_failures(self, client, retailer):
        for _ in range(5):
            response = client.post("/api/auth/login", json={"email": retailer.email, "password": "Wrong123!"})
            assert response.status_code == 401

        response = client.post("/api/auth/login", json={"email": retailer.email, "password": DEFAULT_PASSWORD})

        assert response.status_code == 429
        assert response.get_json()["details"]["retry_after_seconds"] > 0

    def test_success_resets_counter(self, client, retailer):
        for _ in range(4):
            client.post("/api/auth/login", json={"email": retailer.email, "password": "Wrong123!"})
        assert client.post("/api/auth/login", json={"email": retailer.email, "password": DEFAULT_PASSWORD}).status_code == 200
        for _ in range(4):
            client.post("/api/auth/login", json={"email": retailer.email, "password": "Wrong123!"})
        assert client.post("/api/auth/login", json={"email": retailer.email, "password": DEFAULT_PASSWORD}).status_code == 200

    @pytest.mark.parametrize("header", [None, "Token abc", "Bearer ", "Bearer nonsense"])
    def test_bad_bearer(self, client, header):
        headers = {"Authorization": header} if header else {}
        assert client.get("/api/auth/me", headers=headers).status_code == 401


class TestAdminLogin:
    def test_admin_login(self, client, admin):
        response = client.post("/api/admin/auth/login", json={"email": admin.email, "password": DEFAULT_PASSWORD})
        assert response.status_code == 200
        assert response.get_json()["data"]["user"]["role"] == "admin"

    def test_non_admin_refused(self, client, farmer):
        response = client.post("/api/admin/auth/login", json={"email": farmer.email, "password": DEFAULT_PASSWORD})
        assert response.status_code == 401

    def test_ip_lockout_spans_emails(self, client, admin):
        for n in range(5):
            client.post("/api/admin/auth/login", json={"email": f"guess{n}@example.com", "password": "Wrong123!"})

        response = client.post("/api/admin/auth/login", json={"email": admin.email, "password": DEFAULT_PASSWORD})
        assert response.status_code == 429


class TestProfile:
    def test_update_profile(self, client, retailer, retailer_headers):
        response = client.put(
            "/api/auth/profile",
            json={"full_name": "Ibu Retail", "address": "Jl. Merdeka 1"},
            headers=retailer_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["data"]["full_name"] == "Ibu Retail"

    def test_cannot_change_role(self, client, retailer_headers):
        response = client.put("/api/auth/profile", json={"role": "admin"}, headers=retailer_headers)
        assert response.status_code == 400

    def test_phone_taken(self, client, farmer, retailer_headers):
        response = client.put("/api/auth/profile", json={"phone": farmer.phone}, headers=retailer_headers)
        assert response.status_code == 409

    def test_change_password_revokes_other_sessions(self, client, retailer):
        current = auth_headers_for(retailer)
        other = auth_headers_for(retailer)

        response = client.put(
            "/api/auth/change-password",
            json={"current_password": DEFAULT_PASSWORD, "new_password": "Brand.New9!"},
            headers=current,
        )

        assert response.status_code == 200
        assert client.get("/api/auth/me", headers=current).status_code == 200
        assert client.get("/api/auth/me", headers=other).status_code == 401
        assert client.post("/api/auth/login", json={"email": retailer.email, "password": "Brand.New9!"}).status_code == 200

    def test_change_password_wrong_current(self, client, retailer_headers):
        response = client.put(
            "/api/auth/change-password",
            json={"current_password": "Nope1234!", "new_password": "Brand.New9!"},
            headers=retailer_headers,
        )
        assert response.status_code == 401


class TestVerifyToken:
    def test_live_token(self, client, retailer, retailer_headers):
        response = client.post("/api/auth/verify-token", headers=retailer_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["valid"] is True
        assert data["user"]["id"] == retailer.id
        assert data["user"]["role"] == "retailer"
        assert "password_hash" not in data["user"]

    def test_revoked_token(self, client, retailer_headers):
        client.post("/api/auth/logout", headers=retailer_headers)
        response = client.post("/api/auth/verify-token", headers=retailer_headers)
        assert response.status_code == 401


# =============================================================================
# WHATSAPP OTP
# =============================================================================


class TestOtpRegistration:
    def test_full_flow(self, client, sender):
        response = client.post("/api/auth/otp/register", json=_registration())

        assert response.status_code == 200
        assert response.get_json()["data"]["expires_in"] == 300
        phone, code, purpose = sender.sent[0]
        assert (phone, purpose) == ("+6281299990000", "register")
        assert len(code) == 6
        assert db.session.query(User).filter_by(phone=phone).count() == 0

        stored = db.session.query(OtpVerification).one()
        assert stored.code_hash != code
        assert "password" not in stored.user_data

        response = client.post("/api/auth/otp/verify", json={"phone": phone, "otp": code})

        assert response.status_code == 201
        user = response.get_json()["data"]["user"]
        assert user["is_verified"] is True
        assert user["address"] == "Desa Sukamaju, Lembang"

        # Codes are single use
        response = client.post("/api/auth/otp/verify", json={"phone": phone, "otp": code})
        assert response.status_code == 404

    def test_address_required(self, client, sender):
        response = client.post("/api/auth/otp/register", json=_registration(address=""))
        assert response.status_code == 400
        assert sender.sent == []

    def test_three_wrong_guesses_burn_the_code(self, client, sender):
        client.post("/api/auth/otp/register", json=_registration())
        code = sender.last_code
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(3):
            response = client.post("/api/auth/otp/verify", json={"phone": "+6281299990000", "otp": wrong})
            assert response.status_code == 400

        response = client.post("/api/auth/otp/verify", json={"phone": "+6281299990000", "otp": code})
        assert response.status_code == 400
        assert "Too many failed attempts" in response.get_json()["error"]

    def test_expired_code(self, client, sender):
        client.post("/api/auth/otp/register", json=_registration())
        db.session.query(OtpVerification).update(
            {OtpVerification.expires_at: utcnow() - timedelta(seconds=1)},
            synchronize_session=False,
        )
        db.session.commit()

        response = client.post("/api/auth/otp/verify", json={"phone": "+6281299990000", "otp": sender.last_code})
        assert response.status_code == 400

    def test_resend_cooldown(self, client, sender):
        client.post("/api/auth/otp/register", json=_registration())

        response = client.post("/api/auth/otp/resend", json={"phone": "+6281299990000"})
        assert response.status_code == 400
        assert response.get_json()["details"]["retry_after_seconds"] > 0

        _age_otps()
        response = client.post("/api/auth/otp/resend", json={"phone": "+6281299990000"})
        assert response.status_code == 200
        assert len(sender.sent) == 2

        # Only the newest code verifies
        first_code, newest_code = sender.sent[0][1], sender.sent[1][1]
        if first_code != newest_code:
            response = client.post("/api/auth/otp/verify", json={"phone": "+6281299990000", "otp": first_code})
            assert response.status_code == 400
        response = client.post("/api/auth/otp/verify", json={"phone": "+6281299990000", "otp": newest_code})
        assert response.status_code == 201

    def test_phone_already_registered(self, client, sender, farmer):
        response = client.post("/api/auth/otp/register", json=_registration(phone=farmer.phone))
        assert response.status_code == 409


class TestOtpLogin:
    def test_passwordless_login(self, client, sender, retailer):
        response = client.post("/api/auth/otp/request-login", json={"phone": retailer.phone})
        assert response.status_code == 200
        assert sender.sent[0][2] == "login"

        response = client.post("/api/auth/otp/verify-login", json={"phone": retailer.phone, "otp": sender.last_code})

        assert response.status_code == 200
        assert response.get_json()["data"]["user"]["id"] == retailer.id
        assert db.session.query(SessionToken).filter_by(user_id=retailer.id).count() == 1

    def test_unknown_phone(self, client, sender):
        response = client.post("/api/auth/otp/request-login", json={"phone": "+6281277770000"})
        assert response.status_code == 404


class TestWhatsAppSender:
    def test_sends_text_message(self):
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

        sender = otp_service.get_sender({
            "WHATSAPP_API_URL": "https://graph.example/v1/messages",
            "WHATSAPP_API_TOKEN": "wa-token",
            "WHATSAPP_HTTP_TRANSPORT": httpx.MockTransport(handler),
        })
        sender.send("081299990000", "123456", "login")

        body = json.loads(captured[0].content)
        assert body["to"] == "6281299990000"
        assert "123456" in body["text"]["body"]
        assert captured[0].headers["Authorization"] == "Bearer wa-token"

    def test_delivery_failure(self):
        sender = otp_service.get_sender({
            "WHATSAPP_API_URL": "https://graph.example/v1/messages",
            "WHATSAPP_HTTP_TRANSPORT": httpx.MockTransport(lambda request: httpx.Response(500)),
        })
        with pytest.raises(UpstreamError):
            sender.send("+6281299990000", "123456", "register")

    def test_logging_sender_without_api(self):
        assert isinstance(otp_service.get_sender({}), otp_service.LoggingOtpSender)
