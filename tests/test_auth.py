"""
Authentication, admin gating and the account/wallet utility endpoints.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient
from jose import jwt

from funplanet.main import app
from funplanet.utils import auth, dependencies
from funplanet.utils.auth import decode_access_token, get_current_user

from conftest import USER_ID

SECRET = "super-secret-jwt-key"


def make_token(sub=USER_ID, audience="authenticated", secret=SECRET):
    return jwt.encode({"sub": sub, "email": "kid@funplanet.test", "aud": audience}, secret, algorithm="HS256")


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeAccessToken:
    def test_valid_token(self):
        payload = decode_access_token(make_token(), SECRET)

        assert payload["sub"] == USER_ID

    @pytest.mark.parametrize("token", [
        make_token(secret="another-secret"),
        make_token(audience="anon"),
        "not-a-jwt",
    ])
    def test_rejected_tokens(self, token):
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token, SECRET)

        assert exc_info.value.status_code == 401

    def test_subject_required(self):
        with pytest.raises(HTTPException):
            decode_access_token(make_token(sub=""), SECRET)


class TestGetCurrentUser:
    async def test_missing_header(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.detail == "Missing authorization header"

    async def test_local_jwt_verification(self, monkeypatch):
        monkeypatch.setattr(auth, "SUPABASE_JWT_SECRET", SECRET)

        user = await get_current_user(bearer(make_token()))

        assert user == {"id": USER_ID, "email": "kid@funplanet.test"}

    async def test_supabase_lookup_without_secret(self, monkeypatch):
        monkeypatch.setattr(auth, "SUPABASE_JWT_SECRET", None)
        admin_client = MagicMock()
        admin_client.auth.get_user.return_value = SimpleNamespace(
            user=SimpleNamespace(id=USER_ID, email="kid@funplanet.test"),
        )
        monkeypatch.setattr(auth, "get_supabase_admin", lambda: admin_client)

        user = await get_current_user(bearer("opaque"))

        assert user["id"] == USER_ID
        admin_client.auth.get_user.assert_called_once_with("opaque")

    async def test_supabase_rejects_token(self, monkeypatch):
        monkeypatch.setattr(auth, "SUPABASE_JWT_SECRET", None)
        admin_client = MagicMock()
        admin_client.auth.get_user.side_effect = Exception("invalid JWT")
        monkeypatch.setattr(auth, "get_supabase_admin", lambda: admin_client)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(bearer("opaque"))

        assert exc_info.value.status_code == 401


class TestRewardWalletBalance:
    def test_admin_only(self, client):
        response = client.get("/check-reward-wallet-balance")

        assert response.status_code == 403

    def test_balances(self, client, ledger, signer):
        ledger.admins.add(USER_ID)
        signer.pool = 1234.6

        body = client.get("/check-reward-wallet-balance").json()

        assert body["success"] is True
        assert body["wallet_address"] == signer.address
        assert body["camly_balance"] == 1235
        assert body["bnb_balance"] == 1.0


class TestIpEligibility:
    """Public sign-up check; failures never block sign-up."""

    def test_cloudflare_header_wins(self, client, ledger):
        ledger.ip_result = {"is_eligible": False, "reason": "Too many accounts", "existing_accounts": 3}

        response = client.post(
            "/check-ip-eligibility",
            headers={"cf-connecting-ip": "1.2.3.4", "x-forwarded-for": "9.9.9.9"},
        )

        body = response.json()
        assert body["ip"] == "1.2.3.4"
        assert body["is_eligible"] is False
        assert body["existing_accounts"] == 3

    def test_first_forwarded_address(self, client):
        response = client.post("/check-ip-eligibility", headers={"x-forwarded-for": "5.6.7.8, 10.0.0.1"})

        assert response.json()["ip"] == "5.6.7.8"
        assert response.json()["is_eligible"] is True

    def test_fails_open(self, client, ledger):
        ledger.ip_error = RuntimeError("rpc down")

        body = client.post("/check-ip-eligibility", headers={"x-real-ip": "7.7.7.7"}).json()

        assert body == {
            "ip": "7.7.7.7",
            "is_eligible": True,
            "reason": "Check failed - allowing signup",
            "existing_accounts": 0,
            "is_blacklisted": False,
        }


def test_missing_secret_is_a_config_error(monkeypatch):
    monkeypatch.delenv("REWARDS_SIGNER_PRIVATE_KEY", raising=False)
    app.dependency_overrides[get_current_user] = lambda: {"id": USER_ID, "email": None}
    app.dependency_overrides[dependencies.get_ledger] = lambda: MagicMock()
    try:
        response = TestClient(app).post("/sign-rewards-claim", json={"wallet_address": "0x" + "11" * 20, "amount": 1})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Server configuration error"}


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
