"""
HTTP tests for the v1 API.
"""
import pytest
from fastapi.testclient import TestClient

from refledger.api.main import app
from refledger.purchases.service import REWARD_CREDITS
from refledger.settings import settings

PASSWORD = "correct-horse-battery"


@pytest.fixture
def client():
    return TestClient(app)


def signup(client, email, referral_code=None):
    """Register through the API and return (token, user)"""
    payload = {"email": email, "password": PASSWORD}
    if referral_code:
        payload["referral_code"] = referral_code
    response = client.post("/api/v1/auth/register", json=payload)
    assert response.status_code == 201, response.text
    data = response.json()
    return data["access_token"], data["user"]


def auth(token):
    return {"Authorization": f"Bearer {token}"}


class TestAuthEndpoints:

    def test_register_returns_token_and_code(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "alice@example.com", "password": PASSWORD},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["credits"] == 0
        assert len(data["user"]["referral_code"]) == 8

    def test_duplicate_email_is_409(self, client):
        signup(client, "alice@example.com")

        response = client.post(
            "/api/v1/auth/register",
            json={"email": "alice@example.com", "password": PASSWORD},
        )

        assert response.status_code == 409
        assert response.json()["field"] == "email"

    def test_malformed_body_is_422(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "not-an-email", "password": "short"},
        )
        assert response.status_code == 422

    def test_login_and_me(self, client):
        signup(client, "alice@example.com")

        response = client.post(
            "/api/v1/auth/login",
            json={"email": "alice@example.com", "password": PASSWORD},
        )
        assert response.status_code == 200

        me = client.get("/api/v1/auth/me", headers=auth(response.json()["access_token"]))
        assert me.status_code == 200
        assert me.json()["email"] == "alice@example.com"

    def test_bad_login_is_401(self, client):
        signup(client, "alice@example.com")

        response = client.post(
            "/api/v1/auth/login",
            json={"email": "alice@example.com", "password": "wrong-password"},
        )
        assert response.status_code == 401

    def test_protected_endpoint_needs_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401
        assert client.get("/api/v1/credits", headers=auth("garbage")).status_code == 401


class TestReferralFlow:
    """Signup with a code, first purchase, rewards visible everywhere"""

    def test_first_purchase_rewards_both_users(self, client):
        r_token, r_user = signup(client, "r@example.com")
        u_token, _ = signup(client, "u@example.com", referral_code=r_user["referral_code"])

        response = client.post("/api/v1/purchases", json={"amount": 10}, headers=auth(u_token))

        assert response.status_code == 201
        assert response.json()["is_first"] is True

        assert client.get("/api/v1/credits", headers=auth(u_token)).json() == {"credits": REWARD_CREDITS}
        assert client.get("/api/v1/credits", headers=auth(r_token)).json() == {"credits": REWARD_CREDITS}

        history = client.get("/api/v1/credits/history", headers=auth(r_token)).json()["history"]
        assert len(history) == 1
        assert history[0]["reason"] == "first_purchase_referral"
        assert history[0]["delta"] == REWARD_CREDITS

        feed = client.get("/api/v1/credits/activity", headers=auth(u_token)).json()["feed"]
        assert f"You earned {REWARD_CREDITS} credits from r@example.com" in feed

        second = client.post("/api/v1/purchases", json={"amount": 5}, headers=auth(u_token))
        assert second.json()["is_first"] is False
        assert client.get("/api/v1/credits", headers=auth(u_token)).json() == {"credits": REWARD_CREDITS}

    def test_referral_listing_and_stats(self, client):
        r_token, r_user = signup(client, "r@example.com")
        u_token, _ = signup(client, "u@example.com", referral_code=r_user["referral_code"])
        client.post("/api/v1/purchases", json={"amount": 10}, headers=auth(u_token))

        mine = client.get("/api/v1/referral/mine", headers=auth(r_token)).json()["referrals"]
        assert [(r["referred_email"], r["status"], r["credited"]) for r in mine] == [
            ("u@example.com", "converted", True),
        ]

        stats = client.get("/api/v1/referral/stats", headers=auth(r_token)).json()
        assert stats["code"] == r_user["referral_code"]
        assert stats["total_referred"] == 1
        assert stats["converted_count"] == 1
        assert stats["total_credits"] == REWARD_CREDITS

    def test_my_referrer(self, client):
        r_token, r_user = signup(client, "r@example.com")
        u_token, _ = signup(client, "u@example.com", referral_code=r_user["referral_code"])

        before = client.get("/api/v1/referral/referrer", headers=auth(u_token)).json()["referrer"]
        assert before["referrer_email"] == "r@example.com"
        assert before["status"] == "pending"
        assert before["credited"] is False

        client.post("/api/v1/purchases", json={"amount": 10}, headers=auth(u_token))

        after = client.get("/api/v1/referral/referrer", headers=auth(u_token)).json()["referrer"]
        assert after["status"] == "converted"
        assert after["credited"] is True

        assert client.get("/api/v1/referral/referrer", headers=auth(r_token)).json() == {"referrer": None}
        assert client.get("/api/v1/referral/referrer").status_code == 401

    def test_validate_code(self, client):
        _, r_user = signup(client, "r@example.com")

        known = client.post("/api/v1/referral/validate", json={"code": r_user["referral_code"]})
        unknown = client.post("/api/v1/referral/validate", json={"code": "zzzzzzzz"})

        assert known.json() == {"valid": True, "bonus_credits": REWARD_CREDITS}
        assert unknown.json()["valid"] is False

    def test_unknown_code_still_registers(self, client):
        _, user = signup(client, "u@example.com", referral_code="zzzzzzzz")
        assert user["credits"] == 0

    def test_non_positive_purchase_is_422(self, client):
        token, _ = signup(client, "u@example.com")

        response = client.post("/api/v1/purchases", json={"amount": 0}, headers=auth(token))

        assert response.status_code == 422


class TestCreditEndpoints:

    def test_redeem_without_credits_is_402(self, client):
        token, _ = signup(client, "u@example.com")

        response = client.post(
            "/api/v1/credits/redeem",
            json={"amount": 3, "item": "gift card"},
            headers=auth(token),
        )

        assert response.status_code == 402
        assert response.json() == {"detail": "Insufficient credits", "required": 3, "available": 0}

    def test_redeem_after_reward(self, client):
        _, r_user = signup(client, "r@example.com")
        u_token, _ = signup(client, "u@example.com", referral_code=r_user["referral_code"])
        client.post("/api/v1/purchases", json={"amount": 10}, headers=auth(u_token))

        response = client.post(
            "/api/v1/credits/redeem",
            json={"amount": 2, "item": "gift card"},
            headers=auth(u_token),
        )

        assert response.status_code == 201
        assert response.json()["ok"] is True
        assert client.get("/api/v1/credits", headers=auth(u_token)).json() == {"credits": 0}

        history = client.get("/api/v1/credits/history", headers=auth(u_token)).json()["history"]
        assert [h["reason"] for h in history] == ["redemption", "first_purchase_referral"]

    def test_blank_item_is_400(self, client):
        token, _ = signup(client, "u@example.com")

        response = client.post(
            "/api/v1/credits/redeem",
            json={"amount": 1, "item": "   "},
            headers=auth(token),
        )

        assert response.status_code == 400
        assert response.json()["field"] == "item"

    def test_leaderboard_is_public(self, client):
        _, r_user = signup(client, "r@example.com")
        u_token, _ = signup(client, "u@example.com", referral_code=r_user["referral_code"])
        signup(client, "z@example.com")
        client.post("/api/v1/purchases", json={"amount": 10}, headers=auth(u_token))

        board = client.get("/api/v1/credits/leaderboard", params={"limit": 2}).json()["leaderboard"]

        assert [row["email"] for row in board] == ["r@example.com", "u@example.com"]
        assert all(row["credits"] == REWARD_CREDITS for row in board)

    def test_history_rejects_bad_limit(self, client):
        token, _ = signup(client, "u@example.com")

        response = client.get("/api/v1/credits/history", params={"limit": 0}, headers=auth(token))

        assert response.status_code == 422


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["app"] == settings.app_name
    assert app.title == settings.app_name
    assert response.headers["X-Frame-Options"] == "DENY"
