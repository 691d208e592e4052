from __future__ import annotations

import asyncio

from app.models import REASON_CHAT_USAGE
from app.services.credit_ledger import CreditLedger
from tests.utils import jwt_auth_headers, seed_user


def test_my_credits(client, db_session):
    user = seed_user(db_session, email="me@example.com", balance=1234)

    resp = client.get("/api/credits/me", headers=jwt_auth_headers(str(user.id)))

    assert resp.status_code == 200
    data = resp.json()
    assert data["user_id"] == str(user.id)
    assert data["credit_balance"] == 1234
    assert data["credit_usage_total"] == 0
    assert data["plan"] == "free"
    assert data["days_until_reset"] == 30


def test_my_credits_migrates_legacy_account(client, db_session):
    user = seed_user(db_session, email="legacy@example.com", balance=None, plan=None)

    resp = client.get("/api/credits/me", headers=jwt_auth_headers(str(user.id)))

    assert resp.status_code == 200
    assert resp.json()["credit_balance"] == resp.json()["monthly_allowance"]


def test_my_credits_requires_auth(client):
    assert client.get("/api/credits/me").status_code == 401


def test_my_transactions(client, app_with_inmemory_db, db_session):
    app, SessionLocal = app_with_inmemory_db
    user = seed_user(db_session, email="spender@example.com", balance=1000)
    ledger = CreditLedger(session_factory=SessionLocal, redis=app.state._test_redis)
    asyncio.run(ledger.deduct(user.id, 10, REASON_CHAT_USAGE, model_name="x-ai/glm-4.6"))
    asyncio.run(ledger.deduct(user.id, 20, "media_usage"))

    resp = client.get("/api/credits/me/transactions", headers=jwt_auth_headers(str(user.id)))
    assert resp.status_code == 200
    items = resp.json()
    assert sorted(item["amount"] for item in items) == [-20, -10]
    assert {item["balance_after"] for item in items} == {990, 970}

    resp = client.get(
        "/api/credits/me/transactions",
        params={"reason": REASON_CHAT_USAGE},
        headers=jwt_auth_headers(str(user.id)),
    )
    [item] = resp.json()
    assert item["model_name"] == "x-ai/glm-4.6"
