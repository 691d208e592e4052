from __future__ import annotations

import datetime as dt

from app.jwt_auth import create_access_token, decode_access_token
from tests.utils import seed_user


def test_token_round_trip_carries_user_id():
    claims = decode_access_token(create_access_token("user-123"))
    assert claims["sub"] == "user-123"
    assert claims["type"] == "access"
    assert claims["exp"] - claims["iat"] == 86400


def test_expired_token_is_rejected(client, db_session):
    user = seed_user(db_session, email="expired@example.com")
    token = create_access_token(
        str(user.id),
        expires_in_seconds=60,
        issued_at=dt.datetime.now(dt.UTC) - dt.timedelta(hours=1),
    )

    resp = client.get("/api/credits/me", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert resp.json()["detail"]["error"] == "unauthorized"


def test_token_for_deleted_user_is_rejected(client):
    token = create_access_token("00000000-0000-0000-0000-000000000000")
    resp = client.get("/api/credits/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_non_bearer_scheme_is_rejected(client):
    resp = client.get("/api/credits/me", headers={"Authorization": "Basic abc"})
    assert resp.status_code == 401


def test_inactive_user_is_forbidden(client, db_session):
    user = seed_user(db_session, email="disabled@example.com")
    user.is_active = False
    db_session.commit()

    resp = client.get("/api/credits/me", headers={"Authorization": f"Bearer {create_access_token(str(user.id))}"})

    assert resp.status_code == 403
