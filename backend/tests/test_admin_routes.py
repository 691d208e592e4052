from __future__ import annotations

from sqlalchemy import select

from app.models import User
from tests.utils import ADMIN_EMAIL, jwt_auth_headers, seed_user


def _admin_headers(db_session) -> dict[str, str]:
    admin = db_session.execute(select(User).where(User.email == ADMIN_EMAIL)).scalars().one()
    return jwt_auth_headers(str(admin.id))


def test_grant_tokens(client, db_session):
    user = seed_user(db_session, email="target@example.com", balance=100)

    resp = client.post(
        "/api/admin/tokens/grant",
        json={"userId": str(user.id), "amount": 400, "description": "support credit"},
        headers=_admin_headers(db_session),
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "userId": str(user.id),
        "amount": 400,
        "newBalance": 500,
    }


def test_grant_rejects_non_positive_amount(client, db_session):
    user = seed_user(db_session, email="target@example.com", balance=100)

    resp = client.post(
        "/api/admin/tokens/grant",
        json={"userId": str(user.id), "amount": 0},
        headers=_admin_headers(db_session),
    )

    assert resp.status_code == 422


def test_grant_rejects_amount_over_limit(client, db_session):
    user = seed_user(db_session, email="target@example.com", balance=100)

    resp = client.post(
        "/api/admin/tokens/grant",
        json={"userId": str(user.id), "amount": 1_000_001},
        headers=_admin_headers(db_session),
    )

    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "invalid_amount"


def test_grant_unknown_user(client, db_session):
    resp = client.post(
        "/api/admin/tokens/grant",
        json={"userId": "00000000-0000-0000-0000-000000000000", "amount": 10},
        headers=_admin_headers(db_session),
    )

    assert resp.status_code == 404


def test_non_admin_is_forbidden(client, db_session):
    user = seed_user(db_session, email="plain@example.com", balance=100)

    resp = client.post(
        "/api/admin/tokens/grant",
        json={"userId": str(user.id), "amount": 10},
        headers=jwt_auth_headers(str(user.id)),
    )
    assert resp.status_code == 403

    resp = client.get("/api/admin/tokens/overview", headers=jwt_auth_headers(str(user.id)))
    assert resp.status_code == 403


def test_user_stats(client, db_session):
    user = seed_user(db_session, email="stats@example.com", balance=77)

    resp = client.get(f"/api/admin/tokens/stats/{user.id}", headers=_admin_headers(db_session))

    assert resp.status_code == 200
    assert resp.json()["credit_balance"] == 77
    assert resp.json()["user_id"] == str(user.id)


def test_user_stats_unknown_user(client, db_session):
    resp = client.get(
        "/api/admin/tokens/stats/00000000-0000-0000-0000-000000000000",
        headers=_admin_headers(db_session),
    )
    assert resp.status_code == 404


def test_overview(client, db_session):
    seed_user(db_session, email="a@example.com", balance=10)
    seed_user(db_session, email="b@example.com", balance=20)

    resp = client.get("/api/admin/tokens/overview", headers=_admin_headers(db_session))

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_users"] == 3
    emails = {item["email"]: item for item in data["users"]}
    assert emails["a@example.com"]["credit_balance"] == 10
    assert emails[ADMIN_EMAIL]["is_admin"] is True
    assert data["total_balance"] == sum(item["credit_balance"] for item in data["users"])
