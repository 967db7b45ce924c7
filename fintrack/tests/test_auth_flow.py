"""
Integration tests for the Authentication Flow.

Verifies Register -> Login -> Me -> Logout and the lockout behaviour
through the HTTP API.
"""

import pytest
from datetime import timedelta

from fintrack.app.core.clock import utcnow
from fintrack.app.core.exceptions import GENERIC_CREDENTIALS_MESSAGE
from fintrack.app.models.enums import AccountStatus
from fintrack.app.services.activity_log import ActivityType
from fintrack.tests.helpers import DEFAULT_PASSWORD, CHROME_WINDOWS_UA, login, auth_headers


@pytest.mark.asyncio
async def test_register_login_me_flow(client, activity_entries):
    # 1. Register
    register_response = await client.post("/v1/auth/register", json={
        "email": "alice@example.com",
        "username": "alice",
        "password": DEFAULT_PASSWORD,
        "full_name": "Alice Smith",
    })
    assert register_response.status_code == 201
    data = register_response.json()
    assert data["role"] == "USER"
    assert data["uuid"]
    assert len(await activity_entries(ActivityType.USER_CREATED, data["user_id"])) == 1

    # 2. Login with email
    login_response = await login(client, "alice@example.com", headers={"User-Agent": CHROME_WINDOWS_UA})
    assert login_response.status_code == 200
    token_data = login_response.json()
    assert token_data["first_login"] is True
    assert token_data["risk_level"] == "none"
    assert token_data["needs_password_change"] is False
    token = token_data["access_token"]

    # 3. Me
    me_response = await client.get("/v1/auth/me", headers=auth_headers(token))
    assert me_response.status_code == 200
    me = me_response.json()
    assert me["username"] == "alice"
    assert me["account_status"] == "active"
    assert me["total_login_count"] == 1
    assert me["needs_password_change"] is False


@pytest.mark.asyncio
async def test_register_duplicate_username(client, make_account):
    await make_account(username="alice")

    response = await client.post("/v1/auth/register", json={
        "email": "other@example.com",
        "username": "alice",
        "password": DEFAULT_PASSWORD,
    })

    assert response.status_code == 400
    assert response.json()["message"] == "Username already registered"


@pytest.mark.asyncio
async def test_generic_error_for_unknown_user_and_wrong_password(client, make_account):
    await make_account(username="alice")

    unknown = await login(client, "nobody")
    wrong = await login(client, "alice", password="wrong-password")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert unknown.json()["message"] == GENERIC_CREDENTIALS_MESSAGE


@pytest.mark.asyncio
async def test_lockout_after_three_failures(client, make_account, activity_entries):
    account = await make_account(username="alice")

    for _ in range(3):
        response = await login(client, "alice", password="wrong-password")
        assert response.status_code == 401

    response = await login(client, "alice")
    assert response.status_code == 403
    body = response.json()
    assert body["error_code"] == "ERR_AUTH_003"
    assert body["details"]["account_status"] == "blocked"
    assert body["details"]["blocked_by"] == "system"
    assert body["details"]["remaining_minutes"] in (29, 30)
    assert "Auto-unlock in:" in body["message"]
    assert "Your failed attempts: 3" in body["message"]

    assert len(await activity_entries(ActivityType.LOGIN_FAILED, account.id)) == 2
    assert len(await activity_entries(ActivityType.ACCOUNT_BLOCKED, account.id)) == 1
    assert len(await activity_entries(ActivityType.LOGIN_DENIED, account.id)) == 1


@pytest.mark.asyncio
async def test_expired_block_allows_login(client, make_account):
    await make_account(
        username="alice",
        account_status=AccountStatus.BLOCKED,
        failed_login_attempts=3,
        blocked_until=utcnow() - timedelta(minutes=1),
        locked_by="system",
    )

    response = await login(client, "alice")

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_logout_revokes_token(client, make_account, activity_entries):
    account = await make_account(username="alice")
    token = (await login(client, "alice")).json()["access_token"]

    logout_response = await client.post("/v1/auth/logout", headers=auth_headers(token))
    assert logout_response.status_code == 200

    me_response = await client.get("/v1/auth/me", headers=auth_headers(token))
    assert me_response.status_code == 401
    assert me_response.json()["error_code"] == "ERR_AUTH_002"
    assert len(await activity_entries(ActivityType.LOGOUT, account.id)) == 1

    # A fresh login still works
    new_token = (await login(client, "alice")).json()["access_token"]
    assert (await client.get("/v1/auth/me", headers=auth_headers(new_token))).status_code == 200


@pytest.mark.asyncio
async def test_me_refreshes_session_snapshot(client, make_account, db_session):
    account = await make_account(username="alice")
    token = (await login(client, "alice")).json()["access_token"]

    response = await client.get(
        "/v1/auth/me",
        headers={**auth_headers(token), "User-Agent": CHROME_WINDOWS_UA},
    )
    assert response.status_code == 200

    await db_session.refresh(account)
    assert account.current_user_agent == CHROME_WINDOWS_UA
    assert account.current_browser == "Chrome"
    assert account.current_platform == "Windows"


@pytest.mark.asyncio
async def test_change_password(client, make_account, db_session):
    account = await make_account(username="alice")
    token = (await login(client, "alice")).json()["access_token"]

    bad = await client.post(
        "/v1/auth/change-password",
        headers=auth_headers(token),
        json={"current_password": "wrong-password", "new_password": "another-long-secret"},
    )
    assert bad.status_code == 400

    good = await client.post(
        "/v1/auth/change-password",
        headers=auth_headers(token),
        json={"current_password": DEFAULT_PASSWORD, "new_password": "another-long-secret"},
    )
    assert good.status_code == 200

    await db_session.refresh(account)
    assert account.password_change_count == 1
    assert (await login(client, "alice")).status_code == 401
    assert (await login(client, "alice", password="another-long-secret")).status_code == 200


@pytest.mark.asyncio
async def test_protected_route_without_token(client):
    response = await client.get("/v1/auth/me")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"


@pytest.mark.asyncio
async def test_overlong_correlation_id_is_replaced(client, make_account, activity_entries):
    account = await make_account(username="alice")

    response = await login(client, "alice", password="wrong-password", headers={"X-Correlation-ID": "x" * 200})

    assert response.status_code == 401
    correlation_id = response.headers["X-Correlation-ID"]
    assert correlation_id != "x" * 200
    assert len(correlation_id) <= 64

    entries = await activity_entries(ActivityType.LOGIN_FAILED, account.id)
    assert len(entries) == 1
    assert entries[0].session_id == correlation_id


@pytest.mark.asyncio
async def test_malformed_correlation_id_is_replaced(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "bad id; drop"})

    assert response.headers["X-Correlation-ID"] != "bad id; drop"


@pytest.mark.asyncio
async def test_update_profile(client, make_account, activity_entries):
    account = await make_account(username="alice", full_name="Alice Smith")
    await make_account(email="taken@example.com")
    token = (await login(client, "alice")).json()["access_token"]

    response = await client.patch(
        "/v1/auth/me",
        headers=auth_headers(token),
        json={"full_name": "Alice Jones", "position": "Controller"},
    )
    assert response.status_code == 200
    assert response.json()["full_name"] == "Alice Jones"
    assert response.json()["position"] == "Controller"

    duplicate = await client.patch(
        "/v1/auth/me",
        headers=auth_headers(token),
        json={"email": "taken@example.com"},
    )
    assert duplicate.status_code == 400

    forbidden_field = await client.patch(
        "/v1/auth/me",
        headers=auth_headers(token),
        json={"is_active": False},
    )
    assert forbidden_field.status_code == 422

    entries = await activity_entries(ActivityType.PROFILE_UPDATED, account.id)
    assert len(entries) == 1
    assert entries[0].activity_data["changed_fields"] == ["full_name", "position"]
    assert entries[0].performed_by is None
