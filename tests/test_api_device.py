"""Device authorization API tests — the CLI login round-trip over HTTP."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from agentage.models.base import utcnow
from agentage.models.device_code import DeviceCode


async def _expire(database, device_code: str) -> None:
    async with database.session() as s:
        await s.execute(
            update(DeviceCode)
            .where(DeviceCode.device_code == device_code)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )


@pytest.mark.asyncio
async def test_request_device_code(client):
    r = await client.post("/api/auth/device/code", json={"provider": "github"})
    assert r.status_code == 200
    data = r.json()
    assert data["expires_in"] == 900
    assert data["interval"] == 5
    assert data["verification_uri"] == "http://api.example.com/device"
    assert data["verification_uri_complete"].endswith(f"?code={data['user_code']}")


@pytest.mark.asyncio
async def test_request_device_code_without_body(client):
    r = await client.post("/api/auth/device/code")
    assert r.status_code == 200
    assert len(r.json()["user_code"]) == 9


@pytest.mark.asyncio
async def test_request_device_code_rejects_other_providers(client):
    r = await client.post("/api/auth/device/code", json={"provider": "google"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"


@pytest.mark.asyncio
async def test_full_device_login(client, make_user, auth_header):
    user = await make_user("cli@example.com")

    code = (await client.post("/api/auth/device/code", json={})).json()

    r = await client.post("/api/auth/device/token", json={"device_code": code["device_code"]})
    assert r.status_code == 400
    assert r.json()["error"] == "authorization_pending"
    assert r.json()["error_description"]

    r = await client.get("/api/auth/device/verify", params={"code": code["user_code"].lower()})
    assert r.status_code == 200
    assert r.json()["valid"] is True
    assert r.json()["user_code"] == code["user_code"]

    r = await client.post(
        "/api/auth/device/authorize",
        json={"user_code": code["user_code"]},
        headers=auth_header(user),
    )
    assert r.status_code == 200
    assert r.json()["success"] is True

    r = await client.post("/api/auth/device/token", json={"device_code": code["device_code"]})
    assert r.status_code == 200
    token = r.json()
    assert token["token_type"] == "Bearer"
    assert token["expires_in"] == 7 * 86400
    assert token["user"]["email"] == "cli@example.com"

    r = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token['access_token']}"})
    assert r.status_code == 200
    assert r.json()["user"]["id"] == user.id

    # Poll again: same token
    r = await client.post("/api/auth/device/token", json={"device_code": code["device_code"]})
    assert r.json()["access_token"] == token["access_token"]

    # Verification page now reports the code as used
    r = await client.get("/api/auth/device/verify", params={"code": code["user_code"]})
    assert r.status_code == 400
    assert r.json()["error"] == "access_denied"


@pytest.mark.asyncio
async def test_authorize_twice_is_invalid_grant(client, make_user, auth_header):
    alice = await make_user()
    bob = await make_user()
    code = (await client.post("/api/auth/device/code")).json()

    r1 = await client.post("/api/auth/device/authorize", json={"user_code": code["user_code"]}, headers=auth_header(alice))
    r2 = await client.post("/api/auth/device/authorize", json={"user_code": code["user_code"]}, headers=auth_header(bob))
    assert r1.status_code == 200
    assert r2.status_code == 400
    assert r2.json()["error"] == "invalid_grant"

    r = await client.post("/api/auth/device/token", json={"device_code": code["device_code"]})
    assert r.json()["user"]["id"] == alice.id


@pytest.mark.asyncio
async def test_authorize_requires_login(client):
    code = (await client.post("/api/auth/device/code")).json()
    r = await client.post("/api/auth/device/authorize", json={"user_code": code["user_code"]})
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_missing_parameters_are_invalid_request(client, make_user, auth_header):
    user = await make_user()

    r = await client.post("/api/auth/device/token", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"

    r = await client.post("/api/auth/device/authorize", json={}, headers=auth_header(user))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"

    r = await client.get("/api/auth/device/verify")
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"


@pytest.mark.asyncio
async def test_unknown_codes(client):
    r = await client.post("/api/auth/device/token", json={"device_code": "nope"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"

    r = await client.get("/api/auth/device/verify", params={"code": "ZZZZ-ZZZZ"})
    assert r.status_code == 404
    assert r.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
async def test_expired_code(client, database, make_user, auth_header):
    user = await make_user()
    code = (await client.post("/api/auth/device/code")).json()
    await _expire(database, code["device_code"])

    r = await client.post("/api/auth/device/token", json={"device_code": code["device_code"]})
    assert r.status_code == 400
    assert r.json()["error"] == "expired_token"

    r = await client.get("/api/auth/device/verify", params={"code": code["user_code"]})
    assert r.status_code == 400
    assert r.json()["error"] == "expired_token"

    r = await client.post("/api/auth/device/authorize", json={"user_code": code["user_code"]}, headers=auth_header(user))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
async def test_cleanup_requires_admin(client, database, make_user, auth_header):
    user = await make_user()
    admin = await make_user(role="admin")
    code = (await client.post("/api/auth/device/code")).json()
    await _expire(database, code["device_code"])

    r = await client.post("/api/auth/device/cleanup", headers=auth_header(user))
    assert r.status_code == 403

    r = await client.post("/api/auth/device/cleanup", headers=auth_header(admin))
    assert r.status_code == 200
    assert r.json() == {"deleted": 1}


@pytest.mark.asyncio
async def test_fast_polling_gets_slow_down(settings, database):
    from httpx import ASGITransport, AsyncClient

    from agentage.api.app import create_app

    app = create_app(settings.model_copy(update={"device_poll_enforce_interval": True}), database)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        code = (await ac.post("/api/auth/device/code")).json()
        body = {"device_code": code["device_code"]}

        r1 = await ac.post("/api/auth/device/token", json=body)
        r2 = await ac.post("/api/auth/device/token", json=body)
    assert r1.json()["error"] == "authorization_pending"
    assert r2.status_code == 400
    assert r2.json()["error"] == "slow_down"


@pytest.mark.asyncio
async def test_unknown_codes_do_not_fill_the_throttle(settings, database):
    from httpx import ASGITransport, AsyncClient

    from agentage.api.app import create_app

    app = create_app(settings.model_copy(update={"device_poll_enforce_interval": True}), database)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        for i in range(25):
            r = await ac.post("/api/auth/device/token", json={"device_code": f"bogus-{i}"})
            assert r.json()["error"] == "invalid_grant"
    assert len(app.state.poll_throttle) == 0
