import re

from jose import jwt as jose_jwt

from helpers import PASSWORD, bearer, register_and_login


async def test_register_login_and_me(client):
    session = await register_and_login(client, "Alice@Example.com")

    assert session["user"]["email"] == "alice@example.com"
    assert "password" not in session["user"]
    assert session["device_id"]

    response = await client.get("/api/profile/me", headers=session["headers"])
    assert response.status_code == 200
    assert response.json()["first_name"] == "Alice"


async def test_register_rejects_duplicate_email_and_weak_password(client):
    await register_and_login(client, "alice@example.com")

    payload = {
        "email": "alice@example.com",
        "password": PASSWORD,
        "password_confirm": PASSWORD,
        "first_name": "Alice",
        "last_name": "Martin",
    }
    assert (await client.post("/api/auth/register", json=payload)).status_code == 409

    weak = {**payload, "email": "bob@example.com", "password": "faible", "password_confirm": "faible"}
    assert (await client.post("/api/auth/register", json=weak)).status_code == 422


async def test_login_with_wrong_password(client):
    await register_and_login(client, "alice@example.com")

    response = await client.post("/api/auth/login", json={
        "email": "alice@example.com",
        "password": "Mauvais123!",
        "device_info": {"device_name": "Pixel", "device_type": "android"},
    })
    assert response.status_code == 401


async def test_requests_without_valid_token_are_refused(client):
    assert (await client.get("/api/profile/me")).status_code == 401
    assert (await client.get("/api/profile/me", headers=bearer("pas.un.jwt"))).status_code == 401


async def test_refresh_token_with_device_header(client):
    session = await register_and_login(client, "alice@example.com")

    response = await client.post(
        "/api/auth/refresh-token",
        json={"refresh_token": session["refresh_token"]},
        headers={"X-Device-Id": session["device_id"]},
    )
    assert response.status_code == 200
    new_headers = bearer(response.json()["access_token"])
    assert (await client.get("/api/profile/me", headers=new_headers)).status_code == 200

    response = await client.post(
        "/api/auth/refresh-token",
        json={"refresh_token": "mauvais"},
        headers={"X-Device-Id": session["device_id"]},
    )
    assert response.status_code == 401


async def test_logout_revokes_the_device_token(client):
    session = await register_and_login(client, "alice@example.com")

    assert (await client.post("/api/auth/logout", headers=session["headers"])).status_code == 200
    assert (await client.get("/api/profile/me", headers=session["headers"])).status_code == 401


async def test_devices_are_managed_independently(client):
    session = await register_and_login(client, "alice@example.com")

    response = await client.post(
        "/api/auth/devices",
        json={"device_name": "iPad", "device_type": "ios"},
        headers=session["headers"],
    )
    assert response.status_code == 201
    tablet = response.json()

    response = await client.put(
        f"/api/auth/devices/{tablet['device_id']}/token",
        json={"device_token": "push-token"},
        headers=session["headers"],
    )
    assert response.status_code == 200

    response = await client.delete(f"/api/auth/devices/{tablet['device_id']}", headers=session["headers"])
    assert response.status_code == 200
    assert (await client.get("/api/profile/me", headers=bearer(tablet["access_token"]))).status_code == 401
    # La session du premier appareil reste ouverte
    assert (await client.get("/api/profile/me", headers=session["headers"])).status_code == 200

    response = await client.delete("/api/auth/devices/inconnu", headers=session["headers"])
    assert response.status_code == 404


async def test_password_reset_flow(client, email_sink):
    session = await register_and_login(client, "alice@example.com")

    response = await client.post("/api/auth/request-reset", json={"email": "alice@example.com"})
    unknown = await client.post("/api/auth/request-reset", json={"email": "personne@example.com"})
    assert response.status_code == unknown.status_code == 200
    assert response.json() == unknown.json()

    assert len(email_sink.sent) == 1
    _, recipient, body = email_sink.sent[0]
    assert recipient == "alice@example.com"
    token = re.search(r"https://app\.example\.com/reset-password/([0-9a-f]{64})", body).group(1)

    new_password = "Nouveau456?"
    response = await client.post("/api/auth/reset-password", json={
        "token": token, "password": new_password, "password_confirm": new_password,
    })
    assert response.status_code == 200

    # Jeton à usage unique, anciennes sessions fermées
    response = await client.post("/api/auth/reset-password", json={
        "token": token, "password": new_password, "password_confirm": new_password,
    })
    assert response.status_code == 400
    assert (await client.get("/api/profile/me", headers=session["headers"])).status_code == 401

    response = await client.post("/api/auth/login", json={
        "email": "alice@example.com",
        "password": new_password,
        "device_info": {"device_name": "Pixel", "device_type": "android"},
    })
    assert response.status_code == 200


async def test_signed_token_without_subject_is_refused(client, settings):
    for role in ("user", "admin"):
        token = jose_jwt.encode({"role": role, "type": "access", "sid": "x"}, settings.JWT_SECRET, algorithm="HS256")
        assert (await client.get("/api/profile/me", headers=bearer(token))).status_code == 401
        assert (await client.get("/admin/admins", headers=bearer(token))).status_code == 401
