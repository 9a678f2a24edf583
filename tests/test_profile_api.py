from pathlib import Path

from helpers import create_admin_and_login, register_and_login

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def upload(client, session, content=PNG, filename="photo.png", content_type="image/png"):
    return await client.post(
        "/api/profile/me/images",
        files=[("images", (filename, content, content_type))],
        headers=session["headers"],
    )


async def test_update_details_accepts_only_allowed_fields(client):
    session = await register_and_login(client, "alice@example.com")

    response = await client.put(
        "/api/profile/me/details",
        json={"first_name": "Alicia", "bio": "Cuisine et randonnée"},
        headers=session["headers"],
    )
    assert response.status_code == 200
    assert response.json()["user"]["first_name"] == "Alicia"
    assert response.json()["user"]["bio"] == "Cuisine et randonnée"

    response = await client.put(
        "/api/profile/me/details",
        json={"email": "pirate@example.com"},
        headers=session["headers"],
    )
    assert response.status_code == 422


async def test_public_profile_hides_private_fields(client):
    alice = await register_and_login(client, "alice@example.com")
    bob = await register_and_login(client, "bob@example.com", first_name="Bob")

    response = await client.get(f"/api/profile/{bob['user']['id']}", headers=alice["headers"])

    assert response.status_code == 200
    body = response.json()
    assert body["first_name"] == "Bob"
    assert "email" not in body
    assert (await client.get("/api/profile/inconnu", headers=alice["headers"])).status_code == 404


async def test_image_upload_is_validated(client):
    session = await register_and_login(client, "alice@example.com")

    assert (await upload(client, session, filename="notes.txt", content_type="text/plain")).status_code == 400
    assert (await upload(client, session, content=b"x" * 2048)).status_code == 413


async def test_image_lifecycle(client, mongo, jwt, settings):
    session = await register_and_login(client, "alice@example.com")
    user_id = session["user"]["id"]

    response = await upload(client, session)
    assert response.status_code == 201
    [image] = response.json()["images"]
    assert image["is_approved"] is False
    stored_file = Path(settings.UPLOAD_DIR) / image["image"]["key"]
    assert stored_file.exists()

    # Non approuvée : ne peut pas devenir l'image de profil
    response = await client.put(f"/api/profile/me/images/{image['id']}/default", headers=session["headers"])
    assert response.status_code == 400

    admin = await create_admin_and_login(client, mongo, jwt)
    response = await client.put(
        f"/admin/users/{user_id}/images/{image['id']}/status",
        json={"is_approved": True},
        headers=admin["headers"],
    )
    assert response.status_code == 200

    response = await client.put(f"/api/profile/me/images/{image['id']}/default", headers=session["headers"])
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["profile_image"]["key"] == image["image"]["key"]
    assert [img["is_profile_image"] for img in user["images"]] == [True]

    response = await client.delete(f"/api/profile/me/images/{image['id']}", headers=session["headers"])
    assert response.status_code == 200
    assert not stored_file.exists()
    me = (await client.get("/api/profile/me", headers=session["headers"])).json()
    assert me["images"] == []
    assert me["profile_image"] is None

    response = await client.delete(f"/api/profile/me/images/{image['id']}", headers=session["headers"])
    assert response.status_code == 404


async def test_several_images_in_one_upload(client, settings):
    session = await register_and_login(client, "alice@example.com")

    response = await client.post(
        "/api/profile/me/images",
        files=[("images", ("a.png", PNG, "image/png")), ("images", ("b.jpg", PNG, "image/jpeg"))],
        headers=session["headers"],
    )
    assert response.status_code == 201
    assert len(response.json()["images"]) == 2

    # Un fichier refusé annule tout l'envoi
    response = await client.post(
        "/api/profile/me/images",
        files=[("images", ("c.png", PNG, "image/png")), ("images", ("notes.txt", b"x", "text/plain"))],
        headers=session["headers"],
    )
    assert response.status_code == 400
    me = (await client.get("/api/profile/me", headers=session["headers"])).json()
    assert len(me["images"]) == 2
    folder = Path(settings.UPLOAD_DIR) / "profileImage" / session["user"]["id"]
    assert len(list(folder.iterdir())) == 2


async def test_admin_manages_user_images(client, mongo, jwt, settings):
    session = await register_and_login(client, "alice@example.com")
    user_id = session["user"]["id"]
    admin = await create_admin_and_login(client, mongo, jwt)
    headers = admin["headers"]

    response = await client.post(
        f"/admin/users/{user_id}/images",
        files=[("images", ("a.png", PNG, "image/png")), ("images", ("b.png", PNG, "image/png"))],
        headers=headers,
    )
    assert response.status_code == 201
    first, second = response.json()["images"]

    response = await client.put(f"/admin/users/{user_id}/images/{first['id']}/default", headers=headers)
    assert response.status_code == 400

    await client.put(f"/admin/users/{user_id}/images/{first['id']}/status", json={"is_approved": True}, headers=headers)
    response = await client.put(f"/admin/users/{user_id}/images/{first['id']}/default", headers=headers)
    assert response.status_code == 200
    assert response.json()["user"]["profile_image"]["key"] == first["image"]["key"]

    response = await client.put(
        f"/admin/users/{user_id}/images/{first['id']}",
        files={"image": ("nouvelle.png", PNG, "image/png")},
        headers=headers,
    )
    assert response.status_code == 200
    user = response.json()["user"]
    new_key = user["images"][0]["image"]["key"]
    assert user["images"][0]["id"] == first["id"]
    assert user["profile_image"]["key"] == new_key
    assert not (Path(settings.UPLOAD_DIR) / first["image"]["key"]).exists()
    assert (Path(settings.UPLOAD_DIR) / new_key).exists()

    response = await client.put(
        f"/admin/users/{user_id}/images/inconnue",
        files={"image": ("x.png", PNG, "image/png")},
        headers=headers,
    )
    assert response.status_code == 404
    assert (await client.post(f"/admin/users/{'0' * 24}/images", files=[("images", ("a.png", PNG, "image/png"))],
                              headers=headers)).status_code == 404
    assert second["is_approved"] is False
