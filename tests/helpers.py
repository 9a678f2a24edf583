import httpx

from app.admins.models import AdminCreate
from app.admins.services import AdminService
from app.auth.jwt_handler import JwtHandler
from app.db.mongo import MongoDatabase

PASSWORD = "Secret123!"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def register_and_login(client: httpx.AsyncClient, email: str, first_name: str = "Alice") -> dict:
    """Inscrit un utilisateur puis ouvre une session ; retourne la réponse de /login + headers."""
    response = await client.post("/api/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "password_confirm": PASSWORD,
        "first_name": first_name,
        "last_name": "Martin",
    })
    assert response.status_code == 201, response.text

    response = await client.post("/api/auth/login", json={
        "email": email,
        "password": PASSWORD,
        "device_info": {"device_name": "Pixel", "device_type": "android"},
    })
    assert response.status_code == 200, response.text
    data = response.json()
    data["headers"] = bearer(data["access_token"])
    return data


async def create_admin_and_login(client: httpx.AsyncClient, mongo: MongoDatabase, jwt: JwtHandler) -> dict:
    await AdminService(mongo, jwt).create_admin(AdminCreate(
        first_name="Root", last_name="Admin", email="root@example.com", password=PASSWORD,
    ))
    response = await client.post("/admin/auth/login", json={"email": "root@example.com", "password": PASSWORD})
    assert response.status_code == 200, response.text
    data = response.json()
    data["headers"] = bearer(data["access_token"])
    return data
