"""
Fixtures partagées : base MongoDB en mémoire (mongomock-motor), réglages de
test, faux service d'email et client HTTP branché sur l'application.
"""
from contextlib import asynccontextmanager
from typing import List, Tuple

import httpx
import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from app.auth.jwt_handler import JwtHandler
from app.config import Settings
from app.db.mongo import MongoDatabase
from app.main import create_app
from app.utils.email import EmailService
from app.utils.storage import ImageStorage


class InMemoryMongo(MongoDatabase):
    """mongomock ne gère pas les sessions : les transactions passent ``None``."""

    @asynccontextmanager
    async def transaction(self):
        yield None

    def close(self) -> None:
        pass


class RecordingEmailService(EmailService):
    """Garde les emails en mémoire au lieu de les envoyer."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.sent: List[Tuple[str, str, str]] = []

    async def send_email_async(self, subject: str, email_to: str, body: str) -> bool:
        self.sent.append((subject, email_to, body))
        return True


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        MONGO_URL="mongodb://localhost:27017",
        MONGO_DB="test_db",
        JWT_SECRET="test-secret",
        FRONTEND_URL="https://app.example.com",
        UPLOAD_DIR=str(tmp_path / "upload"),
        MAX_IMAGE_SIZE=1024,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
async def mongo(settings) -> InMemoryMongo:
    db = InMemoryMongo(AsyncMongoMockClient(), settings.MONGO_DB)
    await db.ensure_indexes()
    return db


@pytest.fixture
def jwt(settings) -> JwtHandler:
    return JwtHandler.from_settings(settings)


@pytest.fixture
def email_sink(settings) -> RecordingEmailService:
    return RecordingEmailService(settings)


@pytest.fixture
def app(settings, mongo, email_sink, jwt):
    storage = ImageStorage.from_settings(settings)
    return create_app(settings, mongo=mongo, email=email_sink, storage=storage, jwt=jwt)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def user_ids() -> List[ObjectId]:
    return [ObjectId() for _ in range(4)]
