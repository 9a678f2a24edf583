from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo import ASCENDING, DESCENDING

from app.config import Settings
from app.db.session import mongo_transaction

logger = logging.getLogger(__name__)


class MongoDatabase:
    """Client MongoDB et collections de l'application, construit au démarrage."""

    def __init__(self, client: AsyncIOMotorClient, db_name: str):
        self.client = client
        self.db = client[db_name]

        # Collections
        self.users = self.db["users"]
        self.admins = self.db["admins"]
        self.user_devices = self.db["user_devices"]
        self.user_connections = self.db["user_connections"]
        self.events = self.db["events"]
        self.dinners = self.db["dinners"]

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoDatabase":
        client = AsyncIOMotorClient(settings.MONGO_URL)
        return cls(client, settings.MONGO_DB)

    async def ensure_indexes(self) -> None:
        await self.users.create_index("email", unique=True)
        await self.users.create_index([
            ("is_active", ASCENDING),
            ("is_deleted", ASCENDING),
            ("is_blocked", ASCENDING),
            ("status", ASCENDING),
        ])
        await self.admins.create_index("email", unique=True)
        await self.user_devices.create_index("device_id", unique=True)
        await self.user_devices.create_index([("user_id", ASCENDING), ("device_id", ASCENDING)])

        # Une seule relation par paire, recherche par membre
        await self.user_connections.create_index("pair_key", unique=True)
        await self.user_connections.create_index("members")

        await self.events.create_index([("starts_at", DESCENDING)])
        await self.dinners.create_index([("starts_at", DESCENDING)])
        logger.info("Index MongoDB vérifiés")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
        async with mongo_transaction(self.client) as session:
            yield session

    def close(self) -> None:
        self.client.close()


def get_mongo(request: Request) -> MongoDatabase:
    return request.app.state.mongo
