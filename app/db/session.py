from contextlib import asynccontextmanager
from typing import AsyncIterator

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
import logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def mongo_transaction(client: AsyncIOMotorClient) -> AsyncIterator[AsyncIOMotorClientSession]:
    """
    Ouvre une session MongoDB et une transaction multi-documents.

    La transaction est validée à la sortie du bloc, annulée si une exception
    remonte. La session est toujours fermée.

    Exemple :
        async with mongo_transaction(client) as session:
            await events.update_one(..., session=session)
            await ledger.add_links(..., session=session)
    """
    async with await client.start_session() as session:
        try:
            async with session.start_transaction():
                yield session
        except Exception:
            logger.warning("Transaction annulée", exc_info=True)
            raise
