import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from app.activities.models import Activity, ActivityCreate
from app.connections.ledger import ConnectionLedger
from app.connections.models import ActivityKind
from app.db.mongo import MongoDatabase
from app.utils.mongodb_utils import IdLike, convert_mongodb_result, is_valid_object_id, to_object_id, utcnow
from app.utils.pagination import Pagination, PaginationParams, find_with_pagination

logger = logging.getLogger(__name__)


class ActivityNotFoundError(Exception):
    pass


class ActivityFullError(Exception):
    pass


class NotParticipantError(Exception):
    pass


class HostCannotLeaveError(Exception):
    pass


class ActivityPermissionError(Exception):
    pass


class ActivityService:
    """
    Dîners et événements. Chaque changement de participants est répercuté
    dans le registre des relations, dans la même transaction MongoDB que
    l'écriture de l'activité.
    """

    def __init__(self, mongo: MongoDatabase, kind: ActivityKind, ledger: Optional[ConnectionLedger] = None):
        self.mongo = mongo
        self.kind = ActivityKind(kind)
        self.collection = mongo.dinners if self.kind == ActivityKind.DINNER else mongo.events
        self.ledger = ledger or ConnectionLedger(mongo)

    def _to_activity(self, doc: Dict[str, Any]) -> Activity:
        return Activity(kind=self.kind, **convert_mongodb_result(doc))

    async def _get_doc(self, activity_id: IdLike) -> Dict[str, Any]:
        if not is_valid_object_id(activity_id):
            raise ActivityNotFoundError(str(activity_id))
        doc = await self.collection.find_one({"_id": to_object_id(activity_id)})
        if not doc:
            raise ActivityNotFoundError(str(activity_id))
        return doc

    async def get(self, activity_id: IdLike) -> Activity:
        return self._to_activity(await self._get_doc(activity_id))

    async def list(self, params: PaginationParams) -> Tuple[List[Activity], Pagination]:
        docs, pagination = await find_with_pagination(self.collection, {}, params, default_sort="starts_at")
        return [self._to_activity(doc) for doc in docs], pagination

    async def create(self, data: ActivityCreate, host_id: IdLike) -> Activity:
        host = to_object_id(host_id)
        now = utcnow()
        doc = {
            **data.model_dump(),
            "host_id": host,
            "participant_ids": [host],
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        logger.info(f"{self.kind.value} créé : id={result.inserted_id}, hôte={host}")
        doc["_id"] = result.inserted_id
        return self._to_activity(doc)

    async def join(self, activity_id: IdLike, user_id: IdLike) -> Activity:
        """Ajoute le participant et le relie à tous les participants actuels."""
        user = to_object_id(user_id)
        doc = await self._get_doc(activity_id)
        participants: List[ObjectId] = doc.get("participant_ids", [])
        if user in participants:
            return self._to_activity(doc)

        max_participants = doc.get("max_participants")
        if max_participants is not None and len(participants) >= max_participants:
            raise ActivityFullError(str(doc["_id"]))

        guard: Dict[str, Any] = {"_id": doc["_id"], "participant_ids": {"$ne": user}}
        if max_participants is not None:
            # La place doit encore être libre au moment de l'écriture
            guard[f"participant_ids.{max_participants - 1}"] = {"$exists": False}

        async with self.mongo.transaction() as session:
            # Liste des participants lue au moment même de l'écriture
            before = await self.collection.find_one_and_update(
                guard,
                {"$push": {"participant_ids": user}, "$set": {"updated_at": utcnow()}},
                return_document=ReturnDocument.BEFORE,
                session=session,
            )
            if before is not None:
                others: List[ObjectId] = before.get("participant_ids", [])
                await self.ledger.add_links(user, self.kind, doc["_id"], others, session=session)

        if before is None:
            current = await self._get_doc(doc["_id"])
            if user not in current.get("participant_ids", []):
                raise ActivityFullError(str(doc["_id"]))
            return self._to_activity(current)

        logger.info(f"{self.kind.value} {doc['_id']} : participant ajouté {user}")
        return await self.get(doc["_id"])

    async def leave(self, activity_id: IdLike, user_id: IdLike) -> Activity:
        user = to_object_id(user_id)
        doc = await self._get_doc(activity_id)
        if doc["host_id"] == user:
            raise HostCannotLeaveError(str(doc["_id"]))
        if user not in doc.get("participant_ids", []):
            raise NotParticipantError(str(doc["_id"]))

        async with self.mongo.transaction() as session:
            await self.collection.update_one(
                {"_id": doc["_id"]},
                {"$pull": {"participant_ids": user}, "$set": {"updated_at": utcnow()}},
                session=session,
            )
            await self.ledger.remove_links(user, self.kind, doc["_id"], session=session)

        logger.info(f"{self.kind.value} {doc['_id']} : participant retiré {user}")
        return await self.get(doc["_id"])

    async def delete(self, activity_id: IdLike, user_id: IdLike) -> None:
        """Seul l'hôte supprime ; les relations de tous les participants sont mises à jour."""
        doc = await self._get_doc(activity_id)
        if doc["host_id"] != to_object_id(user_id):
            raise ActivityPermissionError(str(doc["_id"]))

        async with self.mongo.transaction() as session:
            for participant in doc.get("participant_ids", []):
                await self.ledger.remove_links(participant, self.kind, doc["_id"], session=session)
            await self.collection.delete_one({"_id": doc["_id"]}, session=session)

        logger.info(f"{self.kind.value} supprimé : id={doc['_id']}")
