"""
Registre des relations entre utilisateurs (collection ``user_connections``).

Une relation existe pour chaque paire non ordonnée d'utilisateurs distincts
qui partagent au moins un dîner ou un événement. Le document garde les
références des activités qui justifient la relation ; il est créé à la
première activité commune et supprimé quand la dernière référence disparaît.

Les écritures sont idempotentes une par une : ``$addToSet`` / ``$pull`` et un
upsert indexé sur ``pair_key`` (index unique). Quand l'appelant fournit une
session MongoDB ouverte dans une transaction, toutes les écritures passent par
cette session et sont annulées avec elle.
"""
from typing import Dict, Iterable, List, NoReturn, Optional, Sequence, Tuple
import logging

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClientSession
from pymongo import UpdateOne
from pymongo.errors import BulkWriteError, ConnectionFailure, PyMongoError

from app.connections.models import (
    ActivityKind,
    ActivitySummary,
    ConnectionListItem,
    ConnectionRecord,
    DetailedConnection,
    REF_FIELDS,
)
from app.db.mongo import MongoDatabase
from app.users.models import USER_PUBLIC_PROJECTION
from app.utils.mongodb_utils import IdLike, convert_mongodb_result, to_object_id, utcnow
from app.utils.pagination import Pagination, PaginationParams, build_pagination

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000
ACTIVITY_SUMMARY_PROJECTION = {"title": 1, "location": 1, "starts_at": 1}


class ConnectionLedgerError(Exception):
    pass


class LedgerStorageError(ConnectionLedgerError):
    """Erreur réseau / transaction transitoire : l'opération peut être rejouée."""


class LedgerConflictError(ConnectionLedgerError):
    """Conflit sur pair_key lors de créations concurrentes."""


def pair_key(user_a: IdLike, user_b: IdLike) -> str:
    """
    Clé canonique d'une paire, indépendante de l'ordre des arguments.

    Chaque identifiant est préfixé par sa longueur ("{len}:{id}") pour que la
    clé reste injective même si un identifiant contient le séparateur "_".
    """
    a, b = sorted((str(user_a), str(user_b)))
    if a == b:
        raise ValueError("Un utilisateur ne peut pas être en relation avec lui-même")
    return f"{len(a)}:{a}_{len(b)}:{b}"


def sorted_members(user_a: ObjectId, user_b: ObjectId) -> List[ObjectId]:
    return sorted((user_a, user_b), key=str)


def _is_transient(exc: PyMongoError) -> bool:
    return isinstance(exc, ConnectionFailure) or exc.has_error_label("TransientTransactionError")


def _only_duplicate_keys(exc: BulkWriteError) -> bool:
    errors = exc.details.get("writeErrors", []) if exc.details else []
    return bool(errors) and all(err.get("code") == DUPLICATE_KEY_CODE for err in errors)


class ConnectionLedger:
    MAX_UPSERT_ATTEMPTS = 2

    def __init__(self, mongo: MongoDatabase):
        self.collection = mongo.user_connections
        self.users = mongo.users
        self.activity_collections = {
            ActivityKind.DINNER: mongo.dinners,
            ActivityKind.EVENT: mongo.events,
        }

    # ─────────────────────────────────────────────
    # Écritures
    # ─────────────────────────────────────────────

    async def add_links(
        self,
        subject: IdLike,
        kind: ActivityKind,
        activity_id: IdLike,
        other_users: Iterable[IdLike],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> int:
        """
        Relie ``subject`` à chacun des ``other_users`` via l'activité donnée.
        Retourne le nombre de paires écrites (0 si la liste est vide après
        exclusion du sujet lui-même).
        """
        kind = ActivityKind(kind)
        subject_id = to_object_id(subject)
        activity_ref = to_object_id(activity_id)

        others: List[ObjectId] = []
        seen = {subject_id}
        for user in other_users:
            user_id = to_object_id(user)
            if user_id not in seen:
                seen.add(user_id)
                others.append(user_id)

        if not others:
            return 0

        ref_field = kind.ref_field
        empty_fields = {field: [] for k, field in REF_FIELDS.items() if k != kind}
        now = utcnow()

        operations = [
            UpdateOne(
                {"pair_key": pair_key(subject_id, other)},
                {
                    "$addToSet": {ref_field: activity_ref},
                    "$set": {"members": sorted_members(subject_id, other), "updated_at": now},
                    "$setOnInsert": {"created_at": now, **empty_fields},
                },
                upsert=True,
            )
            for other in others
        ]
        await self._bulk_upsert(operations, session)
        logger.info(
            f"Relations ajoutées : user={subject_id} {kind.value}={activity_ref} paires={len(operations)}"
        )
        return len(operations)

    async def remove_links(
        self,
        subject: IdLike,
        kind: ActivityKind,
        activity_id: IdLike,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> Tuple[int, int]:
        """
        Retire l'activité de toutes les relations de ``subject`` puis supprime
        celles qui n'ont plus aucune référence.
        Retourne (relations modifiées, relations supprimées).
        """
        kind = ActivityKind(kind)
        subject_id = to_object_id(subject)
        activity_ref = to_object_id(activity_id)

        pulled = await self._pull_reference(subject_id, kind, activity_ref, session)
        pruned = await self._prune_empty(subject_id, session)
        logger.info(
            f"Relations retirées : user={subject_id} {kind.value}={activity_ref} "
            f"modifiées={pulled} supprimées={pruned}"
        )
        return pulled, pruned

    async def _pull_reference(
        self,
        subject_id: ObjectId,
        kind: ActivityKind,
        activity_ref: ObjectId,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> int:
        ref_field = kind.ref_field
        try:
            result = await self.collection.update_many(
                {"members": subject_id, ref_field: activity_ref},
                {"$pull": {ref_field: activity_ref}, "$set": {"updated_at": utcnow()}},
                session=session,
            )
        except PyMongoError as exc:
            self._raise_storage_error(exc, "retrait de référence")
        return result.modified_count

    async def _prune_empty(
        self,
        subject_id: ObjectId,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> int:
        # Suppression conditionnelle : une relation re-remplie entre-temps ne correspond plus
        empty_filter = {field: {"$size": 0} for field in REF_FIELDS.values()}
        try:
            result = await self.collection.delete_many(
                {"members": subject_id, **empty_filter},
                session=session,
            )
        except PyMongoError as exc:
            self._raise_storage_error(exc, "suppression des relations vides")
        return result.deleted_count

    async def _bulk_upsert(self, operations: Sequence[UpdateOne], session: Optional[AsyncIOMotorClientSession]) -> None:
        for attempt in range(1, self.MAX_UPSERT_ATTEMPTS + 1):
            try:
                await self.collection.bulk_write(list(operations), ordered=False, session=session)
                return
            except BulkWriteError as exc:
                if not _only_duplicate_keys(exc):
                    raise
                # Deux créations concurrentes de la même paire : le second passage met à jour
                if session is not None or attempt == self.MAX_UPSERT_ATTEMPTS:
                    raise LedgerConflictError("Conflit lors de la création d'une relation") from exc
                logger.warning(f"Conflit pair_key, nouvelle tentative ({attempt}/{self.MAX_UPSERT_ATTEMPTS})")
            except PyMongoError as exc:
                self._raise_storage_error(exc, "upsert des relations")

    @staticmethod
    def _raise_storage_error(exc: PyMongoError, operation: str) -> NoReturn:
        if _is_transient(exc):
            logger.warning(f"Erreur transitoire MongoDB pendant {operation} : {exc}")
            raise LedgerStorageError(f"Stockage indisponible pendant {operation}") from exc
        raise exc

    # ─────────────────────────────────────────────
    # Lectures
    # ─────────────────────────────────────────────

    async def get_connection(self, user_a: IdLike, user_b: IdLike) -> Optional[ConnectionRecord]:
        if str(user_a) == str(user_b):
            return None
        doc = await self.collection.find_one({"pair_key": pair_key(user_a, user_b)})
        if not doc:
            return None
        return ConnectionRecord(**convert_mongodb_result(doc))

    async def get_detailed_connection(self, user_a: IdLike, user_b: IdLike) -> Optional[DetailedConnection]:
        connection = await self.get_connection(user_a, user_b)
        if not connection:
            return None

        dinners = await self._load_summaries(ActivityKind.DINNER, connection.dinner_refs)
        events = await self._load_summaries(ActivityKind.EVENT, connection.event_refs)
        return DetailedConnection(
            _id=connection.id,
            pair_key=connection.pair_key,
            members=connection.members,
            dinners=dinners,
            events=events,
            created_at=connection.created_at,
            updated_at=connection.updated_at,
        )

    async def _load_summaries(self, kind: ActivityKind, refs: List[str]) -> List[ActivitySummary]:
        if not refs:
            return []
        cursor = self.activity_collections[kind].find(
            {"_id": {"$in": [ObjectId(ref) for ref in refs]}},
            ACTIVITY_SUMMARY_PROJECTION,
        )
        return [ActivitySummary(**convert_mongodb_result(doc)) async for doc in cursor]

    async def get_connection_statuses(self, subject: IdLike, other_users: Iterable[IdLike]) -> Dict[str, bool]:
        """
        Pour chaque utilisateur de ``other_users`` : True s'il est en relation
        avec ``subject``. Une seule requête pour toutes les paires ; le sujet
        lui-même vaut toujours False.
        """
        subject_str = str(subject)
        others = [str(user) for user in other_users]
        keys = {user: pair_key(subject_str, user) for user in others if user != subject_str}

        existing = set()
        if keys:
            cursor = self.collection.find({"pair_key": {"$in": list(set(keys.values()))}}, {"pair_key": 1})
            async for doc in cursor:
                existing.add(doc["pair_key"])

        return {user: user in keys and keys[user] in existing for user in others}

    async def list_connections(
        self, user: IdLike, params: PaginationParams
    ) -> Tuple[List[ConnectionListItem], Pagination]:
        user_id = to_object_id(user)
        query = {"members": user_id}

        cursor = self.collection.find(
            query, sort=[("updated_at", -1)], skip=params.skip, limit=params.limit
        )
        records = [ConnectionRecord(**convert_mongodb_result(doc)) async for doc in cursor]
        total = await self.collection.count_documents(query)

        other_ids = [ObjectId(record.other_member(str(user_id))) for record in records]
        profiles = {}
        if other_ids:
            async for doc in self.users.find({"_id": {"$in": other_ids}}, USER_PUBLIC_PROJECTION):
                profiles[str(doc["_id"])] = convert_mongodb_result(doc)

        items = [
            ConnectionListItem(
                _id=record.id,
                user=profiles.get(record.other_member(str(user_id))),
                dinner_refs=record.dinner_refs,
                event_refs=record.event_refs,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            for record in records
        ]
        return items, build_pagination(total, params)
