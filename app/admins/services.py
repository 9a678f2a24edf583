import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from app.admins.models import ADMIN_SECRET_PROJECTION, AdminCreate, AdminPublic, AdminTokens
from app.auth.jwt_handler import JwtHandler, ROLE_ADMIN, generate_opaque_token, hash_token
from app.auth.password import hash_password, verify_password
from app.db.mongo import MongoDatabase
from app.users.services import normalize_email
from app.utils.mongodb_utils import IdLike, convert_mongodb_result, to_object_id, utcnow
from app.utils.pagination import Pagination, PaginationParams, find_with_pagination

logger = logging.getLogger(__name__)


class AdminAlreadyExistsError(Exception):
    pass


class InvalidAdminCredentialsError(Exception):
    pass


class InvalidAdminRefreshTokenError(Exception):
    pass


class AdminService:
    """
    Comptes administrateurs.

    Un admin n'a qu'une session à la fois : chaque connexion génère un nouveau
    refresh token (seul son sha256 est stocké) et les access tokens portent ce
    hash dans ``sid``. Déconnexion, rotation ou changement de mot de passe
    révoquent donc tous les access tokens déjà émis.
    """

    def __init__(self, mongo: MongoDatabase, jwt: JwtHandler, refresh_token_days: int = 7):
        self.admins = mongo.admins
        self.jwt = jwt
        self.refresh_lifetime = timedelta(days=refresh_token_days)

    async def create_admin(self, data: AdminCreate) -> AdminPublic:
        email = normalize_email(data.email)
        if await self.admins.find_one({"email": email}, {"_id": 1}):
            raise AdminAlreadyExistsError(email)

        now = utcnow()
        try:
            result = await self.admins.insert_one({
                "first_name": data.first_name,
                "last_name": data.last_name,
                "email": email,
                "password": hash_password(data.password),
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError as exc:
            raise AdminAlreadyExistsError(email) from exc

        logger.info(f"Admin créé : id={result.inserted_id}, email={email}")
        doc = await self.admins.find_one({"_id": result.inserted_id}, ADMIN_SECRET_PROJECTION)
        return AdminPublic(**convert_mongodb_result(doc))

    async def list_admins(
        self, params: PaginationParams, search: Optional[str] = None
    ) -> Tuple[List[AdminPublic], Pagination]:
        query: Dict[str, Any] = {}
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"first_name": pattern}, {"last_name": pattern}, {"email": pattern}]
        docs, pagination = await find_with_pagination(self.admins, query, params, ADMIN_SECRET_PROJECTION)
        return [AdminPublic(**convert_mongodb_result(doc)) for doc in docs], pagination

    async def login(self, email: str, password: str) -> AdminTokens:
        doc = await self.admins.find_one({"email": normalize_email(email)})
        if not doc or not verify_password(password, doc.get("password", "")):
            logger.warning(f"Échec de connexion admin pour {email}")
            raise InvalidAdminCredentialsError(email)

        refresh_token = generate_opaque_token()
        sid = hash_token(refresh_token)
        await self.admins.update_one(
            {"_id": doc["_id"]},
            {"$set": {
                "refresh_token": sid,
                "refresh_token_expires_at": utcnow() + self.refresh_lifetime,
                "last_login_at": utcnow(),
            }},
        )
        logger.info(f"Admin connecté : id={doc['_id']}")
        return AdminTokens(
            admin=AdminPublic(**convert_mongodb_result(doc)),
            access_token=self.jwt.create_access_token(str(doc["_id"]), ROLE_ADMIN, sid=sid),
            refresh_token=refresh_token,
        )

    async def refresh(self, refresh_token: str) -> AdminTokens:
        """Nouvel access token pour la session en cours (même sid)."""
        sid = hash_token(refresh_token)
        doc = await self.admins.find_one({
            "refresh_token": sid,
            "refresh_token_expires_at": {"$gt": utcnow()},
        })
        if not doc:
            raise InvalidAdminRefreshTokenError()
        return AdminTokens(
            admin=AdminPublic(**convert_mongodb_result(doc)),
            access_token=self.jwt.create_access_token(str(doc["_id"]), ROLE_ADMIN, sid=sid),
        )

    async def logout(self, admin_id: IdLike) -> None:
        await self.admins.update_one(
            {"_id": to_object_id(admin_id)},
            {"$unset": {"refresh_token": "", "refresh_token_expires_at": ""}},
        )
        logger.info(f"Admin déconnecté : id={admin_id}")

    async def change_password(self, admin_id: IdLike, current_password: str, new_password: str) -> None:
        doc = await self.admins.find_one({"_id": to_object_id(admin_id)}, {"password": 1})
        if not doc or not verify_password(current_password, doc.get("password", "")):
            raise InvalidAdminCredentialsError(str(admin_id))

        await self.admins.update_one(
            {"_id": doc["_id"]},
            {
                "$set": {"password": hash_password(new_password), "updated_at": utcnow()},
                "$unset": {"refresh_token": "", "refresh_token_expires_at": ""},
            },
        )
        logger.info(f"Mot de passe admin modifié : id={admin_id}")
