from datetime import timedelta
from typing import Optional, Tuple
import logging
import uuid

from motor.motor_asyncio import AsyncIOMotorCollection

from app.auth.jwt_handler import JwtHandler, ROLE_USER, generate_opaque_token, hash_token
from app.auth.models import DeviceTokens, DeviceType, UserDevice
from app.utils.mongodb_utils import IdLike, convert_mongodb_result, to_object_id, utcnow

logger = logging.getLogger(__name__)


class InvalidRefreshTokenError(Exception):
    pass


class DeviceSessionService:
    """
    Sessions des utilisateurs, une par appareil.

    Chaque session conserve le sha256 du refresh token et celui du dernier
    access token émis : un access token n'est accepté que s'il correspond à
    une session active et non expirée.
    """

    def __init__(self, collection: AsyncIOMotorCollection, jwt: JwtHandler, refresh_extra_days: int = 4):
        self.collection = collection
        self.jwt = jwt
        self.refresh_lifetime = jwt.expiration_delta + timedelta(days=refresh_extra_days)

    def _issue_access_token(self, user_id: str) -> Tuple[str, dict]:
        now = utcnow()
        access_token = self.jwt.create_access_token(user_id, ROLE_USER)
        fields = {
            "jwt_token": hash_token(access_token),
            "jwt_token_expires_at": now + self.jwt.expiration_delta,
            "last_active_at": now,
            "updated_at": now,
        }
        return access_token, fields

    async def open_session(
        self,
        user_id: IdLike,
        device_type: DeviceType,
        device_name: str,
        device_token: Optional[str] = None,
    ) -> DeviceTokens:
        user_oid = to_object_id(user_id)
        now = utcnow()
        refresh_token = generate_opaque_token()
        access_token, token_fields = self._issue_access_token(str(user_oid))

        device_id = str(uuid.uuid4())
        await self.collection.insert_one({
            "user_id": user_oid,
            "device_id": device_id,
            "device_type": DeviceType(device_type).value,
            "device_name": device_name,
            "device_token": device_token,
            "refresh_token": hash_token(refresh_token),
            "refresh_token_expires_at": now + self.refresh_lifetime,
            "is_active": True,
            "created_at": now,
            **token_fields,
        })
        logger.info(f"Session ouverte : user_id={user_oid}, device_id={device_id}")
        return DeviceTokens(device_id=device_id, access_token=access_token, refresh_token=refresh_token)

    async def refresh(self, device_id: str, refresh_token: str) -> str:
        """Émet un nouvel access token pour une session active. Lève InvalidRefreshTokenError sinon."""
        now = utcnow()
        device = await self.collection.find_one({
            "device_id": device_id,
            "refresh_token": hash_token(refresh_token),
            "refresh_token_expires_at": {"$gt": now},
            "is_active": True,
        })
        if not device:
            raise InvalidRefreshTokenError("Refresh token invalide ou expiré")

        access_token, token_fields = self._issue_access_token(str(device["user_id"]))
        await self.collection.update_one({"_id": device["_id"]}, {"$set": token_fields})
        return access_token

    async def authenticate(self, user_id: IdLike, access_token: str) -> Optional[UserDevice]:
        """Retrouve la session qui a émis ce token et met à jour last_active_at."""
        now = utcnow()
        device = await self.collection.find_one_and_update(
            {
                "user_id": to_object_id(user_id),
                "jwt_token": hash_token(access_token),
                "jwt_token_expires_at": {"$gt": now},
                "is_active": True,
            },
            {"$set": {"last_active_at": now}},
        )
        if not device:
            return None
        return UserDevice(**convert_mongodb_result(device))

    async def deactivate(self, user_id: IdLike, device_id: str) -> bool:
        result = await self.collection.update_one(
            {"user_id": to_object_id(user_id), "device_id": device_id},
            {
                "$set": {"is_active": False, "updated_at": utcnow()},
                "$unset": {
                    "refresh_token": "",
                    "refresh_token_expires_at": "",
                    "jwt_token": "",
                    "jwt_token_expires_at": "",
                },
            },
        )
        if result.matched_count:
            logger.info(f"Session fermée : user_id={user_id}, device_id={device_id}")
        return result.matched_count > 0

    async def update_device_token(self, user_id: IdLike, device_id: str, device_token: str) -> bool:
        now = utcnow()
        result = await self.collection.update_one(
            {"user_id": to_object_id(user_id), "device_id": device_id},
            {"$set": {"device_token": device_token, "last_active_at": now, "updated_at": now}},
        )
        return result.matched_count > 0

    async def deactivate_all(self, user_id: IdLike) -> int:
        """Ferme toutes les sessions (changement de mot de passe, blocage)."""
        result = await self.collection.update_many(
            {"user_id": to_object_id(user_id), "is_active": True},
            {
                "$set": {"is_active": False, "updated_at": utcnow()},
                "$unset": {"refresh_token": "", "jwt_token": ""},
            },
        )
        return result.modified_count
