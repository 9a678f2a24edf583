from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
import logging

from app.admins.models import AdminPublic
from app.auth.devices import DeviceSessionService
from app.auth.jwt_handler import JwtHandler, ROLE_ADMIN, ROLE_USER, get_jwt_handler
from app.auth.models import UserDevice
from app.config import Settings, get_settings
from app.db.mongo import MongoDatabase, get_mongo
from app.users.models import USER_SECRET_PROJECTION, UserPrivate
from app.utils.mongodb_utils import convert_mongodb_result, is_valid_object_id, to_object_id, utcnow

logger = logging.getLogger(__name__)

# Utilisé pour extraire le token depuis le header Authorization
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    user: UserPrivate
    device: UserDevice

    @property
    def id(self) -> str:
        return self.user.id


class CurrentAdmin(BaseModel):
    admin: AdminPublic
    sid: str

    @property
    def id(self) -> str:
        return self.admin.id


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_device_service(
    mongo: MongoDatabase = Depends(get_mongo),
    jwt: JwtHandler = Depends(get_jwt_handler),
    settings: Settings = Depends(get_settings),
) -> DeviceSessionService:
    return DeviceSessionService(mongo.user_devices, jwt, settings.REFRESH_TOKEN_EXTRA_DAYS)


def _decode(credentials: Optional[HTTPAuthorizationCredentials], jwt: JwtHandler, role: str) -> dict:
    if credentials is None or not credentials.credentials:
        logger.warning("⛔ Accès refusé : token manquant")
        raise _unauthorized("Token d'authentification manquant")

    payload = jwt.decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Token invalide ou expiré")
    if payload.get("role") != role or not is_valid_object_id(payload.get("sub")):
        logger.warning(f"⛔ Token refusé : role={payload.get('role')} attendu={role}")
        raise _unauthorized("Token invalide")
    return payload


# 🔒 Utilisateur final : token valide + session d'appareil active
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    jwt: JwtHandler = Depends(get_jwt_handler),
    devices: DeviceSessionService = Depends(get_device_service),
    mongo: MongoDatabase = Depends(get_mongo),
) -> CurrentUser:
    payload = _decode(credentials, jwt, ROLE_USER)
    user_id = payload["sub"]

    device = await devices.authenticate(user_id, credentials.credentials)
    if device is None:
        logger.warning(f"⛔ Aucune session active pour ce token : user_id={user_id}")
        raise _unauthorized("Session expirée ou fermée")

    doc = await mongo.users.find_one(
        {"_id": to_object_id(user_id), "is_deleted": {"$ne": True}},
        USER_SECRET_PROJECTION,
    )
    if not doc:
        logger.warning(f"❌ Utilisateur introuvable : id={user_id}")
        raise _unauthorized("Utilisateur non trouvé")
    if doc.get("is_blocked"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Compte bloqué")

    return CurrentUser(user=UserPrivate(**convert_mongodb_result(doc)), device=device)


# 🔒 Admin : le sid du token doit correspondre au refresh token en cours
async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    jwt: JwtHandler = Depends(get_jwt_handler),
    mongo: MongoDatabase = Depends(get_mongo),
) -> CurrentAdmin:
    payload = _decode(credentials, jwt, ROLE_ADMIN)
    sid = payload.get("sid")
    if not sid:
        raise _unauthorized("Token invalide : 'sid' manquant")

    doc = await mongo.admins.find_one({
        "_id": to_object_id(payload["sub"]),
        "refresh_token": sid,
        "refresh_token_expires_at": {"$gt": utcnow()},
    })
    if not doc:
        logger.warning(f"⛔ Session admin révoquée : id={payload['sub']}")
        raise _unauthorized("Session expirée ou fermée")

    return CurrentAdmin(admin=AdminPublic(**convert_mongodb_result(doc)), sid=sid)
