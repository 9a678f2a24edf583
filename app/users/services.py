import logging
import re
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.auth.jwt_handler import generate_opaque_token, hash_token
from app.auth.password import hash_password, verify_password
from app.db.mongo import MongoDatabase
from app.users.models import (
    AdminUserUpdate,
    USER_PUBLIC_PROJECTION,
    USER_SECRET_PROJECTION,
    UserDetailsUpdate,
    UserImage,
    UserPrivate,
    UserPublic,
    UserStatus,
)
from app.utils.mongodb_utils import (
    IdLike,
    convert_mongodb_result,
    convert_pydantic_for_mongodb,
    is_valid_object_id,
    to_object_id,
    utcnow,
)
from app.utils.pagination import Pagination, PaginationParams, find_with_pagination
from app.utils.storage import StoredImage

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"created_at", "updated_at", "email", "first_name", "last_name", "status"}
MAX_IMAGE_UPDATE_ATTEMPTS = 5


class UserNotFoundError(Exception):
    pass


class EmailAlreadyExistsError(Exception):
    pass


class InvalidCredentialsError(Exception):
    pass


class UserBlockedError(Exception):
    pass


class InvalidResetTokenError(Exception):
    pass


class ImageNotFoundError(Exception):
    pass


class ImageNotApprovedError(Exception):
    pass


class ImageUpdateConflictError(Exception):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    def __init__(self, mongo: MongoDatabase):
        self.users = mongo.users

    # ─────────────────────────────────────────────
    # Lecture
    # ─────────────────────────────────────────────

    async def _find_user(self, user_id: IdLike, projection: Optional[dict] = None) -> Dict[str, Any]:
        if not is_valid_object_id(user_id):
            raise UserNotFoundError(str(user_id))
        doc = await self.users.find_one(
            {"_id": to_object_id(user_id), "is_deleted": {"$ne": True}},
            projection,
        )
        if not doc:
            raise UserNotFoundError(str(user_id))
        return doc

    async def get_private_profile(self, user_id: IdLike) -> UserPrivate:
        doc = await self._find_user(user_id, USER_SECRET_PROJECTION)
        return UserPrivate(**convert_mongodb_result(doc))

    async def get_public_profile(self, user_id: IdLike) -> UserPublic:
        """Profil visible par les autres utilisateurs : introuvable si bloqué."""
        doc = await self._find_user(user_id, {**USER_PUBLIC_PROJECTION, "is_blocked": 1})
        if doc.get("is_blocked"):
            raise UserNotFoundError(str(user_id))
        return UserPublic(**convert_mongodb_result(doc))

    async def list_users(
        self,
        params: PaginationParams,
        status: Optional[UserStatus] = None,
        is_blocked: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[UserPrivate], Pagination]:
        query: Dict[str, Any] = {"is_deleted": {"$ne": True}}
        if status is not None:
            query["status"] = UserStatus(status).value
        if is_blocked is not None:
            query["is_blocked"] = is_blocked
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"email": pattern}, {"first_name": pattern}, {"last_name": pattern}]

        if params.sort_by and params.sort_by not in SORTABLE_FIELDS:
            params = params.model_copy(update={"sort_by": None})

        docs, pagination = await find_with_pagination(self.users, query, params, USER_SECRET_PROJECTION)
        return [UserPrivate(**convert_mongodb_result(doc)) for doc in docs], pagination

    # ─────────────────────────────────────────────
    # Comptes
    # ─────────────────────────────────────────────

    async def create_user(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> UserPrivate:
        email = normalize_email(email)
        if await self.users.find_one({"email": email}, {"_id": 1}):
            raise EmailAlreadyExistsError(email)

        now = utcnow()
        doc = {
            "email": email,
            "password": hash_password(password),
            "first_name": first_name,
            "last_name": last_name,
            "bio": "",
            "status": UserStatus(status).value,
            "is_active": True,
            "is_deleted": False,
            "is_email_verified": False,
            "is_blocked": False,
            "profile_image": None,
            "images": [],
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.users.insert_one(doc)
        except DuplicateKeyError as exc:
            # Inscription concurrente avec le même email
            raise EmailAlreadyExistsError(email) from exc

        logger.info(f"Utilisateur créé : id={result.inserted_id}, email={email}")
        return await self.get_private_profile(result.inserted_id)

    async def authenticate(self, email: str, password: str) -> UserPrivate:
        doc = await self.users.find_one({"email": normalize_email(email), "is_deleted": {"$ne": True}})
        if not doc or not verify_password(password, doc.get("password", "")):
            logger.warning(f"Échec de connexion pour {email}")
            raise InvalidCredentialsError(email)
        if doc.get("is_blocked"):
            logger.warning(f"Connexion refusée, compte bloqué : {email}")
            raise UserBlockedError(str(doc["_id"]))
        doc.pop("password", None)
        return UserPrivate(**convert_mongodb_result(doc))

    async def set_password(self, user_id: IdLike, password: str) -> None:
        result = await self.users.update_one(
            {"_id": to_object_id(user_id)},
            {
                "$set": {"password": hash_password(password), "updated_at": utcnow()},
                "$unset": {"password_reset_token": "", "password_reset_expires_at": ""},
            },
        )
        if not result.matched_count:
            raise UserNotFoundError(str(user_id))

    # ─────────────────────────────────────────────
    # Réinitialisation du mot de passe
    # ─────────────────────────────────────────────

    async def create_password_reset(self, email: str, expire_minutes: int) -> Optional[str]:
        """
        Génère un jeton de réinitialisation pour l'email donné.
        Retourne le jeton en clair (à envoyer par email) ou None si le compte
        n'existe pas. Seul son sha256 est enregistré.
        """
        token = generate_opaque_token()
        result = await self.users.update_one(
            {"email": normalize_email(email), "is_deleted": {"$ne": True}},
            {"$set": {
                "password_reset_token": hash_token(token),
                "password_reset_expires_at": utcnow() + timedelta(minutes=expire_minutes),
            }},
        )
        if not result.matched_count:
            logger.info(f"Demande de réinitialisation pour un email inconnu : {email}")
            return None
        return token

    async def reset_password(self, token: str, new_password: str) -> str:
        """Consomme le jeton et change le mot de passe. Retourne l'id de l'utilisateur."""
        doc = await self.users.find_one_and_update(
            {
                "password_reset_token": hash_token(token),
                "password_reset_expires_at": {"$gt": utcnow()},
            },
            {
                "$set": {"password": hash_password(new_password), "updated_at": utcnow()},
                "$unset": {"password_reset_token": "", "password_reset_expires_at": ""},
            },
            projection={"_id": 1},
        )
        if not doc:
            raise InvalidResetTokenError()
        logger.info(f"Mot de passe réinitialisé : user_id={doc['_id']}")
        return str(doc["_id"])

    # ─────────────────────────────────────────────
    # Détails du profil
    # ─────────────────────────────────────────────

    async def _update_fields(self, user_id: IdLike, fields: Dict[str, Any]) -> UserPrivate:
        await self._find_user(user_id, {"_id": 1})
        if fields:
            fields["updated_at"] = utcnow()
            await self.users.update_one({"_id": to_object_id(user_id)}, {"$set": fields})
        return await self.get_private_profile(user_id)

    async def update_details(self, user_id: IdLike, updates: UserDetailsUpdate) -> UserPrivate:
        return await self._update_fields(user_id, updates.model_dump(exclude_unset=True, exclude_none=True))

    async def admin_update(self, user_id: IdLike, updates: AdminUserUpdate) -> UserPrivate:
        fields = convert_pydantic_for_mongodb(updates.model_dump(exclude_unset=True, exclude_none=True))
        return await self._update_fields(user_id, fields)

    async def block(self, user_id: IdLike, admin_id: str, reason: str) -> UserPrivate:
        user = await self._update_fields(user_id, {
            "is_blocked": True,
            "blocked_reason": reason,
            "blocked_at": utcnow(),
            "blocked_by": admin_id,
        })
        logger.info(f"Utilisateur bloqué : id={user_id} par admin={admin_id}")
        return user

    async def unblock(self, user_id: IdLike) -> UserPrivate:
        await self._find_user(user_id, {"_id": 1})
        await self.users.update_one(
            {"_id": to_object_id(user_id)},
            {
                "$set": {"is_blocked": False, "updated_at": utcnow()},
                "$unset": {"blocked_reason": "", "blocked_at": "", "blocked_by": ""},
            },
        )
        logger.info(f"Utilisateur débloqué : id={user_id}")
        return await self.get_private_profile(user_id)

    # ─────────────────────────────────────────────
    # Images
    # ─────────────────────────────────────────────

    @staticmethod
    def _images_fields(images: List[UserImage]) -> Dict[str, Any]:
        """Champs à écrire pour une liste d'images ; profile_image reflète l'image par défaut."""
        profile = next((image.image for image in images if image.is_profile_image), None)
        stored = []
        for image in images:
            data = image.model_dump(by_alias=True)
            data["_id"] = ObjectId(image.id)
            stored.append(data)
        return {
            "images": stored,
            "profile_image": profile.model_dump() if profile else None,
            "updated_at": utcnow(),
        }

    async def _update_images(self, user_id: IdLike, mutate: Callable[[List[UserImage]], None]) -> UserPrivate:
        """
        Lit la liste d'images, applique ``mutate`` puis écrit le résultat à
        condition que la liste stockée n'ait pas changé entre-temps. En cas de
        modification concurrente (ex. un ajout), la lecture est refaite.
        """
        for attempt in range(1, MAX_IMAGE_UPDATE_ATTEMPTS + 1):
            doc = await self._find_user(user_id, {"images": 1})
            current = doc.get("images", [])
            images = [UserImage(**convert_mongodb_result(image)) for image in current]
            mutate(images)
            result = await self.users.update_one(
                {"_id": doc["_id"], "images": current},
                {"$set": self._images_fields(images)},
            )
            if result.matched_count:
                return await self.get_private_profile(user_id)
            logger.warning(f"Images modifiées pendant la mise à jour, nouvelle lecture ({attempt}) : user_id={user_id}")
        raise ImageUpdateConflictError(str(user_id))

    @staticmethod
    def _find_image(images: List[UserImage], image_id: str) -> UserImage:
        for image in images:
            if image.id == image_id:
                return image
        raise ImageNotFoundError(image_id)

    async def add_images(self, user_id: IdLike, stored: List[StoredImage]) -> List[UserImage]:
        """Ajoute des images (non approuvées) à la fin de la liste."""
        doc = await self._find_user(user_id, {"_id": 1})
        now = utcnow()
        images = [
            {
                "_id": ObjectId(),
                "image": item.model_dump(),
                "is_approved": False,
                "is_profile_image": False,
                "created_at": now,
            }
            for item in stored
        ]
        result = await self.users.find_one_and_update(
            {"_id": doc["_id"], "is_deleted": {"$ne": True}},
            {"$push": {"images": {"$each": images}}, "$set": {"updated_at": now}},
            projection={"_id": 1},
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise UserNotFoundError(str(user_id))
        logger.info(f"{len(images)} image(s) ajoutée(s) : user_id={user_id}")
        return [UserImage(**convert_mongodb_result(image)) for image in images]

    async def delete_image(self, user_id: IdLike, image_id: str) -> StoredImage:
        """Retire l'image du profil et retourne le fichier à supprimer du stockage."""
        doc = await self._find_user(user_id, {"_id": 1})
        if not is_valid_object_id(image_id):
            raise ImageNotFoundError(image_id)
        image_oid = ObjectId(image_id)

        before = await self.users.find_one_and_update(
            {"_id": doc["_id"], "images._id": image_oid},
            {"$pull": {"images": {"_id": image_oid}}, "$set": {"updated_at": utcnow()}},
            projection={"images": 1},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            raise ImageNotFoundError(image_id)

        removed = self._find_image(
            [UserImage(**convert_mongodb_result(image)) for image in before.get("images", [])], image_id
        )
        if removed.is_profile_image:
            await self.users.update_one(
                {"_id": doc["_id"], "profile_image.key": removed.image.key},
                {"$set": {"profile_image": None}},
            )
        logger.info(f"Image supprimée : user_id={user_id}, image_id={image_id}")
        return removed.image

    async def replace_image(self, user_id: IdLike, image_id: str, stored: StoredImage) -> Tuple[UserPrivate, StoredImage]:
        """Remplace le fichier d'une image existante ; retourne le profil et l'ancien fichier."""
        replaced: List[StoredImage] = []

        def mutate(images: List[UserImage]) -> None:
            image = self._find_image(images, image_id)
            replaced[:] = [image.image]
            image.image = stored

        user = await self._update_images(user_id, mutate)
        logger.info(f"Image remplacée : user_id={user_id}, image_id={image_id}")
        return user, replaced[0]

    async def set_default_image(self, user_id: IdLike, image_id: str) -> UserPrivate:
        def mutate(images: List[UserImage]) -> None:
            if not self._find_image(images, image_id).is_approved:
                raise ImageNotApprovedError(image_id)
            for item in images:
                item.is_profile_image = item.id == image_id

        return await self._update_images(user_id, mutate)

    async def set_image_approval(self, user_id: IdLike, image_id: str, approved: bool) -> UserPrivate:
        def mutate(images: List[UserImage]) -> None:
            image = self._find_image(images, image_id)
            image.is_approved = approved
            if not approved:
                # Une image rejetée ne peut pas rester image de profil
                image.is_profile_image = False

        user = await self._update_images(user_id, mutate)
        logger.info(f"Image {'approuvée' if approved else 'rejetée'} : user_id={user_id}, image_id={image_id}")
        return user
