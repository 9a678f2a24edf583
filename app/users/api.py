from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
import logging

from app.auth.dependencies import CurrentUser, get_current_user
from app.db.mongo import MongoDatabase, get_mongo
from app.users.models import UserDetailsUpdate, UserImage
from app.users.services import (
    ImageNotApprovedError,
    ImageNotFoundError,
    UserNotFoundError,
    UserService,
)
from app.utils.storage import ImageStorage, ImageTooLargeError, InvalidImageError, StoredImage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])

PROFILE_IMAGE_FOLDER = "profileImage"


def get_user_service(mongo: MongoDatabase = Depends(get_mongo)) -> UserService:
    return UserService(mongo)


async def save_uploads(storage: ImageStorage, files: List[UploadFile], folder: str) -> List[StoredImage]:
    """Enregistre toutes les images ou aucune (les fichiers déjà écrits sont supprimés en cas d'erreur)."""
    saved: List[StoredImage] = []
    try:
        for file in files:
            saved.append(await storage.save_upload(file, folder))
    except (InvalidImageError, ImageTooLargeError) as e:
        for stored in saved:
            storage.delete(stored.key)
        status_code = 413 if isinstance(e, ImageTooLargeError) else 400
        raise HTTPException(status_code=status_code, detail=f"{file.filename} : {e}")
    return saved


async def attach_uploads(
    users: UserService, storage: ImageStorage, user_id: str, files: List[UploadFile]
) -> List[UserImage]:
    stored = await save_uploads(storage, files, f"{PROFILE_IMAGE_FOLDER}/{user_id}")
    try:
        return await users.add_images(user_id, stored)
    except UserNotFoundError:
        for item in stored:
            storage.delete(item.key)
        raise HTTPException(status_code=404, detail="Utilisateur introuvable")


# 👤 GET /api/profile/me - Profil complet de l'utilisateur connecté
@router.get("/me")
async def get_my_profile(current: CurrentUser = Depends(get_current_user)):
    return current.user.model_dump()


# ✏️ PUT /api/profile/me/details - Mise à jour des champs autorisés
@router.put("/me/details")
async def update_my_details(
    updates: UserDetailsUpdate,
    current: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    user = await users.update_details(current.id, updates)
    return {"msg": "Profil mis à jour", "user": user.model_dump()}


# 📸 POST /api/profile/me/images - Ajouter des images (en attente de validation)
@router.post("/me/images", status_code=status.HTTP_201_CREATED)
async def upload_images(
    images: List[UploadFile] = File(...),
    current: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
    storage: ImageStorage = Depends(get_storage),
):
    added = await attach_uploads(users, storage, current.id, images)
    return {"msg": "Images ajoutées, en attente de validation", "images": [image.model_dump() for image in added]}


# 🗑️ DELETE /api/profile/me/images/{image_id}
@router.delete("/me/images/{image_id}")
async def delete_image(
    image_id: str,
    current: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
    storage: ImageStorage = Depends(get_storage),
):
    try:
        stored = await users.delete_image(current.id, image_id)
    except ImageNotFoundError:
        raise HTTPException(status_code=404, detail="Image introuvable")
    storage.delete(stored.key)
    return {"msg": "Image supprimée"}


# 🖼️ PUT /api/profile/me/images/{image_id}/default - Choisir l'image de profil
@router.put("/me/images/{image_id}/default")
async def set_default_image(
    image_id: str,
    current: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.set_default_image(current.id, image_id)
    except ImageNotFoundError:
        raise HTTPException(status_code=404, detail="Image introuvable")
    except ImageNotApprovedError:
        raise HTTPException(status_code=400, detail="Seule une image approuvée peut devenir l'image de profil")
    return {"msg": "Image de profil mise à jour", "user": user.model_dump()}


# 🔍 GET /api/profile/{user_id} - Profil public
@router.get("/{user_id}")
async def get_profile(
    user_id: str,
    current: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    try:
        profile = await users.get_public_profile(user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="Profil non trouvé")
    return profile.model_dump()
