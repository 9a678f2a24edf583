from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from typing import List, Optional
import logging

from app.auth.dependencies import CurrentAdmin, get_current_admin, get_device_service
from app.auth.devices import DeviceSessionService
from app.users.api import PROFILE_IMAGE_FOLDER, attach_uploads, get_user_service, save_uploads
from app.users.models import (
    AdminSetPasswordRequest,
    AdminUserCreate,
    AdminUserUpdate,
    BlockUserRequest,
    ImageApprovalRequest,
    UserStatus,
)
from app.users.services import (
    EmailAlreadyExistsError,
    ImageNotApprovedError,
    ImageNotFoundError,
    UserNotFoundError,
    UserService,
)
from app.utils.pagination import PaginationOrder, PaginationParams, pagination_params
from app.utils.storage import ImageStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["admin-users"])

USER_NOT_FOUND = "Utilisateur introuvable"


# 📋 GET /admin/users - Liste filtrée et paginée
@router.get("")
async def list_users(
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    is_blocked: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: Optional[str] = Query(None),
    order: PaginationOrder = Query(PaginationOrder.DESC),
    params: PaginationParams = Depends(pagination_params),
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    params = params.model_copy(update={"sort_by": sort_by, "order": order})
    items, pagination = await users.list_users(params, status_filter, is_blocked, search)
    return {"data": [user.model_dump() for user in items], "pagination": pagination.model_dump()}


# ➕ POST /admin/users - Créer un utilisateur
@router.post("", status_code=status.HTTP_201_CREATED)
async def add_user(
    data: AdminUserCreate,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.create_user(data.email, data.password, data.first_name, data.last_name, data.status)
    except EmailAlreadyExistsError:
        raise HTTPException(status_code=409, detail="Email déjà enregistré")
    logger.info(f"Utilisateur {user.id} créé par l'admin {admin.id}")
    return {"msg": "Utilisateur créé avec succès", "user": user.model_dump()}


# 🔍 GET /admin/users/{user_id}
@router.get("/{user_id}")
async def get_user_details(
    user_id: str,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.get_private_profile(user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return user.model_dump()


# ✏️ PUT /admin/users/{user_id}
@router.put("/{user_id}")
async def update_user(
    user_id: str,
    updates: AdminUserUpdate,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.admin_update(user_id, updates)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return {"msg": "Utilisateur mis à jour", "user": user.model_dump()}


# 🔑 PUT /admin/users/{user_id}/password
@router.put("/{user_id}/password")
async def reset_user_password(
    user_id: str,
    data: AdminSetPasswordRequest,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
    devices: DeviceSessionService = Depends(get_device_service),
):
    try:
        await users.get_private_profile(user_id)
        await users.set_password(user_id, data.password)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    await devices.deactivate_all(user_id)
    logger.info(f"Mot de passe de l'utilisateur {user_id} réinitialisé par l'admin {admin.id}")
    return {"msg": "Mot de passe réinitialisé"}


# ⛔ PUT /admin/users/{user_id}/block
@router.put("/{user_id}/block")
async def block_user(
    user_id: str,
    data: BlockUserRequest,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
    devices: DeviceSessionService = Depends(get_device_service),
):
    try:
        user = await users.block(user_id, admin.id, data.reason)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    await devices.deactivate_all(user_id)
    return {"msg": "Utilisateur bloqué", "user": user.model_dump()}


# ✅ PUT /admin/users/{user_id}/unblock
@router.put("/{user_id}/unblock")
async def unblock_user(
    user_id: str,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.unblock(user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return {"msg": "Utilisateur débloqué", "user": user.model_dump()}


# 📸 POST /admin/users/{user_id}/images - Ajouter des images pour un utilisateur
@router.post("/{user_id}/images", status_code=status.HTTP_201_CREATED)
async def upload_user_images(
    user_id: str,
    images: List[UploadFile] = File(...),
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
    storage: ImageStorage = Depends(get_storage),
):
    try:
        await users.get_private_profile(user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    added = await attach_uploads(users, storage, user_id, images)
    logger.info(f"{len(added)} image(s) ajoutée(s) à l'utilisateur {user_id} par l'admin {admin.id}")
    return {"msg": "Images ajoutées", "images": [image.model_dump() for image in added]}


# 🔁 PUT /admin/users/{user_id}/images/{image_id} - Remplacer le fichier d'une image
@router.put("/{user_id}/images/{image_id}")
async def replace_user_image(
    user_id: str,
    image_id: str,
    image: UploadFile = File(...),
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
    storage: ImageStorage = Depends(get_storage),
):
    [stored] = await save_uploads(storage, [image], f"{PROFILE_IMAGE_FOLDER}/{user_id}")
    try:
        user, previous = await users.replace_image(user_id, image_id, stored)
    except (UserNotFoundError, ImageNotFoundError) as e:
        storage.delete(stored.key)
        detail = USER_NOT_FOUND if isinstance(e, UserNotFoundError) else "Image introuvable"
        raise HTTPException(status_code=404, detail=detail)
    storage.delete(previous.key)
    return {"msg": "Image remplacée", "user": user.model_dump()}


# ✅ PUT /admin/users/{user_id}/images/{image_id}/status - Approuver / rejeter
@router.put("/{user_id}/images/{image_id}/status")
async def set_image_status(
    user_id: str,
    image_id: str,
    data: ImageApprovalRequest,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.set_image_approval(user_id, image_id, data.is_approved)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    except ImageNotFoundError:
        raise HTTPException(status_code=404, detail="Image introuvable")
    return {"msg": "Statut de l'image mis à jour", "user": user.model_dump()}


# 🖼️ PUT /admin/users/{user_id}/images/{image_id}/default - Image de profil
@router.put("/{user_id}/images/{image_id}/default")
async def set_user_default_image(
    user_id: str,
    image_id: str,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    try:
        user = await users.set_default_image(user_id, image_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    except ImageNotFoundError:
        raise HTTPException(status_code=404, detail="Image introuvable")
    except ImageNotApprovedError:
        raise HTTPException(status_code=400, detail="Seule une image approuvée peut devenir l'image de profil")
    return {"msg": "Image de profil mise à jour", "user": user.model_dump()}


# 🗑️ DELETE /admin/users/{user_id}/images/{image_id}
@router.delete("/{user_id}/images/{image_id}")
async def delete_user_image(
    user_id: str,
    image_id: str,
    admin: CurrentAdmin = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
    storage: ImageStorage = Depends(get_storage),
):
    try:
        stored = await users.delete_image(user_id, image_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    except ImageNotFoundError:
        raise HTTPException(status_code=404, detail="Image introuvable")
    storage.delete(stored.key)
    return {"msg": "Image supprimée"}
