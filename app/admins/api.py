from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Optional
import logging

from app.admins.models import (
    AdminChangePasswordRequest,
    AdminCreate,
    AdminLoginRequest,
    AdminRefreshRequest,
)
from app.admins.services import (
    AdminAlreadyExistsError,
    AdminService,
    InvalidAdminCredentialsError,
    InvalidAdminRefreshTokenError,
)
from app.auth.dependencies import CurrentAdmin, get_current_admin
from app.auth.jwt_handler import JwtHandler, get_jwt_handler
from app.config import Settings, get_settings
from app.db.mongo import MongoDatabase, get_mongo
from app.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/admin/auth", tags=["admin-auth"])
router = APIRouter(prefix="/admin/admins", tags=["admins"])


def get_admin_service(
    mongo: MongoDatabase = Depends(get_mongo),
    jwt: JwtHandler = Depends(get_jwt_handler),
    settings: Settings = Depends(get_settings),
) -> AdminService:
    return AdminService(mongo, jwt, settings.ADMIN_REFRESH_TOKEN_DAYS)


# ─────────────────────────────────────────────
# Authentification admin
# ─────────────────────────────────────────────
@auth_router.post("/login")
async def admin_login(data: AdminLoginRequest, service: AdminService = Depends(get_admin_service)):
    try:
        tokens = await service.login(data.email, data.password)
    except InvalidAdminCredentialsError:
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")
    return tokens.model_dump()


@auth_router.post("/refresh-token")
async def admin_refresh_token(data: AdminRefreshRequest, service: AdminService = Depends(get_admin_service)):
    try:
        tokens = await service.refresh(data.refresh_token)
    except InvalidAdminRefreshTokenError:
        raise HTTPException(status_code=401, detail="Refresh token invalide ou expiré")
    return {"access_token": tokens.access_token, "token_type": tokens.token_type}


@auth_router.post("/logout")
async def admin_logout(
    current: CurrentAdmin = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    await service.logout(current.id)
    return {"msg": "Déconnecté avec succès"}


@auth_router.post("/change-password")
async def admin_change_password(
    data: AdminChangePasswordRequest,
    current: CurrentAdmin = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    try:
        await service.change_password(current.id, data.current_password, data.new_password)
    except InvalidAdminCredentialsError:
        raise HTTPException(status_code=400, detail="Mot de passe actuel incorrect")
    return {"msg": "Mot de passe modifié, veuillez vous reconnecter"}


# ─────────────────────────────────────────────
# Gestion des admins
# ─────────────────────────────────────────────
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_admin(
    data: AdminCreate,
    current: CurrentAdmin = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    try:
        admin = await service.create_admin(data)
    except AdminAlreadyExistsError:
        raise HTTPException(status_code=409, detail="Email déjà enregistré")
    logger.info(f"Admin {admin.id} créé par {current.id}")
    return {"msg": "Admin créé avec succès", "admin": admin.model_dump()}


@router.get("")
async def list_admins(
    search: Optional[str] = Query(None, max_length=100),
    params: PaginationParams = Depends(pagination_params),
    current: CurrentAdmin = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    admins, pagination = await service.list_admins(params, search)
    return {"data": [admin.model_dump() for admin in admins], "pagination": pagination.model_dump()}
