from fastapi import APIRouter, Depends, Header, HTTPException, status
import logging

from app.auth import schemas
from app.auth.dependencies import CurrentUser, get_current_user, get_device_service
from app.auth.devices import DeviceSessionService, InvalidRefreshTokenError
from app.config import Settings, get_settings
from app.db.mongo import MongoDatabase, get_mongo
from app.users.services import (
    EmailAlreadyExistsError,
    InvalidCredentialsError,
    InvalidResetTokenError,
    UserBlockedError,
    UserService,
)
from app.utils.email import EmailService, get_email_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_REQUEST_MESSAGE = "Si un compte existe pour cet email, un lien de réinitialisation a été envoyé"


def get_user_service(mongo: MongoDatabase = Depends(get_mongo)) -> UserService:
    return UserService(mongo)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(data: schemas.RegisterRequest, users: UserService = Depends(get_user_service)):
    try:
        user = await users.create_user(data.email, data.password, data.first_name, data.last_name)
    except EmailAlreadyExistsError:
        raise HTTPException(status_code=409, detail="Email déjà enregistré")
    return {"msg": "Utilisateur enregistré avec succès", "user_id": user.id}


@router.post("/login")
async def login(
    data: schemas.LoginRequest,
    users: UserService = Depends(get_user_service),
    devices: DeviceSessionService = Depends(get_device_service),
):
    try:
        user = await users.authenticate(data.email, data.password)
    except InvalidCredentialsError:
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")
    except UserBlockedError:
        raise HTTPException(status_code=403, detail="Compte bloqué")

    tokens = await devices.open_session(
        user.id,
        data.device_info.device_type,
        data.device_info.device_name,
        data.device_info.device_token,
    )
    return {
        "user": user.model_dump(),
        "device_id": tokens.device_id,
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "token_type": "bearer",
    }


@router.post("/refresh-token")
async def refresh_token(
    data: schemas.RefreshTokenRequest,
    device_id: str = Header(..., alias="X-Device-Id"),
    devices: DeviceSessionService = Depends(get_device_service),
):
    try:
        access_token = await devices.refresh(device_id, data.refresh_token)
    except InvalidRefreshTokenError:
        raise HTTPException(status_code=401, detail="Refresh token invalide ou expiré")
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/request-reset")
async def request_password_reset(
    data: schemas.RequestResetRequest,
    users: UserService = Depends(get_user_service),
    email: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_settings),
):
    # Même réponse que le compte existe ou non
    token = await users.create_password_reset(data.email, settings.PASSWORD_RESET_EXPIRE_MINUTES)
    if token:
        reset_url = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password/{token}"
        await email.send_password_reset_email(data.email, reset_url)
    return {"msg": RESET_REQUEST_MESSAGE}


@router.post("/reset-password")
async def reset_password(
    data: schemas.ResetPasswordRequest,
    users: UserService = Depends(get_user_service),
    devices: DeviceSessionService = Depends(get_device_service),
):
    try:
        user_id = await users.reset_password(data.token, data.password)
    except InvalidResetTokenError:
        raise HTTPException(status_code=400, detail="Lien de réinitialisation invalide ou expiré")
    closed = await devices.deactivate_all(user_id)
    logger.info(f"Sessions fermées après réinitialisation : user_id={user_id}, sessions={closed}")
    return {"msg": "Mot de passe réinitialisé avec succès"}


# ─────────────────────────────────────────────
# Sessions (utilisateur connecté)
# ─────────────────────────────────────────────
@router.post("/logout")
async def logout(
    current: CurrentUser = Depends(get_current_user),
    devices: DeviceSessionService = Depends(get_device_service),
):
    await devices.deactivate(current.id, current.device.device_id)
    return {"msg": "Déconnecté avec succès"}


@router.post("/devices", status_code=status.HTTP_201_CREATED)
async def register_device(
    data: schemas.DeviceInfo,
    current: CurrentUser = Depends(get_current_user),
    devices: DeviceSessionService = Depends(get_device_service),
):
    tokens = await devices.open_session(current.id, data.device_type, data.device_name, data.device_token)
    return tokens.model_dump()


@router.put("/devices/{device_id}/token")
async def update_device_token(
    device_id: str,
    data: schemas.UpdateDeviceTokenRequest,
    current: CurrentUser = Depends(get_current_user),
    devices: DeviceSessionService = Depends(get_device_service),
):
    if not await devices.update_device_token(current.id, device_id, data.device_token):
        raise HTTPException(status_code=404, detail="Appareil introuvable")
    return {"msg": "Token de l'appareil mis à jour"}


@router.delete("/devices/{device_id}")
async def remove_device(
    device_id: str,
    current: CurrentUser = Depends(get_current_user),
    devices: DeviceSessionService = Depends(get_device_service),
):
    if not await devices.deactivate(current.id, device_id):
        raise HTTPException(status_code=404, detail="Appareil introuvable")
    return {"msg": "Appareil déconnecté"}
