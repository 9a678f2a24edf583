# app/auth/models.py
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class DeviceType(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"
    DESKTOP = "desktop"


class UserDevice(BaseModel):
    """Session d'un utilisateur sur un appareil (collection user_devices)"""
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    device_id: str
    device_type: DeviceType
    device_name: str
    device_token: Optional[str] = None  # token push
    is_active: bool = True
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Les hash des jetons ne sortent jamais de la couche service
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def __repr__(self):
        return f"<UserDevice(device_id='{self.device_id}', user_id='{self.user_id}', active={self.is_active})>"


class DeviceTokens(BaseModel):
    device_id: str
    access_token: str
    refresh_token: str
