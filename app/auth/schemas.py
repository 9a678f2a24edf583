from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional

from app.auth.models import DeviceType
from app.auth.password import StrongPassword


class RegisterRequest(BaseModel):
    email: EmailStr
    password: StrongPassword
    password_confirm: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Les mots de passe ne correspondent pas")
        return self


class DeviceInfo(BaseModel):
    device_name: str = Field(..., min_length=1, max_length=100)
    device_type: DeviceType
    device_token: Optional[str] = None  # token push

    @field_validator("device_name")
    def device_name_required(cls, v):
        if not v.strip():
            raise ValueError("Nom de l'appareil requis")
        return v.strip()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    device_info: DeviceInfo


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class RequestResetRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: StrongPassword
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Les mots de passe ne correspondent pas")
        return self


class UpdateDeviceTokenRequest(BaseModel):
    device_token: str = Field(..., min_length=1)
