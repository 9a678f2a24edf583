from typing import List, Optional

from fastapi import Request
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    MONGO_URL: str = Field(...)
    MONGO_DB: str = Field(...)

    JWT_SECRET: str = Field(...)
    ALGORITHM: str = Field(default="HS256")
    JWT_EXPIRATION_DAYS: int = Field(default=60)
    REFRESH_TOKEN_EXTRA_DAYS: int = Field(default=4)
    ADMIN_REFRESH_TOKEN_DAYS: int = Field(default=7)
    PASSWORD_RESET_EXPIRE_MINUTES: int = Field(default=60)

    FRONTEND_URL: str = Field(default="http://localhost:3000")

    # Mail optionnel : sans serveur, les emails sont ignorés (avec un warning)
    MAIL_USERNAME: Optional[str] = None
    MAIL_PASSWORD: Optional[str] = None
    MAIL_FROM: str = Field(default="noreply@example.com")
    MAIL_PORT: int = Field(default=587)
    MAIL_SERVER: Optional[str] = None

    UPLOAD_DIR: str = Field(default="static/upload")
    MEDIA_URL: str = Field(default="/static/upload")
    MAX_IMAGE_SIZE: int = Field(default=5 * 1024 * 1024)  # 5MB

    LOG_LEVEL: str = Field(default="INFO")
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
