# app/utils/storage.py - Stockage local des images uploadées
from pathlib import Path
from typing import Optional
import logging
import uuid

import aiofiles
from fastapi import Request, UploadFile
from pydantic import BaseModel

from app.config import Settings

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}


class StoredImage(BaseModel):
    key: str            # chemin relatif dans le dossier d'upload
    url: str            # URL publique servie par /static
    content_type: str
    size: int


class InvalidImageError(ValueError):
    pass


class ImageTooLargeError(ValueError):
    pass


class ImageStorage:
    """Gestionnaire des images uploadées (disque local servi sous /static)"""

    def __init__(self, base_dir: Path, media_url: str, max_size: int):
        self.base_dir = Path(base_dir)
        self.media_url = media_url.rstrip("/")
        self.max_size = max_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageStorage":
        return cls(Path(settings.UPLOAD_DIR), settings.MEDIA_URL, settings.MAX_IMAGE_SIZE)

    def setup_directories(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def validate_image_file(file: UploadFile) -> str:
        """Valide le fichier image uploadé et retourne son extension"""
        if not file.filename:
            raise InvalidImageError("Nom de fichier manquant")

        ext = file.filename.rsplit('.', 1)[-1].lower() if '.' in file.filename else ''
        if ext not in ALLOWED_EXTENSIONS:
            raise InvalidImageError(
                f"Extension non autorisée. Extensions autorisées: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )

        if not file.content_type or not file.content_type.startswith('image/'):
            raise InvalidImageError("Le fichier doit être une image")
        return ext

    async def save_upload(self, file: UploadFile, folder: str) -> StoredImage:
        ext = self.validate_image_file(file)
        content = await file.read()
        if len(content) > self.max_size:
            raise ImageTooLargeError("Fichier trop volumineux")

        directory = self.base_dir / folder
        directory.mkdir(parents=True, exist_ok=True)

        filename = f"{uuid.uuid4().hex}.{ext}"
        key = f"{folder}/{filename}"

        async with aiofiles.open(directory / filename, "wb") as f:
            await f.write(content)

        logger.info(f"Image enregistrée: {key} ({len(content)} octets)")
        return StoredImage(
            key=key,
            url=f"{self.media_url}/{key}",
            content_type=file.content_type,
            size=len(content),
        )

    def delete(self, key: Optional[str]) -> bool:
        """Supprime une image si elle existe"""
        if not key:
            return False
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            logger.warning(f"Clé d'image hors du dossier d'upload ignorée: {key}")
            return False
        if path.exists():
            path.unlink()
            logger.info(f"Image supprimée: {key}")
            return True
        return False


def get_storage(request: Request) -> ImageStorage:
    return request.app.state.storage
