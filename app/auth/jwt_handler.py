from datetime import datetime, timedelta, timezone
from typing import Optional
import hashlib
import logging
import secrets
import uuid

from fastapi import Request
from jose import jwt, JWTError

from app.config import Settings

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ADMIN = "admin"
TOKEN_TYPE_ACCESS = "access"


def generate_opaque_token() -> str:
    """Jeton aléatoire (32 octets, hexadécimal) pour refresh / reset."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Seul le sha256 des jetons est conservé en base."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class JwtHandler:
    def __init__(self, secret: str, algorithm: str = "HS256", expiration_days: int = 60):
        self.secret = secret
        self.algorithm = algorithm
        self.expiration = timedelta(days=expiration_days)

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtHandler":
        return cls(settings.JWT_SECRET, settings.ALGORITHM, settings.JWT_EXPIRATION_DAYS)

    def create_access_token(self, subject: str, role: str, expires_delta: Optional[timedelta] = None, **claims) -> str:
        """
        Crée un token JWT d'accès signé.

        :param subject: ID de l'utilisateur ou de l'admin (champ 'sub')
        :param role: 'user' ou 'admin'
        :param expires_delta: Durée de validité (par défaut JWT_EXPIRATION_DAYS)
        :param claims: Champs supplémentaires (ex: sid pour les admins)
        :return: Token JWT encodé
        """
        expire = datetime.now(timezone.utc) + (expires_delta or self.expiration)
        to_encode = {
            "sub": str(subject),
            "role": role,
            "type": TOKEN_TYPE_ACCESS,
            "exp": expire,
            "jti": uuid.uuid4().hex,  # unique par jeton
            **claims,
        }
        token = jwt.encode(to_encode, self.secret, algorithm=self.algorithm)
        logger.debug(f"Token généré pour sub={subject} role={role}")
        return token

    def decode_access_token(self, token: str) -> Optional[dict]:
        """
        Décode et vérifie un token JWT d'accès.
        Retourne le payload si le token est valide, sinon None.
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning(f"❌ Échec de décodage du token : {e}")
            return None

        if not payload.get("sub"):
            logger.warning("⚠️ Token valide mais champ 'sub' manquant dans le payload.")
            return None
        if payload.get("type") != TOKEN_TYPE_ACCESS:
            logger.warning(f"⚠️ Type de token inattendu : {payload.get('type')}")
            return None
        return payload

    @property
    def expiration_delta(self) -> timedelta:
        return self.expiration


def get_jwt_handler(request: Request) -> JwtHandler:
    return request.app.state.jwt
