import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import DuplicateKeyError

from app.activities.api import dinners_router, events_router
from app.admins.api import auth_router as admin_auth_router
from app.admins.api import router as admins_router
from app.auth.api import router as auth_router
from app.auth.jwt_handler import JwtHandler
from app.config import Settings
from app.connections.api import router as connections_router
from app.connections.ledger import LedgerConflictError, LedgerStorageError
from app.db.mongo import MongoDatabase
from app.users.admin_api import router as admin_users_router
from app.users.api import router as users_router
from app.users.services import ImageUpdateConflictError
from app.utils.email import EmailService
from app.utils.storage import ImageStorage

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerStorageError)
    async def ledger_storage_error(request: Request, exc: LedgerStorageError):
        logger.warning(f"⚠️ Registre des relations indisponible : {exc}")
        return JSONResponse(status_code=503, content={"detail": "Service temporairement indisponible, réessayez"})

    @app.exception_handler(LedgerConflictError)
    async def ledger_conflict_error(request: Request, exc: LedgerConflictError):
        logger.warning(f"⚠️ Conflit dans le registre des relations : {exc}")
        return JSONResponse(status_code=409, content={"detail": "Conflit d'écriture, réessayez"})

    @app.exception_handler(ImageUpdateConflictError)
    async def image_update_conflict(request: Request, exc: ImageUpdateConflictError):
        logger.warning(f"⚠️ Images modifiées en parallèle : user_id={exc}")
        return JSONResponse(status_code=409, content={"detail": "Images modifiées en parallèle, réessayez"})

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_error(request: Request, exc: DuplicateKeyError):
        logger.warning(f"⚠️ Doublon refusé par MongoDB : {exc}")
        return JSONResponse(status_code=409, content={"detail": "Ressource déjà existante"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error(f"❌ Erreur non gérée sur {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Erreur interne du serveur"})


def create_app(
    settings: Optional[Settings] = None,
    mongo: Optional[MongoDatabase] = None,
    email: Optional[EmailService] = None,
    storage: Optional[ImageStorage] = None,
    jwt: Optional[JwtHandler] = None,
) -> FastAPI:
    """
    Construit l'application et ses dépendances (stockées dans ``app.state``).
    Chaque dépendance peut être fournie explicitement, notamment pour les tests.
    """
    settings = settings or Settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    mongo = mongo or MongoDatabase.from_settings(settings)
    storage = storage or ImageStorage.from_settings(settings)
    # Création dossier statique uploads
    storage.setup_directories()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await mongo.ensure_indexes()
        logger.info("🚀 Application démarrée")
        yield
        mongo.close()
        logger.info("Connexion MongoDB fermée")

    app = FastAPI(title="Backend API", lifespan=lifespan)
    app.state.settings = settings
    app.state.mongo = mongo
    app.state.email = email or EmailService(settings)
    app.state.storage = storage
    app.state.jwt = jwt or JwtHandler.from_settings(settings)

    # Monture des fichiers statiques
    app.mount(settings.MEDIA_URL, StaticFiles(directory=str(storage.base_dir)), name="media")

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(connections_router)
    app.include_router(events_router)
    app.include_router(dinners_router)
    app.include_router(admin_auth_router)
    app.include_router(admins_router)
    app.include_router(admin_users_router)

    # Middleware CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/")
    async def root():
        return {"message": "Bienvenue sur l'API"}

    return app
