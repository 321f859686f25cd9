# filevault/main.py
"""
Application factories for the auth service and the file service.

Each factory builds its collaborators once and keeps them on ``app.state``;
request handlers reach them through the dependencies in
``filevault.dependencies``. Run either service with uvicorn's factory mode:

    uvicorn filevault.main:create_auth_app --factory --port 3001
    uvicorn filevault.main:create_file_app --factory --port 3002
"""
import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import Table
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings as default_settings
from .database import Database
from .errors import register_exception_handlers
from .middleware import add_request_logging, add_timeout_middleware
from .models.database import File, User
from .monitoring.metrics import MetricsCollector
from .routers import auth, files, health, local
from .services.auth import AuthService
from .services.files import FileService
from .services.passwords import PasswordHasher
from .services.storage import LocalObjectStore, ObjectStore, build_object_store
from .services.tokens import TokenService

logger = logging.getLogger(__name__)


def service_lifespan(tables: Iterable[Table]):
    """Startup creates this service's tables (when enabled) and checks the database"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = app.state.settings
        database = app.state.database
        logger.info("Starting %s...", app.title)

        if not settings.JWT_SECRET_CONFIGURED:
            logger.warning("JWT_SECRET is not set; using a random secret, tokens will not "
                           "be accepted across services or restarts")

        try:
            if settings.DB_AUTO_CREATE:
                await database.create_all(tables)
            await database.ping()
            logger.info("Database connection successful")
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database connection failed: %s", e)

        yield

        logger.info("Shutting down %s...", app.title)
        await database.dispose()

    return lifespan


def _base_app(title: str, description: str, settings: Settings, database: Database,
              tables: Iterable[Table], timeout: float) -> FastAPI:
    app = FastAPI(
        title=title,
        version=settings.VERSION,
        description=description,
        lifespan=service_lifespan(list(tables)),
    )
    app.state.settings = settings
    app.state.database = database

    if settings.METRICS_ENABLED:
        MetricsCollector(title).instrument_app(app, settings.VERSION)

    register_exception_handlers(app, settings)
    add_timeout_middleware(app, timeout)
    add_request_logging(app, settings.SLOW_REQUEST_THRESHOLD_MS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(health.router)
    return app


def create_auth_app(settings: Optional[Settings] = None,
                    database: Optional[Database] = None) -> FastAPI:
    """Registration, login, token refresh and profile lookup"""
    settings = settings or default_settings
    database = database or Database(settings.AUTH_DATABASE_URL)

    app = _base_app(
        "auth-service",
        "User registration and JWT issuance",
        settings,
        database,
        [User.__table__],
        settings.AUTH_REQUEST_TIMEOUT,
    )
    app.state.token_service = TokenService.from_settings(settings)
    app.state.auth_service = AuthService(
        PasswordHasher(settings.BCRYPT_ROUNDS), app.state.token_service
    )
    app.include_router(auth.router)
    return app


def create_file_app(settings: Optional[Settings] = None,
                    database: Optional[Database] = None,
                    object_store: Optional[ObjectStore] = None) -> FastAPI:
    """Uploads, presigned downloads, listing and deletion"""
    settings = settings or default_settings
    database = database or Database(settings.FILES_DATABASE_URL)
    object_store = object_store or build_object_store(settings)

    app = _base_app(
        "file-service",
        "File storage with presigned downloads",
        settings,
        database,
        [File.__table__],
        settings.FILE_REQUEST_TIMEOUT,
    )
    app.state.token_service = TokenService.from_settings(settings)
    app.state.object_store = object_store
    app.state.file_service = FileService.from_settings(settings, object_store)
    app.include_router(files.router)
    if isinstance(object_store, LocalObjectStore):
        app.include_router(local.router)
    return app


# Run for local development
if __name__ == "__main__":
    import sys

    import uvicorn

    from .logging_config import setup_logging

    service = sys.argv[1] if len(sys.argv) > 1 else "auth"
    factories = {"auth": (create_auth_app, 3001), "files": (create_file_app, 3002)}
    if service not in factories:
        sys.exit(f"Usage: python -m filevault.main [{'|'.join(factories)}]")

    setup_logging(default_settings.LOG_LEVEL)
    factory, port = factories[service]
    uvicorn.run(
        factory(),
        host="0.0.0.0",
        port=port,
        log_level=default_settings.LOG_LEVEL.lower(),
        access_log=True,
    )
