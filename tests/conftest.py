"""Shared fixtures.

Both services run against in-memory SQLite databases and the file
service stores objects on disk under ``tmp_path``. Download links point
at ``http://testserver`` so the test client can follow them.
"""
import uuid

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from filevault.config import Settings
from filevault.database import Database
from filevault.main import create_auth_app, create_file_app
from filevault.models.database import File, User
from filevault.services.files import FileService
from filevault.services.storage import LocalObjectStore
from filevault.services.tokens import TokenService

SECRET = "testing_secret"
MEMORY_DB = "sqlite+aiosqlite:///:memory:"
MAX_FILE_SIZE = 1024


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ENVIRONMENT="test",
        JWT_SECRET=SECRET,
        JWT_ISSUER="auth-service",
        JWT_AUDIENCE="microservices",
        BCRYPT_ROUNDS=4,
        AUTH_DATABASE_URL=MEMORY_DB,
        FILES_DATABASE_URL=MEMORY_DB,
        DB_AUTO_CREATE=True,
        STORAGE_BACKEND="local",
        LOCAL_STORAGE_PATH=str(tmp_path / "objects"),
        PUBLIC_BASE_URL="http://testserver",
        MAX_FILE_SIZE=MAX_FILE_SIZE,
        DOWNLOAD_URL_EXPIRES_SECONDS=900,
        METRICS_ENABLED=False,
    )


@pytest.fixture
def tokens(settings):
    return TokenService.from_settings(settings)


@pytest.fixture
def auth_client(settings):
    app = create_auth_app(settings, Database(settings.AUTH_DATABASE_URL))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def file_client(settings):
    app = create_file_app(settings, Database(settings.FILES_DATABASE_URL))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_headers(tokens):
    """Authorization headers carrying an access token for ``user_id``"""

    def _headers(user_id=None):
        return {"Authorization": "Bearer " + tokens.issue_access_token(user_id or str(uuid.uuid4()))}

    return _headers


@pytest_asyncio.fixture
async def database():
    db = Database(MEMORY_DB)
    await db.create_all([User.__table__, File.__table__])
    yield db
    await db.dispose()


@pytest.fixture
def local_store(tmp_path, settings):
    return LocalObjectStore(str(tmp_path / "store"), settings.PUBLIC_BASE_URL, SECRET)


@pytest.fixture
def file_service(local_store):
    return FileService(local_store, max_file_size=MAX_FILE_SIZE)
