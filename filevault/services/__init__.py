"""Business logic services"""
from .tokens import TokenService, TokenKind, TokenClaims
from .passwords import PasswordHasher, validate_password_strength
from .auth import AuthService, LoginResult
from .storage import ObjectStore, S3ObjectStore, LocalObjectStore, StoredObject, build_object_store
from .files import FileService, DownloadLink, FileListing
