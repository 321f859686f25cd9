# filevault/models/database.py

import re
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, BigInteger,
    CheckConstraint, Index, Uuid,
)
from sqlalchemy.orm import declarative_base, validates

Base = declarative_base()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_HASH_MIN_LENGTH = 20
MAX_FILENAME_LENGTH = 255


def normalize_email(email: str) -> str:
    return email.strip().lower()


def sanitize_filename(filename: str) -> str:
    # Path separators never survive into stored names
    return filename.replace("/", "_").replace("\\", "_").strip()


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @validates("email")
    def _normalize_email(self, key, value):
        value = normalize_email(value)
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please provide a valid email address")
        return value

    @validates("password_hash")
    def _check_password_hash(self, key, value):
        # Plaintext passwords must never reach this column
        if not value or len(value) < PASSWORD_HASH_MIN_LENGTH:
            raise ValueError("Password hash is too short to be a hash")
        return value

    def __repr__(self):
        return f"<User {self.id} {self.email}>"


class File(Base):
    __tablename__ = "files"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    filename = Column(String(MAX_FILENAME_LENGTH), nullable=False)
    original_name = Column(String(MAX_FILENAME_LENGTH), nullable=False)
    size = Column(BigInteger, nullable=False)
    owner_id = Column(String(64), nullable=False, index=True)
    storage_key = Column(String(512), nullable=False, unique=True)
    storage_bucket = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False, default="application/octet-stream")
    content_hash = Column(String(64))
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_accessed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("size >= 1", name="ck_files_size_positive"),
        CheckConstraint("download_count >= 0", name="ck_files_download_count"),
        Index("ix_files_owner_uploaded", "owner_id", "uploaded_at"),
        Index("ix_files_owner_filename", "owner_id", "filename"),
    )

    @validates("filename")
    def _sanitize_filename(self, key, value):
        return sanitize_filename(value)

    def __repr__(self):
        return f"<File {self.id} {self.storage_key}>"
