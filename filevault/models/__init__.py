"""Database models and schemas"""
from .database import Base, User, File
__all__ = ["Base", "User", "File"]
from .schemas import *
