"""Utility helpers"""
from .mime import get_file_extension, get_mime_type
