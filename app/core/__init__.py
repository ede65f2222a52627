"""Configuration, database sessions, credential encryption and auth primitives."""

from app.core.config import get_settings, settings
from app.core.crypto import get_credential_cipher
from app.core.database import get_db

__all__ = ["get_credential_cipher", "get_db", "get_settings", "settings"]
