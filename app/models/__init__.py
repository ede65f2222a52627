"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.finding import Finding
from app.models.project import Project
from app.models.repository_credential import RepositoryCredential
from app.models.scan import Scan
from app.models.user import User

__all__ = ["Base", "Finding", "Project", "RepositoryCredential", "Scan", "User"]
