"""ORM model for projects: a named scan target with an optional default repository."""

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from app.models.base import Base


class Project(Base):
    """
    Scans are started for a project. default_repository_url (stored normalized) and
    default_repository_branch are used when a scan request does not name a repository.
    """

    __tablename__ = "projects"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_projects_org_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    default_repository_url = Column(String(2048), nullable=True)
    default_repository_branch = Column(String(255), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    scans = relationship("Scan", back_populates="project", passive_deletes=True)
