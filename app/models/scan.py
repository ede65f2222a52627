"""ORM model for security scans of a repository branch."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from app.models.base import Base


class Scan(Base):
    """
    One scan run of a project's repository.

    status: PENDING (checkout queued), RUNNING, COMPLETED, FAILED, CANCELLED or TIMEOUT.
    workdir is the checked-out tree while the scan runs; it is cleared when the tree is removed.
    """

    __tablename__ = "scans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(255), nullable=False, index=True)
    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    project_name = Column(String(255), nullable=False, default="")
    status = Column(String(32), nullable=False, default="PENDING", index=True)
    repository_url = Column(String(2048), nullable=True)
    repository_branch = Column(String(255), nullable=True)
    repository_commit_hash = Column(String(40), nullable=True)
    findings_count = Column(Integer, nullable=False, default=0)
    workdir = Column(String(4096), nullable=True)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project", back_populates="scans")
    findings = relationship(
        "Finding",
        back_populates="scan",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
