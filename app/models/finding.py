"""ORM model for persisted security findings."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.models.base import Base


class Finding(Base):
    """
    One finding produced by a scan.

    evidence holds scanner output plus an optional codeLocation (file, line, snippet).
    """

    __tablename__ = "findings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(
        Integer,
        ForeignKey("scans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(1024), nullable=False)
    category = Column(String(255), nullable=False, default="")
    severity = Column(String(32), nullable=False, index=True)
    cwe = Column(String(64), nullable=True)
    description = Column(Text, nullable=False, default="")
    evidence = Column(JSONB, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    scan = relationship("Scan", back_populates="findings")
