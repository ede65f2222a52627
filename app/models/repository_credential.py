"""ORM model for encrypted per-repository credentials (PAT tokens and SSH keys)."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from app.models.base import Base


class RepositoryCredential(Base):
    """
    One credential per (organization, normalized repository URL).

    encrypted_credential holds the iv:authTag:ciphertext payload; the plaintext is never stored.
    credential_type: 'PAT' or 'SSH'. validation_status: 'valid', 'invalid' or 'untested'.
    """

    __tablename__ = "repository_credentials"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "repository_url",
            name="uq_repository_credentials_org_url",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(255), nullable=False, index=True)
    repository_url = Column(String(2048), nullable=False)
    credential_type = Column(String(16), nullable=False)
    encrypted_credential = Column(Text, nullable=False)
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
    created_by = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_validated_at = Column(DateTime(timezone=True), nullable=True)
    validation_status = Column(String(16), nullable=False, default="untested")
