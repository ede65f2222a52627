"""
Repository credential store: CRUD over encrypted credentials, scoped to an organization.

Plaintext secrets enter only through create/update (encrypted immediately) and leave only
through decrypt_credential_secret, for the duration of a validation or clone.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.crypto import CredentialCipher, sanitize_url
from app.models.repository_credential import RepositoryCredential
from app.schemas.repository import CredentialType, ValidationOutcome
from app.services.repo_url import normalize_repo_url, validate_repository_url

logger = logging.getLogger(__name__)

_URL_TYPE_FOR_CREDENTIAL: dict[str, str] = {"PAT": "https", "SSH": "ssh"}


class CredentialServiceError(Exception):
    """Base error for credential store operations."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidRepositoryUrlError(CredentialServiceError):
    """Repository URL is malformed or does not match the credential type."""


class DuplicateCredentialError(CredentialServiceError):
    """A credential already exists for this organization and repository."""


class CredentialNotFoundError(CredentialServiceError):
    """No credential with this id in the caller's organization."""


def _checked_url(repository_url: str, credential_type: CredentialType) -> str:
    check = validate_repository_url(repository_url)
    if not check.valid:
        raise InvalidRepositoryUrlError(check.error or "Invalid repository URL")
    if check.type != _URL_TYPE_FOR_CREDENTIAL[credential_type]:
        expected = "HTTPS" if credential_type == "PAT" else "SSH"
        raise InvalidRepositoryUrlError(
            f"{credential_type} credentials require an {expected} repository URL"
        )
    return normalize_repo_url(repository_url)


def _audit(event: str, credential: RepositoryCredential, user_id: int | None) -> None:
    logger.info(
        "Credential audit: %s",
        event,
        extra={
            "event": event,
            "credential_id": credential.id,
            "organization_id": credential.organization_id,
            "repository_url": sanitize_url(credential.repository_url),
            "credential_type": credential.credential_type,
            "user_id": user_id,
        },
    )


def create_credential(
    db: Session,
    cipher: CredentialCipher,
    *,
    organization_id: str,
    repository_url: str,
    credential_type: CredentialType,
    secret: str,
    created_by: int | None = None,
) -> RepositoryCredential:
    """
    Encrypt and store a credential under the normalized repository URL.
    Raises InvalidRepositoryUrlError or DuplicateCredentialError.
    """
    normalized = _checked_url(repository_url, credential_type)
    existing = find_credential_for_repository(db, organization_id, normalized)
    if existing is not None:
        raise DuplicateCredentialError(
            "A credential for this repository already exists"
        )

    row = RepositoryCredential(
        organization_id=organization_id,
        repository_url=normalized,
        credential_type=credential_type,
        encrypted_credential=cipher.encrypt(secret.strip(), organization_id),
        created_by=created_by,
        validation_status="untested",
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as e:
        # Concurrent insert for the same repository.
        db.rollback()
        raise DuplicateCredentialError(
            "A credential for this repository already exists"
        ) from e
    db.refresh(row)
    _audit("credential.created", row, created_by)
    return row


def list_credentials(db: Session, organization_id: str) -> list[RepositoryCredential]:
    return (
        db.query(RepositoryCredential)
        .filter(RepositoryCredential.organization_id == organization_id)
        .order_by(RepositoryCredential.repository_url, RepositoryCredential.id)
        .all()
    )


def get_credential(
    db: Session, organization_id: str, credential_id: int
) -> RepositoryCredential:
    """Raises CredentialNotFoundError when absent or owned by another organization."""
    row = (
        db.query(RepositoryCredential)
        .filter(
            RepositoryCredential.id == credential_id,
            RepositoryCredential.organization_id == organization_id,
        )
        .first()
    )
    if row is None:
        raise CredentialNotFoundError(f"Credential {credential_id} not found")
    return row


def find_credential_for_repository(
    db: Session, organization_id: str, repository_url: str
) -> RepositoryCredential | None:
    """Look up by normalized URL so .git / trailing-slash variants resolve to the same row."""
    normalized = normalize_repo_url(repository_url)
    if not normalized:
        return None
    return (
        db.query(RepositoryCredential)
        .filter(
            RepositoryCredential.organization_id == organization_id,
            RepositoryCredential.repository_url == normalized,
        )
        .first()
    )


def update_credential(
    db: Session,
    cipher: CredentialCipher,
    *,
    organization_id: str,
    credential_id: int,
    secret: str,
    credential_type: CredentialType | None = None,
    updated_by: int | None = None,
) -> RepositoryCredential:
    """Rotate the secret (and optionally the type). Resets validation to 'untested'."""
    row = get_credential(db, organization_id, credential_id)
    new_type = credential_type or row.credential_type
    if new_type != row.credential_type:
        _checked_url(row.repository_url, new_type)
    row.credential_type = new_type
    row.encrypted_credential = cipher.encrypt(secret.strip(), organization_id)
    row.validation_status = "untested"
    row.last_validated_at = None
    db.commit()
    db.refresh(row)
    _audit("credential.updated", row, updated_by)
    return row


def delete_credential(
    db: Session,
    organization_id: str,
    credential_id: int,
    deleted_by: int | None = None,
) -> None:
    row = get_credential(db, organization_id, credential_id)
    _audit("credential.deleted", row, deleted_by)
    db.delete(row)
    db.commit()


def record_validation_result(
    db: Session,
    credential: RepositoryCredential,
    outcome: ValidationOutcome,
    validated_by: int | None = None,
) -> RepositoryCredential:
    """Persist the outcome of an access check. Last writer wins."""
    credential.validation_status = "valid" if outcome.valid else "invalid"
    credential.last_validated_at = datetime.now(UTC)
    db.commit()
    db.refresh(credential)
    logger.info(
        "Credential audit: credential.validated",
        extra={
            "event": "credential.validated",
            "credential_id": credential.id,
            "organization_id": credential.organization_id,
            "valid": outcome.valid,
            "error": outcome.error,
            "user_id": validated_by,
        },
    )
    return credential


def decrypt_credential_secret(
    cipher: CredentialCipher, credential: RepositoryCredential
) -> str:
    """
    Plaintext token or key for immediate use. Callers must not store or log it.
    Raises CredentialDecryptionError when the payload fails authentication.
    """
    return cipher.decrypt(credential.encrypted_credential, credential.organization_id)
