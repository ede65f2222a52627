"""Repository credential endpoints: CRUD over encrypted credentials and access validation."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.v1.auth import actor_id, get_current_user, require_admin
from app.core.config import Settings, get_settings
from app.core.crypto import (
    CredentialCipher,
    CredentialDecryptionError,
    EncryptionConfigError,
    get_credential_cipher,
)
from app.core.database import get_db
from app.schemas.auth import CurrentUser
from app.schemas.credentials import (
    CredentialCreateRequest,
    CredentialListResponse,
    CredentialResponse,
    CredentialUpdateRequest,
    ValidateCredentialRequest,
)
from app.schemas.repository import CredentialType, ValidationOutcome
from app.services.credentials import (
    CredentialNotFoundError,
    DuplicateCredentialError,
    InvalidRepositoryUrlError,
    create_credential,
    decrypt_credential_secret,
    delete_credential,
    get_credential,
    list_credentials,
    record_validation_result,
    update_credential,
)
from app.services.repo_access import validate_repository_access, validate_repository_size

logger = logging.getLogger(__name__)
router = APIRouter()


def get_cipher() -> CredentialCipher:
    """Dependency: the credential cipher, or 503 when ENCRYPTION_MASTER_KEY is missing/invalid."""
    try:
        return get_credential_cipher()
    except EncryptionConfigError as e:
        logger.error("Credential encryption unavailable: %s", e.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credential encryption is not configured.",
        ) from e


@router.get("", response_model=CredentialListResponse)
def get_credentials(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> CredentialListResponse:
    """List credentials of the caller's organization (metadata only)."""
    rows = list_credentials(db, user.organization_id)
    return CredentialListResponse(
        credentials=[CredentialResponse.model_validate(r) for r in rows]
    )


@router.post("", response_model=CredentialResponse, status_code=status.HTTP_201_CREATED)
def post_credential(
    body: CredentialCreateRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    cipher: Annotated[CredentialCipher, Depends(get_cipher)],
) -> CredentialResponse:
    """Encrypt and store a credential. 409 if the repository already has one."""
    try:
        row = create_credential(
            db,
            cipher,
            organization_id=user.organization_id,
            repository_url=body.repository_url,
            credential_type=body.credential_type,
            secret=body.credential.get_secret_value(),
            created_by=actor_id(user),
        )
    except InvalidRepositoryUrlError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except DuplicateCredentialError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    return CredentialResponse.model_validate(row)


@router.post("/validate", response_model=ValidationOutcome)
async def post_validate(
    body: ValidateCredentialRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ValidationOutcome:
    """
    Test read access to repository_url with a stored credential (credential_id) or an inline one.
    For a stored credential, its validation_status and last_validated_at are updated.
    Set check_size to also reject repositories over MAX_REPO_SIZE_BYTES.
    """
    stored = None
    credential_type: CredentialType
    if body.credential_id is not None:
        try:
            stored = await run_in_threadpool(
                get_credential, db, user.organization_id, body.credential_id
            )
        except CredentialNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
        try:
            secret = decrypt_credential_secret(get_cipher(), stored)
        except CredentialDecryptionError as e:
            logger.error(
                "Stored credential could not be decrypted",
                extra={"credential_id": stored.id, "organization_id": stored.organization_id},
            )
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Stored credential could not be decrypted; rotate it.",
            ) from e
        credential_type = stored.credential_type
    else:
        credential_type = body.credential.type
        secret = body.credential.secret_value()

    if body.check_size:
        outcome = await validate_repository_size(
            body.repository_url,
            credential_type,
            secret,
            timeout=settings.GIT_VALIDATION_TIMEOUT_SEC,
            ssh_connect_timeout=settings.GIT_SSH_CONNECT_TIMEOUT_SEC,
            max_size_bytes=settings.MAX_REPO_SIZE_BYTES,
            use_github_api=settings.REPO_SIZE_API_ENABLED,
            github_api_url=settings.GITHUB_API_URL,
            github_api_timeout=settings.GITHUB_API_TIMEOUT_SEC,
        )
    else:
        outcome = await validate_repository_access(
            body.repository_url,
            credential_type,
            secret,
            timeout=settings.GIT_VALIDATION_TIMEOUT_SEC,
            ssh_connect_timeout=settings.GIT_SSH_CONNECT_TIMEOUT_SEC,
        )
    if stored is not None:
        # Blocking ORM work stays off the event loop.
        await run_in_threadpool(
            record_validation_result, db, stored, outcome, validated_by=actor_id(user)
        )
    return outcome


@router.get("/{credential_id}", response_model=CredentialResponse)
def get_credential_by_id(
    credential_id: int,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> CredentialResponse:
    try:
        row = get_credential(db, user.organization_id, credential_id)
    except CredentialNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    return CredentialResponse.model_validate(row)


@router.patch("/{credential_id}", response_model=CredentialResponse)
def patch_credential(
    credential_id: int,
    body: CredentialUpdateRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    cipher: Annotated[CredentialCipher, Depends(get_cipher)],
) -> CredentialResponse:
    """Rotate a credential; validation status resets to 'untested'."""
    try:
        row = update_credential(
            db,
            cipher,
            organization_id=user.organization_id,
            credential_id=credential_id,
            secret=body.credential.get_secret_value(),
            credential_type=body.credential_type,
            updated_by=actor_id(user),
        )
    except CredentialNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except InvalidRepositoryUrlError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    return CredentialResponse.model_validate(row)


@router.delete("/{credential_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_credential_by_id(
    credential_id: int,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete a credential (admin only)."""
    try:
        delete_credential(db, admin.organization_id, credential_id, deleted_by=actor_id(admin))
    except CredentialNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
