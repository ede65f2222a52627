"""Health check endpoint with database and credential-encryption checks."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.crypto import EncryptionConfigError, get_credential_cipher
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse

router = APIRouter()


def check_encryption() -> str:
    """'ok' when the master key is set and an encrypt/decrypt round-trip succeeds."""
    try:
        cipher = get_credential_cipher()
    except EncryptionConfigError:
        return "unconfigured"
    return "ok" if cipher.check_roundtrip() else "failing"


@router.get("/", response_model=HealthResponse)
def get_health(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Return service health status, database connectivity and encryption readiness.
    Used by load balancers and monitoring.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        encryption=check_encryption(),
    )
