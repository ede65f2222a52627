"""Request/response schemas for repository credential endpoints. Secrets are write-only."""

from datetime import datetime

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from app.schemas.repository import CredentialType, ValidationStatus


def _require_secret(value: SecretStr) -> SecretStr:
    if not value.get_secret_value().strip():
        raise ValueError("credential must be non-empty")
    return value


class CredentialCreateRequest(BaseModel):
    """Store a new credential for a repository in the caller's organization."""

    repository_url: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        description="HTTPS (for PAT) or git@ (for SSH) repository URL; stored normalized.",
    )
    credential_type: CredentialType = Field(..., description="PAT or SSH.")
    credential: SecretStr = Field(
        ..., description="Personal access token or SSH private key (PEM). Never returned."
    )

    @field_validator("credential")
    @classmethod
    def validate_credential(cls, v: SecretStr) -> SecretStr:
        return _require_secret(v)


class CredentialUpdateRequest(BaseModel):
    """Rotate a stored credential. Resets validation_status to 'untested'."""

    credential: SecretStr = Field(..., description="New token or private key.")
    credential_type: CredentialType | None = Field(
        default=None, description="Change the credential type; unchanged when omitted."
    )

    @field_validator("credential")
    @classmethod
    def validate_credential(cls, v: SecretStr) -> SecretStr:
        return _require_secret(v)


class CredentialResponse(BaseModel):
    """Stored credential metadata (the encrypted blob is never exposed)."""

    id: int
    organization_id: str
    repository_url: str
    credential_type: CredentialType
    validation_status: ValidationStatus
    last_validated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: int | None = None

    class Config:
        from_attributes = True


class CredentialListResponse(BaseModel):
    """Response for GET /repository-credentials."""

    credentials: list[CredentialResponse]


class InlineCredential(BaseModel):
    """A credential supplied directly in a validate request (not stored)."""

    type: CredentialType
    token: SecretStr | None = Field(default=None, description="Required when type is PAT.")
    private_key: SecretStr | None = Field(
        default=None, description="Required when type is SSH."
    )

    @model_validator(mode="after")
    def check_secret_for_type(self) -> "InlineCredential":
        secret = self.token if self.type == "PAT" else self.private_key
        if secret is None or not secret.get_secret_value().strip():
            field = "token" if self.type == "PAT" else "private_key"
            raise ValueError(f"{field} is required for {self.type} credentials")
        return self

    def secret_value(self) -> str:
        secret = self.token if self.type == "PAT" else self.private_key
        return secret.get_secret_value() if secret is not None else ""


class ValidateCredentialRequest(BaseModel):
    """Validate access to a repository with a stored credential or an inline one."""

    repository_url: str = Field(..., min_length=1, max_length=2048)
    credential_id: int | None = Field(
        default=None, ge=1, description="Stored credential to test; its status is updated."
    )
    credential: InlineCredential | None = Field(
        default=None, description="Inline credential to test without storing it."
    )
    check_size: bool = Field(
        default=False,
        description="Also reject repositories whose estimated size exceeds the configured limit.",
    )

    @model_validator(mode="after")
    def check_exactly_one_source(self) -> "ValidateCredentialRequest":
        if (self.credential_id is None) == (self.credential is None):
            raise ValueError("Provide exactly one of credential_id or credential")
        return self
