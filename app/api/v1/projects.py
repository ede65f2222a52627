"""Project endpoints: create, list, read and update projects with default repository settings."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.orm import Session

from app.api.v1.auth import actor_id, get_current_user
from app.core.database import get_db
from app.schemas.auth import CurrentUser
from app.schemas.projects import (
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectOut,
    ProjectUpdateRequest,
)
from app.services.projects import (
    DuplicateProjectError,
    InvalidProjectSettingsError,
    ProjectNotFoundError,
    create_project,
    get_project,
    list_projects,
    update_project,
)

router = APIRouter()


@router.get("", response_model=ProjectListResponse)
def get_projects(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ProjectListResponse:
    rows = list_projects(db, user.organization_id)
    return ProjectListResponse(projects=[ProjectOut.model_validate(p) for p in rows])


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
def post_project(
    body: ProjectCreateRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ProjectOut:
    """400 for an invalid default repository URL or branch; 409 if the name is taken."""
    try:
        project = create_project(
            db,
            organization_id=user.organization_id,
            name=body.name,
            description=body.description,
            default_repository_url=body.default_repository_url,
            default_repository_branch=body.default_repository_branch,
            created_by=actor_id(user),
        )
    except InvalidProjectSettingsError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except DuplicateProjectError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    return ProjectOut.model_validate(project)


@router.get("/{project_id}", response_model=ProjectOut)
def get_project_by_id(
    project_id: Annotated[int, Path(ge=1)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ProjectOut:
    try:
        project = get_project(db, user.organization_id, project_id)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    return ProjectOut.model_validate(project)


@router.patch("/{project_id}", response_model=ProjectOut)
def patch_project(
    project_id: Annotated[int, Path(ge=1)],
    body: ProjectUpdateRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ProjectOut:
    """
    Update name, description or the default repository. The URL is validated and stored
    normalized; send null to clear it.
    """
    try:
        project = update_project(
            db,
            organization_id=user.organization_id,
            project_id=project_id,
            changes=body.model_dump(exclude_unset=True),
            updated_by=actor_id(user),
        )
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except InvalidProjectSettingsError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except DuplicateProjectError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    return ProjectOut.model_validate(project)
