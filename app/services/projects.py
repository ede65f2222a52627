"""Projects of an organization and their default repository settings."""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.crypto import sanitize_url
from app.models.project import Project
from app.services.repo_url import (
    normalize_branch_name,
    normalize_repo_url,
    validate_branch_name,
    validate_repository_url,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "default_repository_url", "default_repository_branch")


class ProjectServiceError(Exception):
    """Base error for project operations."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ProjectNotFoundError(ProjectServiceError):
    """No project with this id in the caller's organization."""


class DuplicateProjectError(ProjectServiceError):
    """The organization already has a project with this name."""


class InvalidProjectSettingsError(ProjectServiceError):
    """Default repository URL or branch is malformed."""


def _default_url(url: str | None) -> str | None:
    if url is None:
        return None
    check = validate_repository_url(url)
    if not check.valid:
        raise InvalidProjectSettingsError(check.error or "Invalid repository URL")
    return normalize_repo_url(url)


def _default_branch(branch: str | None) -> str | None:
    normalized = normalize_branch_name(branch)
    if not normalized:
        return None
    if not validate_branch_name(normalized):
        raise InvalidProjectSettingsError(f"Invalid branch name: {normalized!r}")
    return normalized


def _commit(db: Session, project: Project) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicateProjectError(
            f"A project named {project.name!r} already exists"
        ) from e
    db.refresh(project)


def create_project(
    db: Session,
    *,
    organization_id: str,
    name: str,
    description: str = "",
    default_repository_url: str | None = None,
    default_repository_branch: str | None = None,
    created_by: int | None = None,
) -> Project:
    """Raises InvalidProjectSettingsError or DuplicateProjectError."""
    project = Project(
        organization_id=organization_id,
        name=name.strip(),
        description=description,
        default_repository_url=_default_url(default_repository_url),
        default_repository_branch=_default_branch(default_repository_branch),
    )
    db.add(project)
    _commit(db, project)
    logger.info(
        "Project created",
        extra={
            "project_id": project.id,
            "organization_id": organization_id,
            "user_id": created_by,
        },
    )
    return project


def list_projects(db: Session, organization_id: str) -> list[Project]:
    return (
        db.query(Project)
        .filter(Project.organization_id == organization_id)
        .order_by(Project.name, Project.id)
        .all()
    )


def get_project(db: Session, organization_id: str, project_id: int) -> Project:
    """Raises ProjectNotFoundError when absent or owned by another organization."""
    project = (
        db.query(Project)
        .filter(Project.id == project_id, Project.organization_id == organization_id)
        .first()
    )
    if project is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


def update_project(
    db: Session,
    *,
    organization_id: str,
    project_id: int,
    changes: Mapping[str, Any],
    updated_by: int | None = None,
) -> Project:
    """
    Apply the fields present in changes. The default URL is validated and stored normalized;
    None clears it. An empty or None branch clears the default branch.
    """
    project = get_project(db, organization_id, project_id)
    if "name" in changes and changes["name"] is not None:
        name = changes["name"].strip()
        if not name:
            raise InvalidProjectSettingsError("Project name must be non-empty")
        project.name = name
    if "description" in changes and changes["description"] is not None:
        project.description = changes["description"]
    if "default_repository_url" in changes:
        project.default_repository_url = _default_url(changes["default_repository_url"])
    if "default_repository_branch" in changes:
        project.default_repository_branch = _default_branch(changes["default_repository_branch"])
    _commit(db, project)
    logger.info(
        "Project updated",
        extra={
            "project_id": project.id,
            "organization_id": organization_id,
            "fields": sorted(k for k in changes if k in UPDATABLE_FIELDS),
            "default_repository_url": sanitize_url(project.default_repository_url),
            "user_id": updated_by,
        },
    )
    return project
