"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import auth, health, projects, repository_credentials, scans

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(
    repository_credentials.router,
    prefix="/repository-credentials",
    tags=["repository-credentials"],
)
router.include_router(projects.router, prefix="/projects", tags=["projects"])
router.include_router(scans.router, prefix="/scans", tags=["scans"])
