"""FastAPI application entrypoint: wiring, middleware and startup checks."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import router as v1_router
from app.core.config import settings
from app.core.crypto import EncryptionConfigError, get_credential_cipher
from app.services.repo_cleanup import sweep_stale_clones

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Report encryption readiness and remove clones left behind by a previous process."""
    try:
        get_credential_cipher()
    except EncryptionConfigError as e:
        logger.warning("Credential endpoints disabled: %s", e.message)
    removed, failed = await sweep_stale_clones(
        settings.CLONE_ROOT_DIR, settings.CLEANUP_MAX_AGE_HOURS * 3600
    )
    if removed or failed:
        logger.info("Startup clone sweep: removed=%s, failed=%s", removed, failed)
    yield


app = FastAPI(
    title="Ghostshell API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    return {"message": "Ghostshell API", "docs": "/docs"}
