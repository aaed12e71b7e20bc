import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.cors import CORSMiddleware

from mentra.app.api.v1.router import api_router
from mentra.app.core.config import settings
from mentra.app.core.exceptions import (
    AccessDeniedError,
    JournalStorageError,
    JournalValidationError,
    NotFoundError,
)
from mentra.app.core.logging import configure_logging
from mentra.app.db.base import AsyncSessionLocal, Base, engine
from mentra.app.security.codec import CryptoCodec
from mentra.app.security.keys import DerivedKeyProvider, KeyManager
from mentra.app.services.audit import AuditLogger
from mentra.app.services.journal_repository import JournalEntryRepository

# Models must be imported so Base.metadata knows every table
from mentra.app import models  # noqa: F401

logger = logging.getLogger(__name__)


def build_repository(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> JournalEntryRepository:
    """Wire the repository with the process secret from settings."""
    key_manager = KeyManager(
        DerivedKeyProvider(settings.JOURNAL_ENCRYPTION_KEY),
        algorithm=settings.ENCRYPTION_METHOD,
    )
    return JournalEntryRepository(
        session_factory,
        key_manager,
        CryptoCodec(),
        AuditLogger(session_factory),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    repo = build_repository()
    app.state.journal_repository = repo
    logger.info("%s started (environment=%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield

    # Flush pending audit rows before the pool goes away
    await repo.audit.drain()
    await engine.dispose()
    logger.info("%s stopped", settings.PROJECT_NAME)


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(JournalStorageError)
async def journal_storage_error_handler(request: Request, exc: JournalStorageError):
    if isinstance(exc, AccessDeniedError):
        status_code = 403
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, JournalValidationError):
        status_code = 400
    else:
        logger.error("Journal storage failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Journal storage failure", "type": exc.type},
        )

    content = {"detail": exc.message, "type": exc.type}
    if isinstance(exc, JournalValidationError) and exc.details:
        content["errors"] = exc.details.get("errors", [])
    return JSONResponse(status_code=status_code, content=content)


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}
