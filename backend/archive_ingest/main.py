"""FastAPI application bootstrap: routers, CORS and error mapping."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from archive_ingest.api.routers import (
    batches,
    health,
    import_attempts,
    import_files,
    imports,
    queue,
)
from archive_ingest.core.config import get_settings
from archive_ingest.core.errors import (
    ConflictingState,
    InvalidTransition,
    NotFound,
    StorageError,
    ValidationError,
)
from archive_ingest.core.logging import configure_logging

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Map ingest errors onto HTTP responses."""

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors},
        )

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "current": exc.current, "target": exc.target},
        )

    @app.exception_handler(ConflictingState)
    async def _conflict(request: Request, exc: ConflictingState) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def _storage(request: Request, exc: StorageError) -> JSONResponse:
        # Driver detail was already logged by storage_guard
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal storage error"},
        )


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, version="0.1.0")

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(batches.router, prefix="/api/batches", tags=["batches"])
    app.include_router(imports.router, prefix="/api/imports", tags=["imports"])
    app.include_router(import_files.router, prefix="/api/import-files", tags=["import-files"])
    app.include_router(queue.router, prefix="/api/queue", tags=["queue"])
    app.include_router(
        import_attempts.router, prefix="/api/import-attempts", tags=["import-attempts"]
    )

    return app


app = create_app()
