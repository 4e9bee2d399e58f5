"""
FastAPI application factory.

Engine errors are mapped to HTTP status codes here so routes can let
them propagate.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from entitymatch import __version__
from entitymatch.api.routes import (
    identities_router,
    merge_router,
    resolution_router,
    review_router,
)
from entitymatch.config import settings
from entitymatch.errors import (
    AliasCollisionError,
    ConcurrentModificationError,
    EmptyNameError,
    EntityMatchError,
    ExtractionSchemaError,
    InvalidMergeError,
    InvalidTransitionError,
    InvalidUpdateError,
    NotFoundError,
)
from entitymatch.service import EntityMatchService

logger = logging.getLogger(__name__)

# Most specific first; EntityMatchError is the fallback
ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ExtractionSchemaError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (EmptyNameError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidUpdateError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AliasCollisionError, status.HTTP_409_CONFLICT),
    (InvalidMergeError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (EntityMatchError, status.HTTP_400_BAD_REQUEST),
)


def _error_body(exc: EntityMatchError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, ExtractionSchemaError):
        body["errors"] = exc.errors
    elif isinstance(exc, AliasCollisionError):
        body["collisions"] = {
            alias: [str(i) for i in owners] for alias, owners in exc.collisions.items()
        }
    return body


async def engine_error_handler(request: Request, exc: EntityMatchError) -> JSONResponse:
    """Map engine errors onto HTTP responses."""
    code = next(c for error_type, c in ERROR_STATUS if isinstance(exc, error_type))
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {code}: {exc}")
    return JSONResponse(status_code=code, content=_error_body(exc))


def create_app(service: Optional[EntityMatchService] = None) -> FastAPI:
    """
    Build the API around a service.

    Args:
        service: Engine service; built from settings when omitted
    """
    app = FastAPI(
        title="entitymatch",
        description="Entity resolution and confidence-scored deduplication",
        version=__version__,
        # Disable docs in production
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
    )
    app.state.service = service or EntityMatchService.from_settings(settings)

    app.add_exception_handler(EntityMatchError, engine_error_handler)

    @app.get("/health")
    def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    app.include_router(resolution_router, prefix="/api/v1")
    app.include_router(review_router, prefix="/api/v1")
    app.include_router(identities_router, prefix="/api/v1")
    app.include_router(merge_router, prefix="/api/v1")
    return app
