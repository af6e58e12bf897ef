"""
PDF Signing Service - Main FastAPI Application
Places a drawn or typed signature image onto a PDF page.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from pdfsign.config import get_cors_origins, get_settings
from pdfsign.exceptions import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    signing_error_handler,
    validation_exception_handler,
)
from pdfsign.pdf.errors import SigningError
from pdfsign.routers import health, sessions
from pdfsign.routers.health import SERVICE_VERSION
from pdfsign.utils.logging import RequestIdMiddleware, get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    logger.info(f"Starting PDF Signing Service v{SERVICE_VERSION} ({settings.environment})")
    yield
    logger.info("Shutting down PDF Signing Service")


app = FastAPI(
    title="PDF Signing Service",
    description="""Place a handwritten or typed signature image onto a PDF page.

## Workflow

1. `POST /v1/sessions` to start a session
2. `PUT /v1/sessions/{id}/document` with the raw PDF bytes
3. `POST /v1/sessions/{id}/placement` with the pointer position on the rendered page
4. `PUT /v1/sessions/{id}/signature` with a drawn PNG or typed text
5. `POST /v1/sessions/{id}/sign`, then `GET /v1/sessions/{id}/signed`

Sessions are held in memory only.
""",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "sessions", "description": "Signing session operations"},
        {"name": "health", "description": "Health check endpoints"},
    ],
)

# Middleware
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Content-Disposition"],
)

# Exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(SigningError, signing_error_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(health.router)
app.include_router(sessions.router)


# Run with uvicorn
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pdfsign.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=get_settings().debug,
    )
