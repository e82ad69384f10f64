from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import analytics, auth, reports, users
from .api import map as map_api
from .api.responses import error_body
from .core.config import settings, DEFAULT_JWT_SECRET
from .core.exceptions import AquasentraError
from .core.logging import setup_logging
from .domain.services.email_service import EmailService
from .infrastructure.database import Database
from .infrastructure.storage import LocalMediaStorage

logger = logging.getLogger(__name__)


def validate_config():
    """Validate critical configuration settings on startup."""
    # Check JWT secret in production
    if settings.is_production:
        if settings.JWT_SECRET_KEY == DEFAULT_JWT_SECRET:
            raise RuntimeError(
                "SECURITY ERROR: JWT_SECRET_KEY must be changed from default in production! "
                "Set a secure random string via environment variable."
            )

    if len(settings.JWT_SECRET_KEY) < 32:
        raise RuntimeError(
            f"SECURITY ERROR: JWT_SECRET_KEY must be at least 32 characters "
            f"(current: {len(settings.JWT_SECRET_KEY)} chars)"
        )

    # Warn about CORS in production
    if settings.is_production:
        localhost_origins = [o for o in settings.BACKEND_CORS_ORIGINS if "localhost" in o]
        if localhost_origins:
            logger.warning(
                f"WARNING: CORS origins contain localhost URLs in production: {localhost_origins}. "
                "Consider removing localhost from BACKEND_CORS_ORIGINS env var."
            )

    if not settings.SENDGRID_API_KEY:
        logger.warning("SENDGRID_API_KEY not set - emails will be logged instead of sent")

    logger.info(f"Config validation passed. Production mode: {settings.is_production}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan events for startup and shutdown."""
    setup_logging()
    logger.info("Starting Aquasentra API...")

    validate_config()

    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO).connect()
    database.create_all()
    app.state.database = database

    app.state.email_service = EmailService()

    storage = LocalMediaStorage()
    storage.ensure_directory()
    app.state.media_storage = storage

    yield

    logger.info("Shutting down Aquasentra API...")
    database.dispose()


def _simplify_errors(errors) -> list:
    simplified = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        simplified.append({
            "field": ".".join(loc) or None,
            "message": error.get("msg", "Invalid value"),
        })
    return simplified


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AquasentraError)
    async def handle_domain_error(request: Request, exc: AquasentraError):
        if exc.status_code >= 500:
            logger.error(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.errors))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=error_body("Validation failed", _simplify_errors(exc.errors())),
        )

    @app.exception_handler(ValidationError)
    async def handle_model_validation(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content=error_body("Validation failed", _simplify_errors(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=error_body("Server error"))


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_exception_handlers(app)

app.include_router(auth.router, prefix=f"{settings.API_PREFIX}/auth", tags=["authentication"])
app.include_router(reports.router, prefix=f"{settings.API_PREFIX}/reports", tags=["reports"])
app.include_router(map_api.router, prefix=f"{settings.API_PREFIX}/map", tags=["map"])
app.include_router(users.router, prefix=f"{settings.API_PREFIX}/users", tags=["users"])
app.include_router(analytics.router, prefix=f"{settings.API_PREFIX}/analytics", tags=["analytics"])


@app.get(f"{settings.API_PREFIX}/health")
def health_check():
    return {
        "success": True,
        "data": {"status": "healthy", "timestamp": datetime.utcnow().isoformat()},
    }
