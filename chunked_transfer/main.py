"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chunked_transfer.api import upload
from chunked_transfer.config import settings as default_settings
from chunked_transfer.core.config import Settings
from chunked_transfer.core.exceptions import ErrorCategory, TransferException
from chunked_transfer.services.factory import build_services
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

AUTH_CHALLENGE: Dict[str, str] = {"WWW-Authenticate": "Basic"}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifecycle management

    Connects the session lock backend and starts the staging cleanup task on
    startup; stops both on shutdown.
    """
    services = app.state.services
    logger.info("Starting %s...", services.settings.app_name)

    await services.start()

    yield

    logger.info("Shutting down %s...", services.settings.app_name)
    try:
        await services.stop()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application instance

    Configures CORS, exception handlers and routes, and attaches the receiver
    services built from ``settings`` to ``app.state``.
    """
    settings = settings or default_settings

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Chunked, resumable file transfer API",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    application.state.services = build_services(settings)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(application)
    _register_routes(application)

    logger.info(
        f"Application '{settings.app_name}' v{settings.app_version} "
        "created successfully"
    )

    return application


def _error_response(status_code: int, request: Request, body: Dict[str, Any], headers=None) -> JSONResponse:
    body.setdefault("timestamp", _timestamp())
    body.setdefault("path", str(request.url.path))
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers for consistent error responses"""

    @app.exception_handler(TransferException)
    async def transfer_exception_handler(request: Request, exc: TransferException) -> JSONResponse:
        """Handle service exceptions"""
        status_code = _map_error_category_to_status_code(exc.category)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"Transfer exception occurred: {exc.message}",
            extra={
                "error_code": exc.error_code,
                "category": exc.category.value,
                "severity": exc.severity.value,
                "details": exc.details,
                "request_path": request.url.path,
                "request_method": request.method
            }
        )

        return _error_response(status_code, request, {
            "code": exc.error_code,
            "message": exc.message,
            "category": exc.category.value,
            "severity": exc.severity.value,
            "details": exc.details,
        }, headers=AUTH_CHALLENGE if exc.category == ErrorCategory.AUTHENTICATION else None)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed request input is a client error"""
        logger.warning(f"Request validation error: {exc.errors()}")
        return _error_response(400, request, {
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "category": ErrorCategory.VALIDATION.value,
            "details": jsonable_errors(exc),
        })

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle FastAPI HTTP exceptions"""
        logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")
        return _error_response(
            exc.status_code, request,
            {"code": f"HTTP_{exc.status_code}", "message": exc.detail},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle Starlette base HTTP exceptions"""
        logger.warning(f"Starlette HTTP exception: {exc.status_code} - {exc.detail}")
        return _error_response(exc.status_code, request, {"code": f"HTTP_{exc.status_code}", "message": exc.detail})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for uncaught exceptions"""
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True,
            extra={
                "request_path": request.url.path,
                "request_method": request.method,
                "exception_type": type(exc).__name__
            }
        )

        if isinstance(exc, ConnectionError):
            status_code = 503
            message = "Service temporarily unavailable"
        elif isinstance(exc, TimeoutError):
            status_code = 504
            message = "Request timeout"
        elif isinstance(exc, PermissionError):
            status_code = 403
            message = "Permission denied"
        else:
            status_code = 500
            message = "Internal server error"

        return _error_response(status_code, request, {
            "code": "INTERNAL_SERVER_ERROR",
            "message": message,
            "type": type(exc).__name__
        })


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without the raw input, which may be binary"""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


def _register_routes(app: FastAPI) -> None:
    """Register API routes with the FastAPI application"""
    app.include_router(
        upload.router,
        prefix="/api/v1",
        tags=["upload"]
    )

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, Any]:
        services = app.state.services
        return {
            "status": "healthy",
            "version": services.settings.app_version,
            "lock_backend": type(services.lock_manager).__name__,
            "timestamp": _timestamp()
        }


def _map_error_category_to_status_code(category: ErrorCategory) -> int:
    """Map error categories to HTTP status codes"""
    status_code_mapping: Dict[ErrorCategory, int] = {
        ErrorCategory.AUTHENTICATION: 401,
        ErrorCategory.VALIDATION: 400,
        ErrorCategory.COMPLETENESS: 400,
        ErrorCategory.NOT_FOUND: 404,
        ErrorCategory.CONFLICT: 409,
        ErrorCategory.INTEGRITY: 422,
        ErrorCategory.STORAGE: 500,
        ErrorCategory.FILE_SYSTEM: 500,
        ErrorCategory.NETWORK: 503,
        ErrorCategory.SYSTEM: 500
    }
    return status_code_mapping.get(category, 500)


def run() -> None:
    """Start the server with uvicorn."""
    import uvicorn

    logger.info(f"Starting {default_settings.app_name} v{default_settings.app_version}")
    logger.info(f"Environment: {default_settings.environment.value}")

    uvicorn.run(
        "chunked_transfer.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.value.lower(),
        access_log=True
    )


# Create FastAPI application instance
app: FastAPI = create_application()

if __name__ == "__main__":
    run()
