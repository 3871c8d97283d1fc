# backend/storedesk/main.py
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from storedesk.core.config import settings
from storedesk.core.errors import DomainError
from storedesk.core.logging import configure_logging
import storedesk.models  # noqa: F401  # force model registration

from storedesk.api.v1.auth import router as auth_router
from storedesk.api.v1.organizations import router as organizations_router

log = structlog.get_logger()


def _error(status_code: int, kind: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"error": kind, "message": message, **extra}},
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request.domain_error", path=request.url.path, error=exc.kind)
    else:
        log.info("request.rejected", path=request.url.path, status=exc.status_code, error=exc.kind)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(loc) for loc in first.get("loc", ()) if loc != "body")
    msg = first.get("msg", "Validation error")
    message = f"Invalid field '{field}': {msg}" if field else msg
    return _error(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Storage errors land here too; their text never reaches the client
    log.exception("request.unhandled_error", path=request.url.path, error_type=type(exc).__name__)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred. Please try again later.",
    )


def create_application() -> FastAPI:
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app = FastAPI(title="Storedesk API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "storedesk"}

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(organizations_router, prefix="/api/v1")

    log.info("app.configured", environment=settings.ENVIRONMENT)
    return app


app = create_application()
