from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront import __version__
from storefront.container import ServiceContainer
from storefront.mongo_repositories import create_indexes
from storefront.routers import cart, orders, payments
from storefront.shared.logging_config import setup_logging, RequestLoggingMiddleware
from storefront.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware
from storefront.shared.utils import (
    get_db_client, settings, Settings, ErrorResponse, HealthResponse,
)

SERVICE_NAME = "storefront-service"
API_PREFIX = "/api/v1"

# Setup Logging
logger = setup_logging(SERVICE_NAME)


def error_response(status_code: int, message: str, details=None, headers: Optional[dict] = None) -> JSONResponse:
    body = ErrorResponse(message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        return error_response(status.HTTP_400_BAD_REQUEST, f"Validation failed: {summary}", details=errors)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error",
            exc_info=exc,
            extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        )
        config: Settings = request.app.state.settings
        message = str(exc) if config.EXPOSE_INTERNAL_ERRORS else "Internal server error"
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message)


def create_app(config: Settings = settings, container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the storefront application.

    Tests hand in a prebuilt *container*; otherwise one is wired against
    MongoDB when the application starts.
    """
    app = FastAPI(title="Storefront Service", version=__version__)
    app.state.settings = config
    app.state.container = container
    app.mongodb_client = None

    # Security Setup
    setup_rate_limiting(app, config.RATE_LIMIT_ENABLED)
    app.add_middleware(SecurityHeadersMiddleware)

    # Middleware
    app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.on_event("startup")
    async def startup():
        if app.state.container is None:
            app.mongodb_client = get_db_client(config.MONGO_URL)
            app.mongodb = app.mongodb_client[config.MONGO_DB_NAME]
            await create_indexes(app.mongodb)
            app.state.container = ServiceContainer.from_database(app.mongodb, config)
        app.state.container.start()
        logger.info("Storefront service started")

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.container is not None:
            await app.state.container.close()
        if app.mongodb_client is not None:
            app.mongodb_client.close()

    app.include_router(orders.router, prefix=API_PREFIX)
    app.include_router(payments.router, prefix=API_PREFIX)
    app.include_router(cart.router, prefix=API_PREFIX)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        db_status = "not configured"
        if app.mongodb_client is not None:
            try:
                await app.mongodb_client.admin.command("ping")
                db_status = "connected"
            except Exception as e:
                logger.error(f"Health check DB failure: {e}")
                db_status = "unhealthy"

        if db_status == "unhealthy":
            return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unhealthy", details={"database": db_status})

        return HealthResponse(
            service=SERVICE_NAME,
            status="healthy",
            timestamp=datetime.utcnow(),
            version=__version__,
            database=db_status,
        )

    return app


app = create_app()
