"""
BizOps HTTP service.

create_app() wires routers, middleware and the error handler; tests
build their own instance and override dependencies on it.

Startup order matters here. serve() rewrites DATABASE_URL to an IPv4
literal *before* uvicorn imports the app, and the database engine is
only built inside the lifespan, so the pool never sees the original
hostname.

Production:
    bizops-serve

Local development (no IPv4 rewrite):
    uvicorn bizops.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import billing, health, objects
from .config.settings import get_settings
from .infrastructure.database.engine import create_database_engine

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the database pool on startup, dispose of it on shutdown.

    DATABASE_URL has already been pinned to IPv4 by the time this runs.
    Missing configuration is logged here rather than raised so that
    /health/ready can report it.
    """
    settings = get_settings()

    logger.info(
        "BizOps API starting",
        extra={
            "version": settings.api_version,
            "environment": settings.environment,
            "mock_mode": {"storage": settings.gcs_mock_mode},
        }
    )

    missing = settings.validate_required_fields()
    if missing:
        logger.error("Configuration incomplete", extra={"missing_fields": missing})

    app.state.db_engine = None
    if settings.database_url:
        app.state.db_engine = create_database_engine(settings)
    elif settings.database_required:
        logger.error("DATABASE_URL is not set; database-backed routes will fail")

    yield

    if app.state.db_engine is not None:
        app.state.db_engine.dispose()
    logger.info("BizOps API shutting down")


def create_app() -> FastAPI:
    """Assemble the FastAPI application from current settings."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Business operations backend.

        ## File uploads

        1. **Request an upload URL**: `POST /api/objects/upload`
        2. **PUT the file** to the returned `upload_url` (valid 15 minutes)
        3. **Set visibility**: `PUT /api/objects/acl`
        4. **Serve it** from `GET /objects/...` using the returned `object_path`

        ## Identity

        `/api/*` endpoints need an `X-API-Key` header.
        The calling user, when there is one, comes from `X-User-Id`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(objects.router, prefix="/api/objects", tags=["Objects"])
    app.include_router(objects.public_router, tags=["Objects"])
    app.include_router(billing.router, prefix="/api/billing", tags=["Billing"])

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        # Details stay in the log; clients only see a generic 500
        logger.error(
            "Unhandled error",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"message": "Internal Server Error"})

    return app


# uvicorn imports this
app = create_app()


def serve() -> None:
    """
    Production entry point.

    1. Prefer IPv4 for every lookup and pin DATABASE_URL to an IPv4 address.
    2. Refuse to start if the database is mandatory but not configured.
    3. Hand over to uvicorn, which imports this module's app afterwards.

    Importing this module only builds the route table; the pool and the
    listener come later.
    """
    from dotenv import load_dotenv
    import uvicorn

    from .infrastructure.network.resolver import run_bootstrap

    # pydantic-settings reads .env itself, but the resolver works on os.environ
    load_dotenv()

    outcome = run_bootstrap()
    logger.info("Startup resolver finished", extra={"status": outcome.status})

    # Pick up the rewritten DATABASE_URL
    get_settings.cache_clear()
    settings = get_settings()

    if outcome.status == "missing" and settings.database_required:
        logger.critical(
            "DATABASE_URL must be set. Did you forget to provision a database?"
        )
        sys.exit(1)

    uvicorn.run(
        "bizops.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
