import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.routes import router as api_router
from app.config import settings
from app.database import init_db, close_db
from app.dependencies import get_db
from app.middlewares.logging_middleware import LoggingMiddleware
from app.services.notification_service import NotificationDispatcher
from app.services.notification_sse import ConnectionManager
from app.utils.exceptions import BloodlineError
from app.utils.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application startup and shutdown events.
    """
    logger.info("Application starting up...")

    if settings.ENVIRONMENT.lower() != "production":
        # Production schema is managed by Alembic
        await init_db()

    manager = ConnectionManager(queue_size=settings.SSE_QUEUE_SIZE)
    app.state.notifier = NotificationDispatcher(manager)

    yield

    logger.info("Application shutting down...")
    await close_db()


def create_application() -> FastAPI:
    """Create the FastAPI application"""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=settings.PROJECT_DESCRIPTION,
        version=settings.VERSION,
        debug=settings.DEBUG,
        docs_url=settings.DOCS_URL,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "Accept",
            "X-Requested-With",
            "Origin",
        ],
        expose_headers=["Content-Length", "Content-Type", "X-Request-ID"],
        max_age=600,
    )

    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.exception_handler(BloodlineError)
    async def bloodline_error_handler(request: Request, exc: BloodlineError):
        """Domain errors carry a machine-readable code next to the message"""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_code": exc.error_code},
        )

    # Custom OpenAPI config for Swagger
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
            }
        }

        protected_paths = [
            f"{settings.API_PREFIX}/requests",
            f"{settings.API_PREFIX}/users",
            f"{settings.API_PREFIX}/notifications/sse/stats",
        ]

        for path_key, path_item in openapi_schema["paths"].items():
            if any(path_key.startswith(p) for p in protected_paths):
                for method in path_item.values():
                    method.setdefault("security", []).append({"BearerAuth": []})

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    @app.get("/")
    def read_root():
        return {"status": "ok", "environment": settings.ENVIRONMENT}

    @app.get("/health")
    async def health_check(db: AsyncSession = Depends(get_db)):
        """Health check with database connectivity test"""
        try:
            await db.execute(select(1))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "unhealthy", "database": "disconnected", "error": str(e)}

    return app


app = create_application()
